"""Speech synthesis services."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass
class AudioHandle:
    """Reference to synthesized audio that can be read later."""

    id: str
    url: Optional[str] = None


class SynthesisError(Exception):
    """Speech synthesis failed."""
    pass


class SpeechSynthesizer(ABC):
    """Abstract base class for speech synthesis services."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def synthesize(self, text: str, voice: Optional[str] = None) -> AudioHandle:
        """
        Synthesize a sentence.

        Args:
            text: Text to synthesize
            voice: Voice to use, service default when ``None``

        Returns:
            Handle resolvable with ``read``
        """
        pass

    @abstractmethod
    async def read(self, handle: AudioHandle) -> bytes:
        """Read the audio bytes behind a handle."""
        pass


class RemoteSpeechSynthesizer(SpeechSynthesizer):
    """Synthesizer backed by a remote audio service."""

    VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")

    def __init__(
        self,
        base_url: str,
        token: str = "",
        default_voice: str = "alloy",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.default_voice = default_voice
        self.timeout = timeout
        self._client = client
        self.logger = logger.bind(synthesizer="remote")

    @property
    def name(self) -> str:
        return "remote"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._client = httpx.AsyncClient(headers=headers, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _voice(self, voice: Optional[str]) -> str:
        if voice and voice in self.VOICES:
            return voice
        if voice:
            self.logger.warning("voice_unknown", voice=voice, fallback=self.default_voice)
        return self.default_voice

    async def synthesize(self, text: str, voice: Optional[str] = None) -> AudioHandle:
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/audio/new",
                json={"text": text, "voice": self._voice(voice)},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SynthesisError(f"Synthesis request failed: {e}") from e

        if not payload.get("success") or not payload.get("id"):
            raise SynthesisError(payload.get("error") or "Synthesis service returned no audio")

        audio_id = str(payload["id"])
        return AudioHandle(id=audio_id, url=f"{self.base_url}/audio/read/{audio_id}")

    async def read(self, handle: AudioHandle) -> bytes:
        client = await self._get_client()
        url = handle.url or f"{self.base_url}/audio/read/{handle.id}"
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SynthesisError(f"Audio read failed: {e}") from e
        return response.content


class MockSpeechSynthesizer(SpeechSynthesizer):
    """
    Mock synthesizer for testing.

    Latency can be set per sentence to force out-of-order completion, and
    sentences listed in ``fail_on`` raise.
    """

    def __init__(
        self,
        latency_ms: float = 0,
        latencies: Optional[Dict[str, float]] = None,
        fail_on: Optional[Set[str]] = None,
    ):
        self.latency_ms = latency_ms
        self.latencies = latencies or {}
        self.fail_on = fail_on or set()
        self.texts: List[str] = []
        self._audio: Dict[str, bytes] = {}

    @property
    def name(self) -> str:
        return "mock"

    async def synthesize(self, text: str, voice: Optional[str] = None) -> AudioHandle:
        self.texts.append(text)
        await asyncio.sleep(self.latencies.get(text, self.latency_ms) / 1000)

        if text in self.fail_on:
            raise SynthesisError(f"Mock failure for: {text}")

        audio_id = f"audio_{len(self._audio)}"
        self._audio[audio_id] = text.encode("utf-8")
        return AudioHandle(id=audio_id, url=f"mock://audio/{audio_id}")

    async def read(self, handle: AudioHandle) -> bytes:
        return self._audio[handle.id]


__all__ = [
    "AudioHandle",
    "SynthesisError",
    "SpeechSynthesizer",
    "RemoteSpeechSynthesizer",
    "MockSpeechSynthesizer",
]

"""
Playback Module

Client-side reassembly of streamed audio. Parts of one index are joined in
part order, and indexes are played one after another in index order.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

import structlog

from ..runtime.base import AudioChunk

logger = structlog.get_logger(__name__)


@dataclass
class AudioPart:
    """One streamed fragment of the audio of an index."""

    index: int
    part: int
    data: bytes
    final: bool = False


class AudioOutput(ABC):
    """Audio device or player used by the reassembler."""

    @abstractmethod
    def start(self, index: int, audio: bytes, on_ended: Callable[[], None]) -> None:
        """Start playing ``audio``; call ``on_ended`` when playback finishes."""
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def resume(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass


class PlaybackReassembler:
    """
    Plays out-of-order audio strictly in index order.

    An index becomes playable once its final part and every earlier part
    have arrived. It starts only after the previous index reported the end
    of its playback.
    """

    def __init__(self, output: AudioOutput):
        self.output = output
        self._progress = asyncio.Event()
        self._reset_state()

    def _reset_state(self) -> None:
        self._parts: Dict[int, Dict[int, bytes]] = {}
        self._part_counts: Dict[int, int] = {}
        self._started: Set[int] = set()
        self.played: List[int] = []
        self._next_index = 0
        self._current: Optional[int] = None
        self.paused = False
        self._generation = getattr(self, "_generation", 0) + 1

    @property
    def playing(self) -> Optional[int]:
        """Index being played, if any."""
        return self._current

    def queue(self, part: AudioPart) -> None:
        """Accept one fragment."""
        if part.index < self._next_index or part.index in self._started:
            logger.warning("audio_part_late", index=part.index, part=part.part)
            return

        self._parts.setdefault(part.index, {})[part.part] = part.data
        if part.final:
            self._part_counts[part.index] = part.part + 1

        self._advance()

    def queue_chunk(self, chunk: AudioChunk, audio: bytes) -> None:
        """Accept a whole chunk as a single final part."""
        self.queue(AudioPart(index=chunk.index, part=0, data=audio, final=True))

    def _complete(self, index: int) -> bool:
        count = self._part_counts.get(index)
        if count is None:
            return False
        parts = self._parts.get(index, {})
        return all(i in parts for i in range(count))

    def _advance(self) -> None:
        if self.paused or self._current is not None:
            return

        index = self._next_index
        if not self._complete(index):
            return

        parts = self._parts.pop(index)
        count = self._part_counts.pop(index)
        audio = b"".join(parts[i] for i in range(count))

        self._current = index
        self._started.add(index)
        generation = self._generation

        logger.debug("audio_play_start", index=index, parts=count, size=len(audio))
        self.output.start(index, audio, lambda: self._on_ended(generation, index))

    def _on_ended(self, generation: int, index: int) -> None:
        if generation != self._generation or index != self._current:
            return

        self._current = None
        self.played.append(index)
        self._next_index = index + 1
        self._progress.set()
        self._advance()

    def pause(self) -> None:
        """Pause playback and hold back queued indexes."""
        self.paused = True
        if self._current is not None:
            self.output.pause()

    def resume(self) -> None:
        """Resume the paused index, or continue with the next one."""
        if not self.paused:
            return
        self.paused = False
        if self._current is not None:
            self.output.resume()
        else:
            self._advance()

    def reset(self) -> None:
        """Stop playback and forget every queued or partial index."""
        self.output.stop()
        self._reset_state()
        self._progress.set()

    async def wait_until_done(self, total: int) -> None:
        """Wait until ``total`` indexes have finished playing."""
        while len(self.played) < total:
            self._progress.clear()
            await self._progress.wait()


__all__ = ["AudioPart", "AudioOutput", "PlaybackReassembler"]

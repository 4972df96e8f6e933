"""
Speech Sequencer Module

Turns the token stream of a run into sentence-sized synthesis requests and
releases the synthesized chunks strictly in index order, whatever order
the synthesis calls complete in.
"""

import asyncio
from typing import Dict, List, Optional, Set

import structlog

from ..runtime.base import AudioChunk
from ..runtime.hooks import HookName, HooksHub
from .synthesis import SpeechSynthesizer

logger = structlog.get_logger(__name__)

TERMINALS = ".?!;"


class SpeechSequencer:
    """
    Sentence splitter and reorder buffer for one run.

    Indexes are assigned when a sentence closes, before its synthesis call
    starts. Finished calls land in ``_buffer`` keyed by index; the release
    frontier ``_frontier`` walks forward over every contiguous finished
    index, firing ``on_audio`` for each successful chunk. A failed index is
    stored as ``None`` so the frontier can pass it.
    """

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        hooks: HooksHub,
        run_id: str,
        voice: Optional[str] = None,
        min_sentence_length: int = 5,
    ):
        self.synthesizer = synthesizer
        self.hooks = hooks
        self.run_id = run_id
        self.voice = voice
        self.min_sentence_length = min_sentence_length

        # Released chunks, in index order
        self.chunks: List[AudioChunk] = []

        # Counters
        self.calls = 0
        self.failed = 0

        self._sentence = ""
        self._later = ""
        self._next_index = 0
        self._frontier = 0
        self._buffer: Dict[int, Optional[AudioChunk]] = {}
        self._releasing = False
        self._tasks: Set["asyncio.Task[None]"] = set()
        self.logger = logger.bind(run_id=run_id)

    def turn_on(self) -> None:
        """Start consuming the run's tokens."""
        self.hooks.add_hook(HookName.ON_TOKEN, self.handle_token)

    async def handle_token(self, token: str) -> None:
        """Accumulate a token and schedule every sentence it closes."""
        self._sentence += token

        while True:
            pos = self._find_boundary()
            if pos < 0:
                return
            sentence = self._sentence[: pos + 1]
            self._sentence = self._sentence[pos + 1 :]
            self._schedule(sentence)

    def _find_boundary(self) -> int:
        """Position of the first sentence-closing mark, -1 when none."""
        text = self._sentence
        for pos, char in enumerate(text):
            if char not in TERMINALS:
                continue
            if char != ".":
                return pos

            prev = text[pos - 1] if pos > 0 else ""
            if pos + 1 >= len(text):
                # A trailing dot may still turn into an ellipsis or a decimal
                return -1
            nxt = text[pos + 1]
            if nxt == "." or prev == ".":
                continue
            if prev.isdigit() and nxt.isdigit():
                continue
            return pos
        return -1

    def _schedule(self, text: str, last: bool = False) -> None:
        text = text.strip()

        if not last and len(text) < self.min_sentence_length:
            if text:
                self._later = f"{self._later} {text}".strip()
            return

        if self._later:
            text = f"{self._later} {text}".strip()
            self._later = ""
        if not text:
            return

        index = self._next_index
        self._next_index += 1
        self.calls += 1

        task = asyncio.create_task(self._synthesize(index, text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _synthesize(self, index: int, text: str) -> None:
        chunk: Optional[AudioChunk] = None
        try:
            handle = await self.synthesizer.synthesize(text, self.voice)
            chunk = AudioChunk(index=index, run_id=self.run_id, handle=handle.id, url=handle.url)
        except Exception as e:
            self.failed += 1
            self.logger.error("speech_synthesis_failed", index=index, error=str(e))

        self._buffer[index] = chunk
        await self._release_ready()

    async def _release_ready(self) -> None:
        """Release every contiguous finished chunk at the frontier."""
        if self._releasing:
            return

        self._releasing = True
        try:
            while self._frontier in self._buffer:
                chunk = self._buffer.pop(self._frontier)
                self._frontier += 1
                if chunk is None:
                    continue
                self.chunks.append(chunk)
                await self.hooks.execute_hook(HookName.ON_AUDIO, chunk)
        finally:
            self._releasing = False

    async def is_done(self) -> bool:
        """
        Flush the trailing sentence and wait for every synthesis call.

        Returns:
            True when no synthesis call failed
        """
        self._schedule(self._sentence, last=True)
        self._sentence = ""

        while self._tasks:
            await asyncio.gather(*list(self._tasks))

        if self.failed:
            self.logger.warning("speech_synthesis_incomplete", calls=self.calls, failed=self.failed)
        return self.failed == 0

    async def cancel(self) -> None:
        """Drop pending text and stop every synthesis call still running."""
        self._sentence = ""
        self._later = ""
        self.hooks.remove_hook(HookName.ON_TOKEN, self.handle_token)

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._buffer.clear()


__all__ = ["SpeechSequencer"]

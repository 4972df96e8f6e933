"""
Run Admission Module

Per-session FIFO admission: at most one run is active for a session at a
time, later runs wait in arrival order and give up after a timeout.
"""

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

import structlog

from .base import RunTimeout

logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    """Admission state of a session."""

    IDLE = "idle"
    BUSY = "busy"


_Waiter = Tuple[str, "asyncio.Future[None]"]


class RunAdmissionQueue:
    """
    Serializes runs per session.

    Each session owns a queue of waiting futures. ``release`` hands the
    session directly to the oldest live waiter, so later arrivals can never
    overtake earlier ones.

    Usage:
        async with queue.slot(session_id, run_id, timeout=30):
            ...
    """

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = default_timeout
        self._active: Dict[str, str] = {}
        self._waiters: Dict[str, Deque[_Waiter]] = {}

    def state(self, session_id: str) -> SessionState:
        if session_id in self._active:
            return SessionState.BUSY
        return SessionState.IDLE

    def active_run(self, session_id: str) -> Optional[str]:
        return self._active.get(session_id)

    def pending(self, session_id: str) -> int:
        """Number of runs waiting for the session."""
        waiters = self._waiters.get(session_id)
        if not waiters:
            return 0
        return sum(1 for _, future in waiters if not future.done())

    async def admit(
        self,
        session_id: str,
        run_id: str,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Wait until the run becomes the active run of the session.

        Args:
            session_id: Session to run against
            run_id: Run asking for admission
            timeout: Seconds to wait, ``None`` uses the default

        Raises:
            RunTimeout: If the session did not become free in time
        """
        if timeout is None:
            timeout = self.default_timeout

        waiters = self._waiters.setdefault(session_id, deque())
        if session_id not in self._active and not waiters:
            self._active[session_id] = run_id
            logger.debug("run_admitted", session_id=session_id, run_id=run_id)
            return

        future: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        entry = (run_id, future)
        waiters.append(entry)

        logger.debug(
            "run_waiting",
            session_id=session_id,
            run_id=run_id,
            active_run=self._active.get(session_id),
            position=len(waiters),
        )

        try:
            await asyncio.wait_for(future, timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError) as e:
            if future.done() and not future.cancelled():
                # Ownership arrived while giving up, pass it on.
                self.release(session_id)
            else:
                try:
                    waiters.remove(entry)
                except ValueError:
                    pass
                if not waiters and self._waiters.get(session_id) is waiters:
                    del self._waiters[session_id]

            if isinstance(e, asyncio.TimeoutError):
                logger.warning(
                    "run_admission_timeout",
                    session_id=session_id,
                    run_id=run_id,
                    timeout=timeout,
                )
                raise RunTimeout(session_id, run_id, timeout) from e
            raise

        logger.debug("run_admitted", session_id=session_id, run_id=run_id)

    def release(self, session_id: str) -> None:
        """Finish the active run and admit the oldest waiter, if any."""
        waiters = self._waiters.get(session_id)

        while waiters:
            run_id, future = waiters.popleft()
            if future.done():
                continue
            self._active[session_id] = run_id
            future.set_result(None)
            return

        self._waiters.pop(session_id, None)
        released = self._active.pop(session_id, None)
        logger.debug("session_idle", session_id=session_id, run_id=released)

    @asynccontextmanager
    async def slot(
        self,
        session_id: str,
        run_id: str,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[None]:
        """Hold the session for the duration of the block."""
        await self.admit(session_id, run_id, timeout)
        try:
            yield
        finally:
            self.release(session_id)


__all__ = ["SessionState", "RunAdmissionQueue"]

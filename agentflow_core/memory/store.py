"""
Session Store Module

Persistence interface for sessions and their run history, with an
in-memory implementation.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from ..runtime.base import Message, new_id

logger = structlog.get_logger(__name__)


class RunRole(str, Enum):
    """Which side of a run a record describes."""

    USER = "user"
    MODEL = "model"


class StoredSession(BaseModel):
    """Persisted session state."""

    id: str
    user_id: Optional[str] = None
    saved_prompts: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class RunRecord(BaseModel):
    """One half of a persisted run.

    User records keep the request as sent; model records keep the messages
    the run added to the conversation.
    """

    at: float = Field(default_factory=time.time)
    run_id: str
    session_id: str
    role: RunRole

    # User side
    request: Dict[str, Any] = Field(default_factory=dict)
    resolved_message: str = ""

    # Model side
    content: str = ""
    messages: List[Message] = Field(default_factory=list)


class SessionStore(ABC):
    """Abstract session store."""

    @abstractmethod
    async def new_session(
        self,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> StoredSession:
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[StoredSession]:
        pass

    @abstractmethod
    async def update_session(self, session: StoredSession) -> None:
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def get_user_sessions(self, user_id: str) -> List[str]:
        pass

    @abstractmethod
    async def get_runs(self, session_id: str) -> List[RunRecord]:
        pass

    @abstractmethod
    async def batch_push_runs(self, session_id: str, runs: List[RunRecord]) -> None:
        pass

    async def push_run(self, session_id: str, run: RunRecord) -> None:
        await self.batch_push_runs(session_id, [run])

    async def get_history(self, session_id: str) -> List[Message]:
        """Conversation messages of a session, oldest first."""
        runs = await self.get_runs(session_id)
        history: List[Message] = []
        for run in sorted(runs, key=lambda r: r.at):
            if run.role == RunRole.MODEL:
                history.extend(run.messages)
        return history


class InMemoryStore(SessionStore):
    """Session store kept in process memory."""

    def __init__(self):
        self.sessions: Dict[str, StoredSession] = {}
        self.user_sessions: Dict[str, List[str]] = {}
        self.runs: Dict[str, List[RunRecord]] = {}

    async def new_session(
        self,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> StoredSession:
        session = StoredSession(id=session_id or new_id("session"), user_id=user_id)
        self.sessions[session.id] = session
        self.runs.setdefault(session.id, [])

        if user_id:
            sessions = self.user_sessions.setdefault(user_id, [])
            if session.id not in sessions:
                sessions.append(session.id)

        logger.debug("session_created", session_id=session.id, user_id=user_id)
        return session

    async def get_session(self, session_id: str) -> Optional[StoredSession]:
        return self.sessions.get(session_id)

    async def update_session(self, session: StoredSession) -> None:
        session.updated_at = datetime.utcnow()
        self.sessions[session.id] = session

    async def delete_session(self, session_id: str) -> None:
        session = self.sessions.pop(session_id, None)
        self.runs.pop(session_id, None)
        if session and session.user_id:
            sessions = self.user_sessions.get(session.user_id, [])
            if session_id in sessions:
                sessions.remove(session_id)

    async def get_user_sessions(self, user_id: str) -> List[str]:
        return list(self.user_sessions.get(user_id, []))

    async def get_runs(self, session_id: str) -> List[RunRecord]:
        return list(self.runs.get(session_id, []))

    async def batch_push_runs(self, session_id: str, runs: List[RunRecord]) -> None:
        self.runs.setdefault(session_id, []).extend(runs)


__all__ = ["RunRole", "StoredSession", "RunRecord", "SessionStore", "InMemoryStore"]

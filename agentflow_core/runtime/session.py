"""
Session Module

Explicit state owned by a conversation session and by a single run.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..memory.store import SessionStore, StoredSession
from .base import Message
from .hooks import HooksHub


@dataclass
class Session:
    """A conversation: its history and saved prompt cache."""

    id: str
    user_id: Optional[str] = None
    history: List[Message] = field(default_factory=list)
    saved_prompts: Dict[str, str] = field(default_factory=dict)
    stored: Optional[StoredSession] = None

    @classmethod
    async def load(
        cls,
        store: SessionStore,
        session_id: str,
        user_id: Optional[str] = None,
        create: bool = True,
    ) -> "Session":
        """Load a session, creating it on first reference when ``create``."""
        stored = await store.get_session(session_id)
        if stored is None and create:
            stored = await store.new_session(session_id=session_id, user_id=user_id)

        if stored is None:
            return cls(id=session_id, user_id=user_id)

        return cls(
            id=stored.id,
            user_id=stored.user_id,
            history=await store.get_history(stored.id),
            saved_prompts=dict(stored.saved_prompts),
            stored=stored,
        )

    async def save(self, store: SessionStore) -> None:
        """Persist the saved prompt cache."""
        if self.stored is None:
            return
        self.stored.saved_prompts = dict(self.saved_prompts)
        await store.update_session(self.stored)


@dataclass
class Run:
    """One admitted invocation of an agent for a session."""

    id: str
    session: Session
    hooks: HooksHub


__all__ = ["Session", "Run"]

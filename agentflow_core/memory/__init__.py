"""Session persistence."""

from .remote import RemoteStore
from .store import InMemoryStore, RunRecord, RunRole, SessionStore, StoredSession

__all__ = [
    "InMemoryStore",
    "RemoteStore",
    "RunRecord",
    "RunRole",
    "SessionStore",
    "StoredSession",
]

"""Session store backed by a remote HTTP service."""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..runtime.base import StoreError, new_id
from .store import RunRecord, SessionStore, StoredSession

logger = structlog.get_logger(__name__)


class RemoteStore(SessionStore):
    """
    Session store speaking to a REST service.

    Every endpoint answers with a ``{"success", "error", "data"}`` envelope.
    """

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not url.startswith("http"):
            url = "https://" + url
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                headers={"Authorization": self.token},
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, f"/{path}", json=body)
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("store_request_failed", method=method, path=path, error=str(e))
            raise StoreError(f"Remote store request failed: {e}") from e

        if not isinstance(payload, dict):
            raise StoreError("Remote store returned an invalid response")
        return payload

    def _data(self, payload: Dict[str, Any], message: str) -> Any:
        if not payload.get("success"):
            raise StoreError(payload.get("error") or f"Remote database error: {message}")
        return payload.get("data")

    async def new_session(
        self,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> StoredSession:
        session_id = session_id or new_id("session")
        payload = await self._request(
            "POST",
            f"session/{session_id}",
            {"id": session_id, "user_id": user_id},
        )
        self._data(payload, "Can't create session")

        session = await self.get_session(session_id)
        if session is None:
            raise StoreError(f"Remote database error: session {session_id} missing after creation")
        return session

    async def get_session(self, session_id: str) -> Optional[StoredSession]:
        payload = await self._request("GET", f"session/{session_id}")
        if not payload.get("success") or not payload.get("data"):
            return None
        return StoredSession.model_validate(payload["data"])

    async def update_session(self, session: StoredSession) -> None:
        payload = await self._request(
            "PATCH",
            f"session/{session.id}",
            session.model_dump(mode="json"),
        )
        self._data(payload, "Can't update session")

    async def delete_session(self, session_id: str) -> None:
        payload = await self._request("DELETE", f"session/{session_id}")
        self._data(payload, "Can't delete session")

    async def get_user_sessions(self, user_id: str) -> List[str]:
        payload = await self._request("GET", f"user_sessions/{user_id}")
        return list(self._data(payload, "Can't get user sessions") or [])

    async def get_runs(self, session_id: str) -> List[RunRecord]:
        payload = await self._request("GET", f"run/{session_id}")
        data = self._data(payload, "Can't get session runs") or []
        return [RunRecord.model_validate(item) for item in data]

    async def batch_push_runs(self, session_id: str, runs: List[RunRecord]) -> None:
        payload = await self._request(
            "POST",
            f"run/{session_id}",
            {"history": [run.model_dump(mode="json") for run in runs]},
        )
        self._data(payload, "Can't push runs")


__all__ = ["RemoteStore"]

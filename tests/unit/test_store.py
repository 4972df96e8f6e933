"""Unit tests for session stores."""

import json

import httpx
import pytest

from agentflow_core.memory import InMemoryStore, RemoteStore, RunRecord, RunRole, StoredSession
from agentflow_core.runtime import Message, Role, StoreError


def model_run(session_id, run_id, at, text):
    return RunRecord(
        at=at,
        run_id=run_id,
        session_id=session_id,
        role=RunRole.MODEL,
        content=text,
        messages=[
            Message(role=Role.USER, content=f"question {run_id}"),
            Message(role=Role.ASSISTANT, content=text, name="Helper"),
        ],
    )


class TestInMemoryStore:
    """Tests for InMemoryStore."""

    @pytest.mark.asyncio
    async def test_session_lifecycle(self, store):
        """Test create, update and delete."""
        session = await store.new_session(session_id="session_1", user_id="user_1")
        session.saved_prompts["main"] = "Teach chords"
        await store.update_session(session)

        loaded = await store.get_session("session_1")
        assert loaded.saved_prompts == {"main": "Teach chords"}
        assert await store.get_user_sessions("user_1") == ["session_1"]

        await store.delete_session("session_1")
        assert await store.get_session("session_1") is None
        assert await store.get_user_sessions("user_1") == []

    @pytest.mark.asyncio
    async def test_history_from_model_runs(self, store):
        """Test history is rebuilt from model records in time order."""
        await store.new_session(session_id="session_1")
        user = RunRecord(run_id="run_2", session_id="session_1", role=RunRole.USER, request={"message": "q"})
        await store.batch_push_runs("session_1", [model_run("session_1", "run_2", 20.0, "second"), user])
        await store.push_run("session_1", model_run("session_1", "run_1", 10.0, "first"))

        history = await store.get_history("session_1")

        assert [m.text for m in history] == ["question run_1", "first", "question run_2", "second"]

    @pytest.mark.asyncio
    async def test_unknown_session_history(self, store):
        """Test unknown sessions have an empty history."""
        assert await store.get_history("missing") == []


class FakeStoreService:
    """In-process stand-in for the remote store service."""

    def __init__(self):
        self.sessions = {}
        self.runs = {}
        self.requests = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip("/").split("/")
        resource, key = parts[0], parts[1]
        body = json.loads(request.content) if request.content else None

        if resource == "session":
            if request.method == "POST":
                self.sessions[key] = {"id": key, "user_id": body.get("user_id")}
                return self.ok(None)
            if request.method == "GET":
                return self.ok(self.sessions.get(key))
            if request.method == "PATCH":
                self.sessions[key] = body
                return self.ok(None)
            if request.method == "DELETE":
                self.sessions.pop(key, None)
                return self.ok(None)

        if resource == "user_sessions":
            return self.ok([sid for sid, s in self.sessions.items() if s.get("user_id") == key])

        if resource == "run":
            if request.method == "POST":
                self.runs.setdefault(key, []).extend(body["history"])
                return self.ok(None)
            return self.ok(self.runs.get(key, []))

        return httpx.Response(404, json={"success": False, "error": "Not found"})

    @staticmethod
    def ok(data):
        return httpx.Response(200, json={"success": True, "error": None, "data": data})


@pytest.fixture
def service() -> FakeStoreService:
    return FakeStoreService()


@pytest.fixture
def remote(service) -> RemoteStore:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(service.handle),
        base_url="https://store.test",
        headers={"Authorization": "secret"},
    )
    return RemoteStore("https://store.test", token="secret", client=client)


class TestRemoteStore:
    """Tests for RemoteStore."""

    @pytest.mark.asyncio
    async def test_default_client(self):
        """Test the lazily created client targets the store with its token."""
        remote = RemoteStore("store.test", token="secret")

        client = await remote._get_client()

        assert client.base_url.host == "store.test"
        assert client.base_url.scheme == "https"
        assert client.headers["Authorization"] == "secret"
        await remote.close()

    @pytest.mark.asyncio
    async def test_session_round_trip(self, remote, service):
        """Test sessions are created, read and updated over HTTP."""
        session = await remote.new_session(session_id="session_1", user_id="user_1")
        assert isinstance(session, StoredSession)
        assert (session.id, session.user_id) == ("session_1", "user_1")

        session.saved_prompts["main"] = "Teach chords"
        await remote.update_session(session)

        loaded = await remote.get_session("session_1")
        assert loaded.saved_prompts == {"main": "Teach chords"}
        assert await remote.get_user_sessions("user_1") == ["session_1"]
        assert [r.method for r in service.requests[:2]] == ["POST", "GET"]

    @pytest.mark.asyncio
    async def test_runs_pushed_as_history(self, remote, service):
        """Test runs are sent in a history envelope and read back."""
        await remote.batch_push_runs("session_1", [model_run("session_1", "run_1", 10.0, "first")])

        assert service.runs["session_1"][0]["role"] == "model"
        history = await remote.get_history("session_1")
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_missing_session(self, remote):
        """Test an unknown session reads as None."""
        assert await remote.get_session("missing") is None

    @pytest.mark.asyncio
    async def test_failure_envelope(self):
        """Test unsuccessful envelopes raise StoreError."""

        def handler(request):
            return httpx.Response(200, json={"success": False, "error": "Database down", "data": None})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://store.test")
        remote = RemoteStore("store.test", client=client)

        with pytest.raises(StoreError, match="Database down"):
            await remote.get_runs("session_1")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Test network failures raise StoreError."""

        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://store.test")
        remote = RemoteStore("store.test", client=client)

        with pytest.raises(StoreError):
            await remote.delete_session("session_1")

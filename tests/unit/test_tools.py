"""Unit tests for tool execution."""

import asyncio
import json

import httpx
import pytest

from agentflow_core.runtime import (
    AgentTool,
    ApiTool,
    ClientSideTool,
    FunctionTool,
    HookName,
    ToolCall,
    ToolExecutor,
    validate_arguments,
)
from agentflow_core.runtime.tools import AGENT_UNREACHABLE, INVALID_ARGUMENTS, substitute

WEATHER_PARAMETERS = {
    "type": "object",
    "properties": {
        "city": {"type": "string"},
        "days": {"type": "integer", "minimum": 1},
    },
    "required": ["city"],
}


@pytest.fixture
def executor(hooks):
    return ToolExecutor(hooks, session_id="session_1", run_id="run_1")


class TestValidateArguments:
    """Tests for argument validation."""

    def test_valid_arguments(self):
        """Test a matching object has no errors."""
        assert validate_arguments(WEATHER_PARAMETERS, {"city": "Paris", "days": 2}) == []

    def test_missing_required(self):
        """Test missing required properties are reported."""
        errors = validate_arguments(WEATHER_PARAMETERS, {"days": 2})
        assert errors == ["arguments: missing required property 'city'"]

    def test_wrong_types(self):
        """Test type mismatches, including bool for integer."""
        errors = validate_arguments(WEATHER_PARAMETERS, {"city": 3, "days": True})
        assert len(errors) == 2
        assert "arguments.city" in errors[0]

    def test_enum_and_bounds(self):
        """Test enum and minimum constraints."""
        schema = {
            "type": "object",
            "properties": {
                "unit": {"type": "string", "enum": ["c", "f"]},
                "days": {"type": "integer", "minimum": 1},
            },
        }
        errors = validate_arguments(schema, {"unit": "k", "days": 0})
        assert len(errors) == 2

    def test_array_items(self):
        """Test array items are validated."""
        schema = {"type": "array", "items": {"type": "string"}}
        assert validate_arguments(schema, ["a", 1]) == ["arguments[1]: expected string, got int"]

    def test_additional_properties(self):
        """Test closed objects reject unknown keys."""
        schema = {"type": "object", "properties": {}, "additionalProperties": False}
        assert validate_arguments(schema, {"x": 1}) == ["arguments: unexpected property 'x'"]


class TestSubstitute:
    """Tests for placeholder substitution."""

    def test_substitute_values(self):
        """Test placeholders are replaced and unknown ones emptied."""
        result = substitute("/users/${id}?q=${query}&x=${missing}", {"id": 7, "query": "a b"})
        assert result == "/users/7?q=a b&x="


class TestToolExecutor:
    """Tests for ToolExecutor."""

    @pytest.mark.asyncio
    async def test_invalid_json_arguments(self, executor, hooks):
        """Test unparsable arguments produce an errors result without executing."""
        handler_calls = []
        tool = FunctionTool(name="weather", parameters=WEATHER_PARAMETERS, handler=handler_calls.append)
        events = []
        hooks.add_hook(HookName.ON_TOOL_CALL, lambda p: events.append("call"))
        hooks.add_hook(HookName.ON_TOOL_RESULT, lambda p: events.append("result"))

        result = await executor.execute_one(ToolCall(id="c1", name="weather", arguments="{city: Paris"), tool)

        assert json.loads(result.content) == {"errors": INVALID_ARGUMENTS}
        assert result.call_id == "c1"
        assert handler_calls == []
        assert events == ["call", "result"]

    @pytest.mark.asyncio
    async def test_non_object_arguments(self, executor):
        """Test JSON that is not an object is rejected."""
        tool = FunctionTool(name="weather", handler=lambda **kwargs: "ok")
        result = await executor.execute_one(ToolCall(id="c1", name="weather", arguments="[1, 2]"), tool)
        assert "errors" in json.loads(result.content)

    @pytest.mark.asyncio
    async def test_validation_errors(self, executor):
        """Test schema violations return the error list."""
        tool = FunctionTool(name="weather", parameters=WEATHER_PARAMETERS, handler=lambda **kwargs: "ok")

        result = await executor.execute_one(ToolCall(id="c1", name="weather", arguments='{"days": 3}'), tool)

        assert json.loads(result.content) == {"errors": ["arguments: missing required property 'city'"]}

    @pytest.mark.asyncio
    async def test_sync_function(self, executor):
        """Test a sync handler runs and its result is wrapped."""
        tool = FunctionTool(
            name="weather",
            parameters=WEATHER_PARAMETERS,
            handler=lambda city, days=1: {"city": city, "forecast": ["sunny"] * days},
        )

        result = await executor.execute_one(
            ToolCall(id="c1", name="weather", arguments='{"city": "Paris", "days": 2}'),
            tool,
        )

        assert json.loads(result.content) == {"result": {"city": "Paris", "forecast": ["sunny", "sunny"]}}

    @pytest.mark.asyncio
    async def test_async_function(self, executor):
        """Test an async handler is awaited."""

        async def lookup(city):
            return f"{city}: 21C"

        tool = FunctionTool(name="weather", parameters=WEATHER_PARAMETERS, handler=lookup)
        result = await executor.execute_one(ToolCall(id="c1", name="weather", arguments={"city": "Oslo"}), tool)

        assert json.loads(result.content) == {"result": "Oslo: 21C"}

    @pytest.mark.asyncio
    async def test_function_error(self, executor):
        """Test handler exceptions become error text."""

        def broken(city):
            raise ValueError("service down")

        tool = FunctionTool(name="weather", parameters=WEATHER_PARAMETERS, handler=broken)
        result = await executor.execute_one(ToolCall(id="c1", name="weather", arguments={"city": "Oslo"}), tool)

        assert result.content == "The tool weather faced an error: service down"

    @pytest.mark.asyncio
    async def test_function_timeout(self, executor):
        """Test slow handlers are cut off."""

        async def slow():
            await asyncio.sleep(1)

        tool = FunctionTool(name="slow", handler=slow, timeout_seconds=0.01)
        result = await executor.execute_one(ToolCall(id="c1", name="slow"), tool)

        assert result.content.startswith("The tool slow faced an error: timed out")

    @pytest.mark.asyncio
    async def test_api_tool(self, hooks):
        """Test placeholders reach the URL, headers and body."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("x-user")
            seen["body"] = request.content.decode()
            return httpx.Response(200, text="created order 42")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        executor = ToolExecutor(hooks, "session_1", "run_1", http_client=client)
        tool = ApiTool(
            name="order",
            parameters={"type": "object", "properties": {"item": {"type": "string"}, "user": {"type": "string"}}},
            url="https://shop.test/users/${user}/orders",
            method="POST",
            headers={"x-user": "${user}"},
            body='{"item": "${item}"}',
        )

        result = await executor.execute_one(
            ToolCall(id="c1", name="order", arguments={"item": "tea", "user": "u1"}),
            tool,
        )

        assert result.content == "created order 42"
        assert seen == {
            "method": "POST",
            "url": "https://shop.test/users/u1/orders",
            "auth": "u1",
            "body": '{"item": "tea"}',
        }

    @pytest.mark.asyncio
    async def test_api_tool_get_has_no_body(self, hooks):
        """Test GET requests never send the body template."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(200, text="ok")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        executor = ToolExecutor(hooks, "session_1", "run_1", http_client=client)
        tool = ApiTool(name="ping", url="https://api.test/ping", body="ignored")

        await executor.execute_one(ToolCall(id="c1", name="ping"), tool)

        assert bodies == [b""]

    @pytest.mark.asyncio
    async def test_api_tool_error(self, hooks):
        """Test HTTP failures become error text."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        )
        executor = ToolExecutor(hooks, "session_1", "run_1", http_client=client)
        tool = ApiTool(name="ping", url="https://api.test/ping")

        result = await executor.execute_one(ToolCall(id="c1", name="ping"), tool)

        assert result.content.startswith("System faced an error executing the tool:")

    @pytest.mark.asyncio
    async def test_agent_tool(self, executor):
        """Test sub-agents receive the session, run and instructions."""
        received = []

        async def delegate(session_id, run_id, instructions):
            received.append((session_id, run_id, instructions))
            return "Here is the summary"

        tool = AgentTool(
            name="summarizer",
            parameters={"type": "object", "properties": {"instructions": {"type": "string"}}, "required": ["instructions"]},
            handler=delegate,
        )
        result = await executor.execute_one(
            ToolCall(id="c1", name="summarizer", arguments={"instructions": "Summarize"}),
            tool,
        )

        assert result.content == "Here is the summary"
        assert received == [("session_1", "run_1", "Summarize")]

    @pytest.mark.asyncio
    async def test_agent_tool_failure(self, executor):
        """Test sub-agent failures are reported generically."""

        async def delegate(session_id, run_id, instructions):
            raise RuntimeError("agent crashed")

        tool = AgentTool(name="summarizer", handler=delegate)
        result = await executor.execute_one(
            ToolCall(id="c1", name="summarizer", arguments={"instructions": "Summarize"}),
            tool,
        )

        assert result.content == AGENT_UNREACHABLE

    @pytest.mark.asyncio
    async def test_client_side_tool(self, executor, hooks):
        """Test client-side tools emit an action and are acknowledged."""
        actions = []
        hooks.add_hook(HookName.ON_CLIENT_SIDE_ACTION, actions.append)
        tool = ClientSideTool(name="open_page")

        result = await executor.execute_one(
            ToolCall(id="c9", name="open_page", arguments={"url": "/pricing"}),
            tool,
        )

        assert actions == [{"id": "c9", "tool_name": "open_page", "arguments": {"url": "/pricing"}}]
        assert result.content.startswith("Executed the action open_page successfully")

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self, executor):
        """Test all calls of a turn run at the same time, keeping order."""
        first_started = asyncio.Event()
        second_started = asyncio.Event()

        async def first():
            first_started.set()
            await second_started.wait()
            return "first"

        async def second():
            second_started.set()
            await first_started.wait()
            return "second"

        entries = [
            (ToolCall(id="c1", name="first"), FunctionTool(name="first", handler=first)),
            (ToolCall(id="c2", name="second"), FunctionTool(name="second", handler=second)),
        ]

        results = await asyncio.wait_for(executor.execute(entries), timeout=2)

        assert [r.call_id for r in results] == ["c1", "c2"]
        assert [json.loads(r.content)["result"] for r in results] == ["first", "second"]

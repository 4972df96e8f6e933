"""
Tool Invocation Module

Validates and executes the tool calls of one model turn. Every failure is
turned into textual result content so the model can react to it; nothing
raises out of the executor.
"""

import asyncio
import inspect
import json
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import structlog

from .base import (
    AgentTool,
    ApiTool,
    ClientSideTool,
    FunctionTool,
    ToolCall,
    ToolResult,
    ToolSchema,
)
from .hooks import HookName, HooksHub
from .validation import validate_arguments

logger = structlog.get_logger(__name__)

INVALID_ARGUMENTS = "Invalid request: arguments are not a valid JSON object"
AGENT_UNREACHABLE = "Could not communicate with agent!"

PLACEHOLDER = re.compile(r"\$\{(\w+)\}")


def substitute(template: str, values: Dict[str, Any]) -> str:
    """Replace ``${name}`` placeholders; unknown names become empty."""

    def replace(match: "re.Match[str]") -> str:
        value = values.get(match.group(1))
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value)

    return PLACEHOLDER.sub(replace, template)


def parse_arguments(raw: str) -> Optional[Dict[str, Any]]:
    """Parse call arguments, ``None`` unless they form a JSON object."""
    try:
        parsed = json.loads(raw) if raw.strip() else {}
    except (json.JSONDecodeError, AttributeError):
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


class ToolExecutor:
    """
    Executes tool calls for one run.

    Features:
    - Argument parsing and schema validation
    - Function, HTTP API, sub-agent and client-side tools
    - Concurrent execution of all calls of a model turn
    - ``on_tool_call`` / ``on_tool_result`` hooks around every call
    """

    def __init__(
        self,
        hooks: HooksHub,
        session_id: str,
        run_id: str,
        http_client: Optional[httpx.AsyncClient] = None,
        default_timeout: Optional[float] = 30.0,
        thread_pool: Optional[ThreadPoolExecutor] = None,
    ):
        self.hooks = hooks
        self.session_id = session_id
        self.run_id = run_id
        self.default_timeout = default_timeout
        self._http_client = http_client
        self._thread_pool = thread_pool
        self.logger = logger.bind(session_id=session_id, run_id=run_id)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.default_timeout)
        return self._http_client

    async def execute(self, entries: Sequence[Tuple[ToolCall, ToolSchema]]) -> List[ToolResult]:
        """Execute calls concurrently; results keep the order of ``entries``."""
        return list(
            await asyncio.gather(*(self.execute_one(call, tool) for call, tool in entries))
        )

    async def execute_one(self, call: ToolCall, tool: ToolSchema) -> ToolResult:
        """Execute a single call and package its result."""
        start_time = time.perf_counter()
        await self.hooks.execute_hook(HookName.ON_TOOL_CALL, call)

        self.logger.info(
            "tool_execute_start",
            call_id=call.id,
            tool=call.name,
            kind=tool.kind.value,
        )

        arguments = parse_arguments(call.arguments)
        if arguments is None:
            content = json.dumps({"errors": INVALID_ARGUMENTS})
        else:
            errors = validate_arguments(tool.parameters, arguments)
            if errors:
                content = json.dumps({"errors": errors})
            else:
                content = await self._dispatch(call, tool, arguments)

        result = ToolResult(call=call, content=content)

        self.logger.info(
            "tool_execute_done",
            call_id=call.id,
            tool=call.name,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )

        await self.hooks.execute_hook(HookName.ON_TOOL_RESULT, result)
        return result

    async def _dispatch(self, call: ToolCall, tool: ToolSchema, arguments: Dict[str, Any]) -> str:
        if isinstance(tool, FunctionTool):
            return await self._execute_function(tool, arguments)
        if isinstance(tool, ApiTool):
            return await self._execute_api(tool, arguments)
        if isinstance(tool, AgentTool):
            return await self._execute_agent(tool, arguments)
        if isinstance(tool, ClientSideTool):
            return await self._execute_client_side(call, tool, arguments)

        self.logger.error("tool_kind_unsupported", tool=tool.name)
        return f"The tool {tool.name} can not be executed"

    async def _execute_function(self, tool: FunctionTool, arguments: Dict[str, Any]) -> str:
        if tool.handler is None:
            return f"The tool {tool.name} faced an error: no handler registered"

        timeout = tool.timeout_seconds or self.default_timeout
        try:
            if inspect.iscoroutinefunction(tool.handler):
                result = await asyncio.wait_for(tool.handler(**arguments), timeout=timeout)
            else:
                loop = asyncio.get_running_loop()
                result = await asyncio.wait_for(
                    loop.run_in_executor(self._thread_pool, lambda: tool.handler(**arguments)),
                    timeout=timeout,
                )
        except asyncio.TimeoutError:
            self.logger.error("tool_function_timeout", tool=tool.name, timeout=timeout)
            return f"The tool {tool.name} faced an error: timed out after {timeout}s"
        except Exception as e:
            self.logger.error("tool_function_failed", tool=tool.name, error=str(e))
            return f"The tool {tool.name} faced an error: {e}"

        return json.dumps({"result": result}, default=str)

    async def _execute_api(self, tool: ApiTool, arguments: Dict[str, Any]) -> str:
        method = tool.method.upper()
        url = substitute(tool.url, arguments)
        headers = {key: substitute(value, arguments) for key, value in tool.headers.items()}
        content = None
        if method != "GET" and tool.body is not None:
            content = substitute(tool.body, arguments)

        try:
            client = await self._get_client()
            response = await client.request(
                method,
                url,
                headers=headers,
                content=content,
                timeout=tool.timeout_seconds or self.default_timeout,
            )
            response.raise_for_status()
            return response.text
        except httpx.HTTPError as e:
            self.logger.error("tool_api_failed", tool=tool.name, url=url, error=str(e))
            return f"System faced an error executing the tool: {e}"

    async def _execute_agent(self, tool: AgentTool, arguments: Dict[str, Any]) -> str:
        instructions = arguments.get("instructions")
        if not isinstance(instructions, str):
            return json.dumps({"errors": "Invalid instructions sent to an agent running as a tool"})
        if tool.handler is None:
            return AGENT_UNREACHABLE

        try:
            return await tool.handler(self.session_id, self.run_id, instructions)
        except Exception as e:
            self.logger.error("tool_agent_failed", tool=tool.name, agent_id=tool.agent_id, error=str(e))
            return AGENT_UNREACHABLE

    async def _execute_client_side(
        self,
        call: ToolCall,
        tool: ClientSideTool,
        arguments: Dict[str, Any],
    ) -> str:
        await self.hooks.execute_hook(
            HookName.ON_CLIENT_SIDE_ACTION,
            {"id": call.id, "tool_name": tool.name, "arguments": arguments},
        )
        return (
            f"Executed the action {tool.name} successfully, keep the conversation "
            "going and inform the user that the action was executed"
        )


__all__ = ["ToolExecutor", "substitute", "parse_arguments", "INVALID_ARGUMENTS", "AGENT_UNREACHABLE"]

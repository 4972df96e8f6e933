"""
Round Trip Module

Drives one prompt stage: calls the model, executes the tools it asks for,
feeds the results back, and repeats until the model answers without tool
calls.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import structlog

from .base import Message, Role, RoundTripLimitExceeded, ToolNotFound, ToolResult, ToolSchema
from .executor import GenerationRequest, GenerationResult, LLMClient
from .hooks import HookName, HooksHub
from .tools import ToolExecutor

logger = structlog.get_logger(__name__)


@dataclass
class StreamMessage:
    """Payload of ``on_stream`` events."""

    run_id: str
    content: str
    final: bool = False
    type: str = "text"


@dataclass
class LoopResult:
    """Final response of a stage."""

    content: str
    tool_results: List[ToolResult] = field(default_factory=list)
    transcript: List[Message] = field(default_factory=list)
    round_trips: int = 0


class RoundTripLoop:
    """
    Model round-trip loop for one stage.

    Each iteration streams one model call. Tool calls are resolved against
    the declared tools, executed concurrently and appended to the request's
    follow-up messages before the next call.
    """

    def __init__(
        self,
        client: LLMClient,
        hooks: HooksHub,
        tool_executor: ToolExecutor,
        run_id: str,
        delay: float = 0.0,
        max_round_trips: Optional[int] = None,
    ):
        self.client = client
        self.hooks = hooks
        self.tool_executor = tool_executor
        self.run_id = run_id
        self.delay = delay
        self.max_round_trips = max_round_trips
        self.logger = logger.bind(run_id=run_id, client=client.name)

    async def run(self, request: GenerationRequest, tools: Sequence[ToolSchema]) -> LoopResult:
        """
        Run the stage to its final response.

        Raises:
            ToolNotFound: If the model calls a tool that was not declared
            RoundTripLimitExceeded: If ``max_round_trips`` is exceeded
        """
        declared: Dict[str, ToolSchema] = {tool.name: tool for tool in tools}
        request.tools = list(tools)
        results: List[ToolResult] = []
        transcript: List[Message] = []
        retried_empty = False
        round_trips = 0

        while True:
            if self.max_round_trips is not None and round_trips >= self.max_round_trips:
                raise RoundTripLimitExceeded(
                    f"Stage exceeded {self.max_round_trips} model round trips"
                )
            round_trips += 1

            response = await self._generate(request)

            if not response.tool_calls:
                if not response.content and not retried_empty:
                    self.logger.warning("llm_empty_response_retry", round_trip=round_trips)
                    retried_empty = True
                    request.tools = []
                    continue

                await self.hooks.execute_hook(
                    HookName.ON_STREAM,
                    StreamMessage(run_id=self.run_id, content="", final=True),
                )
                return LoopResult(
                    content=response.content,
                    tool_results=results,
                    transcript=transcript,
                    round_trips=round_trips,
                )

            entries = []
            for call in response.tool_calls:
                tool = declared.get(call.name)
                if tool is None:
                    self.logger.error("tool_not_found", tool=call.name, call_id=call.id)
                    raise ToolNotFound(call.name)
                entries.append((call, tool))

            self.logger.info(
                "round_trip_tool_calls",
                round_trip=round_trips,
                tools=[call.name for call in response.tool_calls],
            )

            turn_results = await self.tool_executor.execute(entries)
            results.extend(turn_results)

            echo = Message(
                role=Role.ASSISTANT,
                content=response.content,
                tool_calls=list(response.tool_calls),
            )
            follow_up = [echo] + [result.to_message() for result in turn_results]
            request.follow_up.extend(follow_up)
            transcript.extend(follow_up)

            if self.delay:
                await asyncio.sleep(self.delay)

    async def _generate(self, request: GenerationRequest) -> GenerationResult:
        """One streamed model call, dispatching tokens as they arrive."""
        final: Optional[GenerationResult] = None

        async for token, result in self.client.stream(request):
            if token:
                await self.hooks.execute_hook(HookName.ON_TOKEN, token)
                await self.hooks.execute_hook(
                    HookName.ON_STREAM,
                    StreamMessage(run_id=self.run_id, content=token),
                )
            if result is not None:
                final = result

        if final is None:
            final = GenerationResult()
        return final


__all__ = ["StreamMessage", "LoopResult", "RoundTripLoop"]

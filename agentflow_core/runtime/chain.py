"""
Prompt Chain Module

Runs an agent's prompt stages in index order. Each stage resolves its
inputs, renders its prompt, runs the model round-trip loop and hands its
output to later stages under its variable name.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from .base import (
    AgentDefinition,
    AgentExecutionError,
    InputSlot,
    InvalidWantedResponse,
    Message,
    MissingRequiredInputs,
    PromptStage,
    Role,
    StageResponse,
    StageType,
    ToolResult,
    ToolSchema,
)
from .executor import ClientRegistry, GenerationRequest, LLMClient
from .loop import RoundTripLoop
from .prompts import mix_history, render_prompt
from .session import Run
from .tools import ToolExecutor
from .validation import validate_arguments

logger = structlog.get_logger(__name__)

EXTRACTION_PROMPT = (
    "You extract values from a conversation. Return a JSON object with the "
    "requested keys. Use null for any value the conversation does not provide."
)


@dataclass
class ChainResult:
    """Output of a full chain run."""

    responses: Dict[str, StageResponse] = field(default_factory=dict)
    history_delta: List[Message] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    content: str = ""


class PromptChain:
    """
    Prompt chain executor for one run of an agent.

    Example:
        chain = PromptChain(agent, run, registry, tool_executor)
        result = await chain.run({"message": "Hi", "topic": "guitar"})
        print(result.responses["main3"].content)
    """

    def __init__(
        self,
        agent: AgentDefinition,
        run: Run,
        registry: ClientRegistry,
        tool_executor: ToolExecutor,
        tools: Optional[Sequence[ToolSchema]] = None,
        round_trip_delay: float = 0.0,
        max_round_trips: Optional[int] = None,
        llm_options: Optional[Dict[str, Any]] = None,
    ):
        self.agent = agent
        self.run_state = run
        self.registry = registry
        self.tool_executor = tool_executor
        self.tools = list(agent.tools) + list(tools or [])
        self.round_trip_delay = round_trip_delay
        self.max_round_trips = max_round_trips
        self.llm_options = llm_options or {}
        self.logger = logger.bind(agent_id=agent.id, run_id=run.id, session_id=run.session.id)

    def _label(self, stage: PromptStage) -> str:
        return stage.variable_name if self.agent.chained else self.agent.name

    async def run(
        self,
        inputs: Dict[str, Any],
        history: Optional[List[Message]] = None,
        wanted_responses: Optional[List[str]] = None,
        per_stage_delay: Optional[float] = None,
        prompt: Optional[Message] = None,
    ) -> ChainResult:
        """
        Run every stage of the agent.

        Args:
            inputs: Run inputs; stage outputs are added under their variable names
            history: Prior conversation, defaults to the session history
            wanted_responses: Stage names to return, all when ``None``
            per_stage_delay: Seconds to wait between stages
            prompt: The user message of this run

        Raises:
            MissingRequiredInputs: If a stage can not resolve its inputs
            InvalidWantedResponse: If a wanted stage did not run
        """
        if history is None:
            history = list(self.run_state.session.history)
        if prompt is None and inputs.get("message"):
            prompt = Message(role=Role.USER, content=str(inputs["message"]))

        result = ChainResult()
        if prompt is not None:
            result.history_delta.append(prompt)

        stages = self.agent.ordered_prompts
        for position, stage in enumerate(stages):
            response, transcript = await self._run_stage(
                stage,
                inputs,
                history + result.history_delta,
            )
            result.responses[stage.variable_name] = response
            result.history_delta.extend(transcript)
            result.tool_results.extend(response.tool_calls)
            result.content = response.content

            inputs[stage.variable_name] = response.data if response.data is not None else response.content

            if per_stage_delay and position < len(stages) - 1:
                await asyncio.sleep(per_stage_delay)

        if wanted_responses:
            for name in wanted_responses:
                if name not in result.responses:
                    raise InvalidWantedResponse(name)
            result.responses = {name: result.responses[name] for name in wanted_responses}

        return result

    async def _run_stage(
        self,
        stage: PromptStage,
        inputs: Dict[str, Any],
        history: List[Message],
    ) -> Tuple[StageResponse, List[Message]]:
        client = self.registry.get(stage.llm_client)
        rendered = await self.resolve_prompt(stage, client, inputs, history)

        options = {**stage.options, **self.llm_options}
        if stage.type == StageType.JSON:
            options.setdefault("response_format", {"type": "json_object"})

        request = GenerationRequest(
            model=stage.model,
            system_prompt=f"You are an AI assistant called {self.agent.name}. {rendered}",
            messages=list(history),
            options=options,
        )

        self.logger.info("stage_start", stage=stage.variable_name, model=stage.model)

        loop = RoundTripLoop(
            client=client,
            hooks=self.run_state.hooks,
            tool_executor=self.tool_executor,
            run_id=self.run_state.id,
            delay=self.round_trip_delay,
            max_round_trips=self.max_round_trips,
        )
        loop_result = await loop.run(request, self.tools)

        data = None
        if stage.type == StageType.JSON:
            try:
                data = json.loads(loop_result.content)
            except json.JSONDecodeError:
                self.logger.warning("stage_invalid_json", stage=stage.variable_name)

        label = self._label(stage)
        transcript: List[Message] = []
        for message in loop_result.transcript:
            if message.role == Role.ASSISTANT:
                message = message.model_copy(update={"name": label})
            transcript.append(message)
        transcript.append(Message(role=Role.ASSISTANT, content=loop_result.content, name=label))

        self.logger.info(
            "stage_done",
            stage=stage.variable_name,
            round_trips=loop_result.round_trips,
            tool_calls=len(loop_result.tool_results),
        )

        response = StageResponse(
            name=stage.variable_name,
            content=loop_result.content,
            data=data,
            tool_calls=loop_result.tool_results,
        )
        return response, transcript

    async def resolve_prompt(
        self,
        stage: PromptStage,
        client: LLMClient,
        inputs: Dict[str, Any],
        history: List[Message],
    ) -> str:
        """Rendered prompt of a stage, reusing the session cache when conversational."""
        saved_prompts = self.run_state.session.saved_prompts
        if stage.conversational and stage.variable_name in saved_prompts:
            return saved_prompts[stage.variable_name]

        values, missing = collect_inputs(stage, inputs)

        if missing and not stage.conversational:
            extracted = await self._extract_inputs(stage, client, missing, history)
            values.update(extracted)
            missing = [slot for slot in missing if slot.id not in extracted]

        if missing:
            raise MissingRequiredInputs(stage.variable_name, [slot.id for slot in missing])

        rendered = render_prompt(stage.content, values)
        if stage.conversational:
            saved_prompts[stage.variable_name] = rendered
        return rendered

    async def _extract_inputs(
        self,
        stage: PromptStage,
        client: LLMClient,
        missing: List[InputSlot],
        history: List[Message],
    ) -> Dict[str, Any]:
        """Ask the model for missing input values."""
        schema = {
            "type": "object",
            "properties": {slot.id: slot.to_json_schema() for slot in missing},
            "required": [slot.id for slot in missing],
        }
        context = mix_history(history)
        request = GenerationRequest(
            model=stage.model,
            system_prompt=EXTRACTION_PROMPT,
            prompt=Message(role=Role.USER, content=context or "No conversation yet."),
        )

        self.logger.info(
            "stage_extract_inputs",
            stage=stage.variable_name,
            missing=[slot.id for slot in missing],
        )

        try:
            data = await client.generate_object(request, schema)
        except AgentExecutionError as e:
            self.logger.warning("stage_extract_failed", stage=stage.variable_name, error=str(e))
            return {}

        extracted: Dict[str, Any] = {}
        for slot in missing:
            value = data.get(slot.id)
            if value is None or value == "":
                continue
            if validate_arguments(slot.to_json_schema(), value):
                continue
            extracted[slot.id] = value
        return extracted


def collect_inputs(
    stage: PromptStage,
    inputs: Dict[str, Any],
) -> Tuple[Dict[str, Any], List[InputSlot]]:
    """Values available for a stage and the required slots still missing."""
    values = dict(inputs)
    missing: List[InputSlot] = []

    for slot in stage.inputs:
        value = inputs.get(slot.id)
        if value is not None:
            values[slot.id] = value
        elif slot.default is not None:
            values[slot.id] = slot.default
        elif slot.required:
            missing.append(slot)
        else:
            values[slot.id] = ""

    return values, missing


__all__ = ["ChainResult", "PromptChain", "collect_inputs"]

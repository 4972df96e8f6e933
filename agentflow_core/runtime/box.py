"""
Agent Box Module

Routes a request to one of several agents. The model picks the agent and
writes its instructions; the chosen agent then runs like a normal run.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .base import AgentExecutionError, Message, RunOptions, RunResponse, Role, read_error
from .executor import GenerationRequest, LLMClient
from .hooks import Hook, HookName, HooksHub
from .pipeline import AgentRunPipeline, RunHooks
from .prompts import mix_history

logger = structlog.get_logger(__name__)

BOX_HOOKS = (HookName.ON_SELECT_AGENT, HookName.ON_BOX_FINISH)


@dataclass
class AgentSelection:
    """Agent picked by the box for a request."""

    name: str
    instructions: str


@dataclass
class BoxResponse:
    """Result of a box run."""

    selection: Optional[AgentSelection]
    response: RunResponse


class AgentBox:
    """Multi-agent router."""

    def __init__(
        self,
        name: str,
        pipelines: List[AgentRunPipeline],
        client: LLMClient,
        model: str = "gpt-4o-mini",
        system_prompt: str = "",
    ):
        if not pipelines:
            raise ValueError("An agent box needs at least one agent")
        self.name = name
        self.pipelines = {pipeline.agent.name: pipeline for pipeline in pipelines}
        self.client = client
        self.model = model
        self.system_prompt = system_prompt

    def _selection_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "agent": {"type": "string", "enum": list(self.pipelines)},
                "instructions": {"type": "string"},
            },
            "required": ["agent", "instructions"],
        }

    def _selection_prompt(self) -> str:
        agents = "\n".join(
            f"- {name}: {pipeline.agent.description}"
            for name, pipeline in self.pipelines.items()
        )
        return (
            f"{self.system_prompt}\nYou are {self.name}, a manager of AI agents. "
            "Pick the agent best suited to answer the user and write the "
            f"instructions it should follow.\nAgents:\n{agents}"
        ).strip()

    async def select(self, message: str, history: Optional[List[Message]] = None) -> AgentSelection:
        """
        Ask the model which agent should answer.

        Raises:
            AgentExecutionError: If the model picks no known agent
        """
        context = mix_history(list(history or []) + [Message(role=Role.USER, content=message)])
        request = GenerationRequest(
            model=self.model,
            system_prompt=self._selection_prompt(),
            prompt=Message(role=Role.USER, content=context),
        )
        data = await self.client.generate_object(request, self._selection_schema())

        name = data.get("agent")
        if name not in self.pipelines:
            raise AgentExecutionError(f"Box {self.name} selected an unknown agent: {name}")
        return AgentSelection(name=name, instructions=str(data.get("instructions") or message))

    async def run(
        self,
        inputs: Dict[str, Any],
        options: Optional[RunOptions] = None,
        hooks: Optional[RunHooks] = None,
    ) -> BoxResponse:
        """Select an agent and run it with the caller's hooks."""
        options = options or RunOptions()
        box_hooks = HooksHub(run_id=options.run_id)
        try:
            own_hooks, agent_hooks = _split_hooks(hooks or {})
        except ValueError as e:
            logger.warning("box_hooks_invalid", box=self.name, error=str(e))
            return BoxResponse(selection=None, response=RunResponse(error=read_error(e)))
        box_hooks.add_run_hooks(own_hooks)
        message = str(inputs.get("message", ""))

        try:
            selection = await self.select(message)
        except AgentExecutionError as e:
            logger.warning("box_selection_failed", box=self.name, error=str(e))
            result = BoxResponse(selection=None, response=RunResponse(error=read_error(e)))
            await box_hooks.execute_hook(HookName.ON_BOX_FINISH, result)
            return result

        logger.info("box_agent_selected", box=self.name, agent=selection.name)
        await box_hooks.execute_hook(HookName.ON_SELECT_AGENT, selection)

        agent_inputs = dict(inputs)
        agent_inputs["message"] = selection.instructions
        response = await self.pipelines[selection.name].run(agent_inputs, options, agent_hooks)

        result = BoxResponse(selection=selection, response=response)
        await box_hooks.execute_hook(HookName.ON_BOX_FINISH, result)
        return result


def _split_hooks(hooks: RunHooks) -> Tuple[Dict[HookName, Hook], Dict[HookName, Hook]]:
    """Separate the box hooks from the hooks passed on to the agent run."""
    own: Dict[HookName, Hook] = {}
    agent: Dict[HookName, Hook] = {}
    for name, func in hooks.items():
        hook_name = HookName(name)
        if hook_name in BOX_HOOKS:
            own[hook_name] = func
        else:
            agent[hook_name] = func
    return own, agent


__all__ = ["AgentSelection", "BoxResponse", "AgentBox"]

"""
Agent Run Pipeline Module

This module provides the pipeline that runs an agent for a session:
admission, session loading, the prompt chain, speech sequencing,
history persistence and the run-level hooks.
"""

import json
import re
import time
from typing import Any, Dict, Mapping, Optional, Union

import httpx
import structlog

from ..config import Settings, get_settings
from ..memory.remote import RemoteStore
from ..memory.store import InMemoryStore, RunRecord, RunRole, SessionStore
from ..voice.sequencer import SpeechSequencer
from ..voice.synthesis import RemoteSpeechSynthesizer, SpeechSynthesizer
from .admission import RunAdmissionQueue
from .base import (
    AgentDefinition,
    AgentExecutionError,
    AgentTool,
    Message,
    PipelineError,
    RunData,
    RunOptions,
    RunResponse,
    new_id,
    read_error,
    user_message,
)
from .chain import PromptChain
from .executor import ClientRegistry
from .hooks import Hook, HookName, HooksHub
from .inputs import InputBuilder
from .session import Run, Session
from .tools import ToolExecutor

logger = structlog.get_logger(__name__)

RunHooks = Mapping[Union[HookName, str], Hook]


class AgentRunPipeline:
    """
    Runs an agent, one run per session at a time.

    Failures never escape ``run``: they come back as
    ``RunResponse(data=None, error=...)`` and are also passed to the
    ``on_finish`` hook.

    Example:
        pipeline = AgentRunPipeline(agent, registry=registry)
        response = await pipeline.run(
            {"message": "Give me ideas", "topic": "guitar"},
            RunOptions(session_id="session_1"),
            hooks={"on_token": print},
        )
    """

    def __init__(
        self,
        agent: AgentDefinition,
        store: Optional[SessionStore] = None,
        registry: Optional[ClientRegistry] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        admission: Optional[RunAdmissionQueue] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        input_builder: Optional[InputBuilder] = None,
    ):
        self.agent = agent
        self.settings = settings or get_settings()
        self.store = store or InMemoryStore()
        self.registry = registry or ClientRegistry.from_settings(self.settings)
        self.admission = admission or RunAdmissionQueue(
            default_timeout=self.settings.run_timeout_seconds
        )
        self.http_client = http_client
        self.input_builder = input_builder or InputBuilder()
        self._synthesizer = synthesizer
        self.logger = logger.bind(agent_id=agent.id)

    def _get_synthesizer(self) -> SpeechSynthesizer:
        if self._synthesizer is None:
            self._synthesizer = RemoteSpeechSynthesizer(
                base_url=self.settings.synthesis_url,
                token=self.settings.synthesis_token,
                default_voice=self.settings.default_voice,
            )
        return self._synthesizer

    async def run(
        self,
        inputs: Dict[str, Any],
        options: Optional[RunOptions] = None,
        hooks: Optional[RunHooks] = None,
    ) -> RunResponse:
        """
        Run the agent.

        Args:
            inputs: ``message`` plus any prompt input values
            options: Run options
            hooks: Listeners for this run only

        Returns:
            Run response with either data or an error message
        """
        options = options or RunOptions()
        session_id = options.session_id or new_id("session")
        run_id = options.run_id or new_id("run")
        hub = HooksHub(run_id=run_id)

        timeout = options.timeout if options.timeout is not None else self.agent.timeout
        start_time = time.perf_counter()

        self.logger.info("run_start", session_id=session_id, run_id=run_id)

        try:
            hub.add_run_hooks(hooks or {})
            async with self.admission.slot(session_id, run_id, timeout):
                response = await self._run_admitted(session_id, run_id, inputs, options, hub)
        except PipelineError as e:
            self.logger.warning(
                "run_failed",
                session_id=session_id,
                run_id=run_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            response = RunResponse(error=read_error(e))
        except Exception as e:
            self.logger.exception("run_crashed", session_id=session_id, run_id=run_id)
            response = RunResponse(error=read_error(e))

        if response.error is not None:
            await hub.execute_hook(HookName.ON_FINISH, response)

        self.logger.info(
            "run_done",
            session_id=session_id,
            run_id=run_id,
            success=response.success,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return response

    async def _run_admitted(
        self,
        session_id: str,
        run_id: str,
        inputs: Dict[str, Any],
        options: RunOptions,
        hub: HooksHub,
    ) -> RunResponse:
        session = await Session.load(
            self.store,
            session_id,
            user_id=options.user_id,
            create=options.save_history,
        )
        run = Run(id=run_id, session=session, hooks=hub)

        await hub.execute_hook(HookName.ON_START, {"run_id": run_id, "session_id": session_id})

        speech: Optional[SpeechSequencer] = None
        if options.voice:
            speech = SpeechSequencer(
                self._get_synthesizer(),
                hub,
                run_id,
                voice=self.agent.voice or self.settings.default_voice,
                min_sentence_length=self.settings.min_sentence_length,
            )
            speech.turn_on()

        tool_executor = ToolExecutor(
            hub,
            session_id,
            run_id,
            http_client=self.http_client,
            default_timeout=self.settings.tool_timeout_seconds,
        )
        chain = PromptChain(
            self.agent,
            run,
            self.registry,
            tool_executor,
            tools=options.tools,
            round_trip_delay=_pick(options.round_trip_delay, self.settings.round_trip_delay_seconds),
            max_round_trips=self.settings.max_round_trips,
            llm_options=options.llm_options,
        )

        request = dict(inputs)
        built = await self.input_builder.build(inputs)
        chain_inputs = dict(built.inputs)
        prompt = user_message(built.message, options.images) if built.message else None
        saved_prompt = prompt
        if prompt is not None and built.context_message != built.message:
            saved_prompt = user_message(built.context_message, options.images)

        try:
            result = await chain.run(
                chain_inputs,
                history=list(session.history),
                wanted_responses=options.wanted_responses or self.agent.wanted_responses,
                per_stage_delay=_pick(options.per_stage_delay, self.settings.per_stage_delay_seconds),
                prompt=prompt,
            )
        except BaseException:
            # No audio may outlive a failed run
            if speech is not None:
                await speech.cancel()
            raise

        if speech is not None and not await speech.is_done():
            self.logger.warning("run_audio_incomplete", run_id=run_id, failed=speech.failed)

        data = RunData(
            run_id=run_id,
            session_id=session_id,
            content=result.content,
            responses=result.responses,
            history_delta=result.history_delta,
            tool_calls=result.tool_results,
            audio=list(speech.chunks) if speech is not None else [],
        )

        if options.save_history:
            await self._save_run(session, request, prompt, saved_prompt, data)

        response = RunResponse(data=data)
        await hub.execute_hook(HookName.ON_MODEL_RESPONSE, response)
        await hub.execute_hook(HookName.ON_FINISH, response)
        return response

    async def _save_run(
        self,
        session: Session,
        request: Dict[str, Any],
        prompt: Optional[Message],
        saved_prompt: Optional[Message],
        data: RunData,
    ) -> None:
        # Run-scoped context stays out of the saved conversation
        messages = list(data.history_delta)
        if prompt is not None and saved_prompt is not None and messages:
            messages[0] = saved_prompt
        user_run = RunRecord(
            run_id=data.run_id,
            session_id=session.id,
            role=RunRole.USER,
            request=json.loads(json.dumps(request, default=str)),
            resolved_message=saved_prompt.text if saved_prompt is not None else "",
        )
        model_run = RunRecord(
            run_id=data.run_id,
            session_id=session.id,
            role=RunRole.MODEL,
            content=data.content,
            messages=messages,
        )
        await self.store.batch_push_runs(session.id, [user_run, model_run])

        session.history.extend(messages)
        await session.save(self.store)

    def as_tool(self) -> AgentTool:
        """Expose this agent as a tool other agents can call."""

        async def handler(session_id: str, run_id: str, instructions: str) -> str:
            response = await self.run(
                {"message": instructions},
                RunOptions(session_id=f"{session_id}:{self.agent.id}", save_history=False),
            )
            if response.data is None:
                raise AgentExecutionError(response.error or "Agent returned no data")
            return response.data.content

        return AgentTool(
            name=re.sub(r"[^a-zA-Z0-9_-]", "_", self.agent.name),
            description=f"an AI agent called {self.agent.name}. its task is: {self.agent.description}",
            parameters={
                "type": "object",
                "properties": {
                    "instructions": {
                        "type": "string",
                        "description": "The instructions or task to send to the agent",
                    },
                },
                "required": ["instructions"],
            },
            agent_id=self.agent.id,
            handler=handler,
        )


def _pick(value: Optional[float], default: float) -> float:
    return value if value is not None else default


def create_pipeline(
    agent: AgentDefinition,
    store: Optional[SessionStore] = None,
    settings: Optional[Settings] = None,
) -> AgentRunPipeline:
    """
    Create a pipeline wired from settings.

    Uses the remote session store when ``store_url`` is configured.
    """
    settings = settings or get_settings()
    if store is None and settings.store_url:
        store = RemoteStore(settings.store_url, token=settings.store_token)
    return AgentRunPipeline(agent, store=store, settings=settings)


__all__ = ["RunHooks", "AgentRunPipeline", "create_pipeline"]

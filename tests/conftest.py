"""Shared pytest fixtures for testing."""

from typing import Any, Callable, Dict, List

import pytest

from agentflow_core.config import Settings
from agentflow_core.memory import InMemoryStore
from agentflow_core.runtime import (
    AgentDefinition,
    ClientRegistry,
    GenerationResult,
    HooksHub,
    InputSlot,
    MockLLMClient,
    PromptStage,
    ToolCall,
)
from agentflow_core.voice import MockSpeechSynthesizer


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment file."""
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        run_timeout_seconds=None,
        round_trip_delay_seconds=0,
        per_stage_delay_seconds=0,
    )


# =============================================================================
# Runtime Fixtures
# =============================================================================


@pytest.fixture
def hooks() -> HooksHub:
    return HooksHub(run_id="run_test")


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def synthesizer() -> MockSpeechSynthesizer:
    return MockSpeechSynthesizer()


@pytest.fixture
def make_registry() -> Callable[[MockLLMClient], ClientRegistry]:
    """Registry serving a mock client as the default client."""

    def factory(client: MockLLMClient) -> ClientRegistry:
        registry = ClientRegistry(default_client="mock")
        registry.register("mock", client)
        return registry

    return factory


@pytest.fixture
def ideas_agent() -> AgentDefinition:
    """Two-stage chained agent: ideas, then their descriptions."""
    return AgentDefinition(
        id="agent_ideas",
        name="Ideas",
        description="Comes up with ideas",
        chained=True,
        prompts=[
            PromptStage(
                id="prompt_descriptions",
                index=1,
                variable_name="descriptions",
                content="Describe these ideas about $topic: $main3",
                inputs=[InputSlot(id="main3"), InputSlot(id="topic")],
            ),
            PromptStage(
                id="prompt_main3",
                index=0,
                variable_name="main3",
                content="Output 3 ideas about $topic",
                inputs=[InputSlot(id="topic", description="The topic")],
            ),
        ],
    )


@pytest.fixture
def simple_agent() -> AgentDefinition:
    """Single-stage agent without inputs."""
    return AgentDefinition(
        id="agent_simple",
        name="Helper",
        description="Answers questions",
        prompts=[
            PromptStage(
                id="prompt_main",
                variable_name="main",
                content="Answer the user briefly.",
            ),
        ],
    )


def tool_call_response(
    name: str,
    arguments: Dict[str, Any],
    call_id: str = "call_1",
    content: str = "",
) -> GenerationResult:
    """Scripted model turn that calls one tool."""
    return GenerationResult(
        content=content,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)],
    )


class Recorder:
    """Collects hook payloads in arrival order."""

    def __init__(self):
        self.events: List[tuple] = []

    def hook(self, name: str) -> Callable[[Any], None]:
        def record(payload: Any) -> None:
            self.events.append((name, payload))

        return record

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> List[Any]:
        return [payload for event, payload in self.events if event == name]

    def hooks(self, *names: str) -> Dict[str, Callable[[Any], None]]:
        return {name: self.hook(name) for name in names}


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def tool_turn() -> Callable[..., GenerationResult]:
    return tool_call_response

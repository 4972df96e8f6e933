"""
Runtime Base Module

This module provides the core types for the agent runtime: messages, tool
calls and results, tool declarations, prompt stages, agent definitions,
run options and responses, and the runtime exception hierarchy.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
    Union,
)

from pydantic import BaseModel, Field, field_validator


def new_id(prefix: str) -> str:
    """Generate a prefixed unique identifier."""
    return f"{prefix}_{uuid.uuid4().hex}"


# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """Role of a conversation message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolKind(str, Enum):
    """How a tool is executed."""

    FUNCTION = "function"
    API = "api"
    AGENT = "agent"
    CLIENT_SIDE = "client-side"


class StageType(str, Enum):
    """Output type of a prompt stage."""

    TEXT = "text"
    JSON = "json"


# =============================================================================
# Messages
# =============================================================================


class ToolCall(BaseModel):
    """A model-issued request to invoke a tool."""

    id: str
    name: str
    arguments: str = "{}"

    @field_validator("arguments", mode="before")
    @classmethod
    def _dump_arguments(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return json.dumps(value)
        return value

    def to_openai_format(self) -> Dict[str, Any]:
        """Convert to the chat completions tool call format."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ToolResult(BaseModel):
    """Outcome of exactly one tool call."""

    call: ToolCall
    content: str

    @property
    def call_id(self) -> str:
        return self.call.id

    def to_message(self) -> "Message":
        """Convert to a tool message for the conversation."""
        return Message(
            role=Role.TOOL,
            content=self.content,
            name=self.call.name,
            tool_call_id=self.call.id,
        )


class Message(BaseModel):
    """A role-tagged conversation turn."""

    role: Role
    content: Union[str, List[Dict[str, Any]]] = ""
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)

    @property
    def text(self) -> str:
        """Textual content, with image parts dropped."""
        if isinstance(self.content, str):
            return self.content
        return " ".join(
            part.get("text", "") for part in self.content if part.get("type") == "text"
        )

    def to_openai_format(self) -> Dict[str, Any]:
        """Convert to the chat completions message format."""
        message: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.role == Role.TOOL:
            message["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            message["tool_calls"] = [call.to_openai_format() for call in self.tool_calls]
            if not self.content:
                message["content"] = None
        return message


def user_message(
    text: str,
    images: Optional[List[str]] = None,
    name: Optional[str] = None,
) -> Message:
    """Build a user message, multi-part when images are attached."""
    if not images:
        return Message(role=Role.USER, content=text, name=name)

    parts: List[Dict[str, Any]] = [{"type": "text", "text": text}]
    for url in images:
        parts.append({"type": "image_url", "image_url": {"url": url}})
    return Message(role=Role.USER, content=parts, name=name)


# =============================================================================
# Tool Declarations
# =============================================================================


def empty_parameters() -> Dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


@dataclass
class ToolSchema:
    """Declared tool: name, description and JSON parameter schema."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=empty_parameters)

    kind: ClassVar[ToolKind]

    def to_openai_format(self) -> Dict[str, Any]:
        """Convert to the chat completions tool declaration format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class FunctionTool(ToolSchema):
    """Tool backed by a local callback invoked with keyword arguments."""

    handler: Optional[Callable[..., Any]] = None
    timeout_seconds: Optional[float] = None

    kind: ClassVar[ToolKind] = ToolKind.FUNCTION


@dataclass
class ApiTool(ToolSchema):
    """Tool backed by an HTTP endpoint with ``${var}`` placeholders."""

    url: str = ""
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    timeout_seconds: Optional[float] = None

    kind: ClassVar[ToolKind] = ToolKind.API


@dataclass
class AgentTool(ToolSchema):
    """Tool that delegates to another agent.

    The handler receives ``(session_id, run_id, instructions)`` and returns
    the agent's textual answer.
    """

    agent_id: str = ""
    handler: Optional[Callable[[str, str, str], Awaitable[str]]] = None

    kind: ClassVar[ToolKind] = ToolKind.AGENT


@dataclass
class ClientSideTool(ToolSchema):
    """Tool executed by the remote client, acknowledged locally."""

    kind: ClassVar[ToolKind] = ToolKind.CLIENT_SIDE


# =============================================================================
# Agent Configuration
# =============================================================================


@dataclass
class InputSlot:
    """A named value a prompt stage needs before it can run."""

    id: str
    description: str = ""
    type: str = "string"
    required: bool = True
    default: Optional[Any] = None

    def to_json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass
class PromptStage:
    """One named step of a prompt chain."""

    id: str
    variable_name: str
    content: str
    index: int = 0
    llm_client: Optional[str] = None
    model: str = "gpt-4o-mini"
    type: StageType = StageType.TEXT
    inputs: List[InputSlot] = field(default_factory=list)
    description: str = ""
    conversational: bool = False
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentDefinition:
    """Configuration of an agent: its stages and tools."""

    id: str
    name: str
    prompts: List[PromptStage]
    description: str = ""
    chained: bool = False
    tools: List[ToolSchema] = field(default_factory=list)
    voice: Optional[str] = None
    timeout: Optional[float] = None
    wanted_responses: Optional[List[str]] = None

    @property
    def ordered_prompts(self) -> List[PromptStage]:
        return sorted(self.prompts, key=lambda stage: stage.index)


# =============================================================================
# Run Options And Responses
# =============================================================================


@dataclass
class RunOptions:
    """Per-run options supplied by the caller."""

    session_id: Optional[str] = None
    run_id: Optional[str] = None
    user_id: Optional[str] = None
    images: List[str] = field(default_factory=list)

    # Behaviour
    voice: bool = False
    save_history: bool = True
    wanted_responses: Optional[List[str]] = None
    tools: List[ToolSchema] = field(default_factory=list)
    llm_options: Dict[str, Any] = field(default_factory=dict)

    # Timing
    timeout: Optional[float] = None
    per_stage_delay: Optional[float] = None
    round_trip_delay: Optional[float] = None


class AudioChunk(BaseModel):
    """An indexed unit of synthesized audio."""

    index: int
    run_id: str
    handle: str
    url: Optional[str] = None


class StageResponse(BaseModel):
    """Output of one prompt stage."""

    name: str
    content: str
    data: Optional[Any] = None
    tool_calls: List[ToolResult] = Field(default_factory=list)


class RunData(BaseModel):
    """Successful run output."""

    run_id: str
    session_id: str
    content: str = ""
    responses: Dict[str, StageResponse] = Field(default_factory=dict)
    history_delta: List[Message] = Field(default_factory=list)
    tool_calls: List[ToolResult] = Field(default_factory=list)
    audio: List[AudioChunk] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class RunResponse(BaseModel):
    """Structured run result: either data or an error message."""

    data: Optional[RunData] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


# =============================================================================
# Exceptions
# =============================================================================


class PipelineError(Exception):
    """Base exception for runtime errors."""
    pass


class RunTimeout(PipelineError):
    """A run waited too long for its session to become idle."""

    def __init__(self, session_id: str, run_id: str, timeout: Optional[float]):
        self.session_id = session_id
        self.run_id = run_id
        self.timeout = timeout
        super().__init__(
            f"Run {run_id} timed out after {timeout}s waiting for session {session_id}"
        )


class ToolNotFound(PipelineError):
    """The model requested a tool that was never declared."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool not found: {name}")


class MissingRequiredInputs(PipelineError):
    """A prompt stage could not resolve its required inputs."""

    def __init__(self, stage: str, missing: List[str]):
        self.stage = stage
        self.missing = missing
        super().__init__(
            f"Missing required inputs for prompt '{stage}': {', '.join(missing)}"
        )


class InvalidWantedResponse(PipelineError):
    """A wanted response names a stage that did not run."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Invalid wanted response: '{name}' was not generated")


class RoundTripLimitExceeded(PipelineError):
    """A stage exceeded the configured number of model round trips."""
    pass


class AgentExecutionError(PipelineError):
    """Error while talking to a language model."""
    pass


class StoreError(PipelineError):
    """Error reading or writing the session store."""
    pass


def read_error(error: BaseException) -> str:
    """Human readable message for an error."""
    message = str(error)
    if message:
        return message
    return error.__class__.__name__


__all__ = [
    "new_id",
    "Role",
    "ToolKind",
    "StageType",
    "ToolCall",
    "ToolResult",
    "Message",
    "user_message",
    "ToolSchema",
    "FunctionTool",
    "ApiTool",
    "AgentTool",
    "ClientSideTool",
    "InputSlot",
    "PromptStage",
    "AgentDefinition",
    "RunOptions",
    "AudioChunk",
    "StageResponse",
    "RunData",
    "RunResponse",
    "PipelineError",
    "RunTimeout",
    "ToolNotFound",
    "MissingRequiredInputs",
    "InvalidWantedResponse",
    "RoundTripLimitExceeded",
    "AgentExecutionError",
    "StoreError",
    "read_error",
]

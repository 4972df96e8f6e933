"""
Agent Runtime Module

This module provides the run pipeline for agents: per-session admission,
prompt chains, the model round-trip loop, tool execution and run hooks.

Example usage:

    from agentflow_core.runtime import (
        AgentDefinition,
        AgentRunPipeline,
        InputSlot,
        PromptStage,
        RunOptions,
    )

    agent = AgentDefinition(
        id="agent_1",
        name="Ideas",
        prompts=[
            PromptStage(
                id="p1",
                variable_name="main3",
                content="Output 3 ideas about $topic",
                inputs=[InputSlot(id="topic")],
            ),
        ],
    )

    pipeline = AgentRunPipeline(agent)
    response = await pipeline.run(
        {"topic": "guitar"},
        RunOptions(session_id="session_1"),
        hooks={"on_token": lambda token: print(token, end="")},
    )
"""

from .admission import RunAdmissionQueue, SessionState
from .base import (
    AgentDefinition,
    AgentExecutionError,
    AgentTool,
    ApiTool,
    AudioChunk,
    ClientSideTool,
    FunctionTool,
    InputSlot,
    InvalidWantedResponse,
    Message,
    MissingRequiredInputs,
    PipelineError,
    PromptStage,
    Role,
    RoundTripLimitExceeded,
    RunData,
    RunOptions,
    RunResponse,
    RunTimeout,
    StageResponse,
    StageType,
    StoreError,
    ToolCall,
    ToolKind,
    ToolNotFound,
    ToolResult,
    ToolSchema,
)
from .chain import ChainResult, PromptChain
from .executor import (
    ClientRegistry,
    GenerationRequest,
    GenerationResult,
    LLMClient,
    MockLLMClient,
    OpenAIClient,
)
from .hooks import HookName, HooksHub
from .inputs import BuiltInputs, ContextItem, ContextScope, InputBuilder, WebPageReader
from .loop import LoopResult, RoundTripLoop, StreamMessage
from .pipeline import AgentRunPipeline, create_pipeline
from .box import AgentBox, AgentSelection, BoxResponse
from .prompts import mix_history, prompt_to_tool, render_prompt
from .session import Run, Session
from .tools import ToolExecutor
from .validation import validate_arguments

__all__ = [
    # Admission
    "RunAdmissionQueue",
    "SessionState",
    # Types
    "AgentDefinition",
    "AgentTool",
    "ApiTool",
    "AudioChunk",
    "ClientSideTool",
    "FunctionTool",
    "InputSlot",
    "Message",
    "PromptStage",
    "Role",
    "RunData",
    "RunOptions",
    "RunResponse",
    "StageResponse",
    "StageType",
    "ToolCall",
    "ToolKind",
    "ToolResult",
    "ToolSchema",
    # Errors
    "PipelineError",
    "RunTimeout",
    "ToolNotFound",
    "MissingRequiredInputs",
    "InvalidWantedResponse",
    "RoundTripLimitExceeded",
    "AgentExecutionError",
    "StoreError",
    # Execution
    "ChainResult",
    "PromptChain",
    "ClientRegistry",
    "GenerationRequest",
    "GenerationResult",
    "LLMClient",
    "MockLLMClient",
    "OpenAIClient",
    "HookName",
    "HooksHub",
    "BuiltInputs",
    "ContextItem",
    "ContextScope",
    "InputBuilder",
    "WebPageReader",
    "LoopResult",
    "RoundTripLoop",
    "StreamMessage",
    "ToolExecutor",
    "validate_arguments",
    # Pipeline
    "AgentRunPipeline",
    "create_pipeline",
    "AgentBox",
    "AgentSelection",
    "BoxResponse",
    "Run",
    "Session",
    "mix_history",
    "prompt_to_tool",
    "render_prompt",
]

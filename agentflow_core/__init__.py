"""
AgentFlow Core

Agent orchestration runtime: per-session run admission, prompt chains with
tool calling, typed run hooks, and ordered speech synthesis/playback.
"""

__version__ = "0.4.0"

from .runtime import (
    AgentDefinition,
    AgentRunPipeline,
    HookName,
    HooksHub,
    InputSlot,
    PromptStage,
    RunOptions,
    RunResponse,
)

__all__ = [
    "__version__",
    "AgentDefinition",
    "AgentRunPipeline",
    "HookName",
    "HooksHub",
    "InputSlot",
    "PromptStage",
    "RunOptions",
    "RunResponse",
]

"""Prompt rendering, history mixing and prompt-to-tool helpers."""

import json
from string import Template
from typing import Any, Dict, List, Sequence

from .base import FunctionTool, Message, PromptStage, Role


def render_prompt(content: str, values: Dict[str, Any]) -> str:
    """Substitute ``$name`` / ``${name}`` variables in a prompt template."""
    rendered = {
        key: value if isinstance(value, str) else json.dumps(value)
        for key, value in values.items()
    }
    return Template(content).safe_substitute(rendered)


def mix_history(messages: Sequence[Message]) -> str:
    """Flatten a conversation into attributed plain text."""
    lines: List[str] = []
    for message in messages:
        name = message.name or ""
        if message.role == Role.USER:
            lines.append(f"{name} (User): {message.text}".strip())
        elif message.role == Role.ASSISTANT:
            if message.text:
                lines.append(f"{name} (AI assistant): {message.text}".strip())
        elif message.role == Role.TOOL:
            lines.append(f"Executed tool ({message.name}) with results: {message.text}")
    return ".\n".join(lines)


def prompt_to_tool(stage: PromptStage) -> FunctionTool:
    """Declare a stage's inputs as a tool's parameters."""
    properties = {slot.id: slot.to_json_schema() for slot in stage.inputs}
    required = [slot.id for slot in stage.inputs if slot.required]

    return FunctionTool(
        name=stage.variable_name,
        description=stage.description,
        parameters={
            "type": "object",
            "properties": properties,
            "required": required,
        },
    )


__all__ = ["render_prompt", "mix_history", "prompt_to_tool"]

"""
Run Hooks Module

Typed fan-out of run lifecycle events to listeners registered for a single
run. Listeners run in registration order; a failing listener is logged and
never breaks the run.
"""

import inspect
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import structlog

logger = structlog.get_logger(__name__)


class HookName(str, Enum):
    """Closed set of run hooks."""

    ON_START = "on_start"
    ON_TOKEN = "on_token"
    ON_STREAM = "on_stream"
    ON_AUDIO = "on_audio"
    ON_TOOL_CALL = "on_tool_call"
    ON_TOOL_RESULT = "on_tool_result"
    ON_CLIENT_SIDE_ACTION = "on_client_side_action"
    ON_MODEL_RESPONSE = "on_model_response"
    ON_FINISH = "on_finish"

    # Multi-agent
    ON_SELECT_AGENT = "on_select_agent"
    ON_BOX_FINISH = "on_box_finish"


Hook = Callable[[Any], Any]


class HooksHub:
    """Holds the listeners of one run and dispatches events to them."""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        self._hooks: Dict[HookName, List[Hook]] = {name: [] for name in HookName}
        self.logger = logger.bind(run_id=run_id) if run_id else logger

    @property
    def used(self) -> List[HookName]:
        """Hook names that have at least one listener."""
        return [name for name, hooks in self._hooks.items() if hooks]

    def has_hook(self, name: Union[HookName, str]) -> bool:
        return bool(self._hooks[HookName(name)])

    def add_hook(self, name: Union[HookName, str], func: Hook) -> None:
        """
        Register a listener.

        Raises:
            ValueError: If the hook name is not part of the hook set
        """
        try:
            hook_name = HookName(name)
        except ValueError:
            self.logger.error("hook_unknown", hook=str(name))
            raise

        self._hooks[hook_name].append(func)

    def remove_hook(self, name: Union[HookName, str], func: Hook) -> None:
        hooks = self._hooks[HookName(name)]
        if func in hooks:
            hooks.remove(func)

    def add_run_hooks(self, hooks: Mapping[Union[HookName, str], Hook]) -> None:
        """Register a caller-supplied set of listeners for this run."""
        for name, func in hooks.items():
            self.add_hook(name, func)

    async def execute_hook(self, name: Union[HookName, str], payload: Any = None) -> None:
        """Invoke every listener of a hook, awaiting each in turn."""
        hook_name = HookName(name)

        for func in list(self._hooks[hook_name]):
            try:
                result = func(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.exception(
                    "hook_failed",
                    hook=hook_name.value,
                    error=str(e),
                )

    def clear(self) -> None:
        for hooks in self._hooks.values():
            hooks.clear()


__all__ = ["HookName", "Hook", "HooksHub"]

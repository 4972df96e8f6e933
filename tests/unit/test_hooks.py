"""Unit tests for run hooks."""

import pytest

from agentflow_core.runtime import HookName, HooksHub


class TestHooksHub:
    """Tests for HooksHub."""

    @pytest.mark.asyncio
    async def test_listeners_run_in_registration_order(self, hooks):
        """Test listeners are invoked in the order they were added."""
        calls = []

        async def first(payload):
            calls.append(("first", payload))

        def second(payload):
            calls.append(("second", payload))

        hooks.add_hook(HookName.ON_TOKEN, first)
        hooks.add_hook("on_token", second)

        await hooks.execute_hook(HookName.ON_TOKEN, "hi")

        assert calls == [("first", "hi"), ("second", "hi")]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self, hooks):
        """Test a raising listener is logged and skipped."""
        calls = []

        def broken(payload):
            raise RuntimeError("listener broke")

        async def healthy(payload):
            calls.append(payload)

        hooks.add_hook(HookName.ON_FINISH, broken)
        hooks.add_hook(HookName.ON_FINISH, healthy)

        await hooks.execute_hook(HookName.ON_FINISH, {"done": True})

        assert calls == [{"done": True}]

    def test_unknown_hook_rejected(self, hooks):
        """Test registering a hook outside the closed set."""
        with pytest.raises(ValueError):
            hooks.add_hook("on_everything", lambda payload: None)

    @pytest.mark.asyncio
    async def test_add_run_hooks(self, hooks):
        """Test bulk registration from a mapping."""
        seen = []
        hooks.add_run_hooks({
            "on_start": seen.append,
            HookName.ON_AUDIO: seen.append,
        })

        await hooks.execute_hook(HookName.ON_START, "start")
        await hooks.execute_hook(HookName.ON_AUDIO, "audio")
        await hooks.execute_hook(HookName.ON_TOKEN, "token")

        assert seen == ["start", "audio"]
        assert set(hooks.used) == {HookName.ON_START, HookName.ON_AUDIO}

    @pytest.mark.asyncio
    async def test_execute_without_listeners(self):
        """Test firing a hook nobody listens to."""
        hub = HooksHub()
        await hub.execute_hook(HookName.ON_TOOL_CALL, None)
        assert hub.used == []

    def test_clear(self, hooks):
        """Test clearing all listeners."""
        hooks.add_hook(HookName.ON_TOKEN, print)
        hooks.clear()
        assert not hooks.has_hook(HookName.ON_TOKEN)

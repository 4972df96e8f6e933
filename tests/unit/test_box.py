"""Unit tests for multi-agent boxes."""

import pytest

from agentflow_core.runtime import (
    AgentBox,
    AgentDefinition,
    AgentRunPipeline,
    MockLLMClient,
    PromptStage,
    RunOptions,
)


@pytest.fixture
def make_agent_pipeline(store, synthesizer, settings, make_registry):
    def factory(name, description, answer):
        agent = AgentDefinition(
            id=f"agent_{name.lower()}",
            name=name,
            description=description,
            prompts=[PromptStage(id="p1", variable_name="main", content="Help the user.")],
        )
        client = MockLLMClient(responses=[answer])
        pipeline = AgentRunPipeline(
            agent,
            store=store,
            registry=make_registry(client),
            synthesizer=synthesizer,
            settings=settings,
        )
        return pipeline, client

    return factory


class TestAgentBox:
    """Tests for AgentBox."""

    def test_requires_agents(self):
        """Test an empty box is rejected."""
        with pytest.raises(ValueError):
            AgentBox("Empty", [], MockLLMClient())

    @pytest.mark.asyncio
    async def test_routes_to_selected_agent(self, make_agent_pipeline, recorder):
        """Test the selected agent runs with the box's instructions."""
        music, music_client = make_agent_pipeline("Music", "Answers music questions", "Play a C chord")
        cooking, cooking_client = make_agent_pipeline("Cooking", "Answers cooking questions", "Boil water")
        router = MockLLMClient(objects=[{"agent": "Music", "instructions": "Explain guitar chords"}])
        box = AgentBox("Studio", [music, cooking], router)

        result = await box.run(
            {"message": "How do I play guitar?"},
            RunOptions(session_id="session_1"),
            hooks=recorder.hooks("on_select_agent", "on_finish", "on_box_finish"),
        )

        assert result.selection.name == "Music"
        assert result.response.data.content == "Play a C chord"
        assert music_client.requests[0].messages[-1].text == "Explain guitar chords"
        assert cooking_client.requests == []
        assert recorder.names() == ["on_select_agent", "on_finish", "on_box_finish"]

        request, schema = router.object_requests[0]
        assert schema["properties"]["agent"]["enum"] == ["Music", "Cooking"]
        assert "- Cooking: Answers cooking questions" in request.system_prompt

    @pytest.mark.asyncio
    async def test_unknown_selection(self, make_agent_pipeline, recorder):
        """Test an invalid selection ends the box run with an error."""
        music, music_client = make_agent_pipeline("Music", "Answers music questions", "Play a C chord")
        box = AgentBox("Studio", [music], MockLLMClient(objects=[{"agent": "Gardening"}]))

        result = await box.run(
            {"message": "How do I grow tomatoes?"},
            hooks=recorder.hooks("on_select_agent", "on_box_finish"),
        )

        assert result.selection is None
        assert "Gardening" in result.response.error
        assert recorder.names() == ["on_box_finish"]
        assert music_client.requests == []

    @pytest.mark.asyncio
    async def test_unknown_hook_is_an_error(self, make_agent_pipeline):
        """Test an invalid hook name ends the box run with an error."""
        music, music_client = make_agent_pipeline("Music", "Answers music questions", "Play a C chord")
        router = MockLLMClient(objects=[{"agent": "Music"}])
        box = AgentBox("Studio", [music], router)

        result = await box.run({"message": "Hi"}, hooks={"on_everything": print})

        assert result.selection is None
        assert result.response.data is None
        assert "on_everything" in result.response.error
        assert router.object_requests == []
        assert music_client.requests == []

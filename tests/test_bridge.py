"""End-to-end tests for ToolBridge against real subprocess backends."""

import pytest
from openai.types.chat.chat_completion import ChatCompletion, Choice
from openai.types.chat.chat_completion_message import ChatCompletionMessage
from openai.types.chat.chat_completion_message_tool_call import (
    ChatCompletionMessageToolCall,
    Function as ToolCallFunction,
)

from tool_bridge import ToolBridge
from tool_bridge.config import BackendConfig
from tool_bridge.errors import InvalidInstruction, UnknownBackend


@pytest.fixture
async def bridge(make_backend, settings):
    bridge = ToolBridge([make_backend("mongodb"), make_backend("fhir")], settings=settings)
    yield bridge
    await bridge.aclose()


class TestToolBridge:
    async def test_backends_start_lazily(self, bridge):
        status = bridge.status()

        assert set(status) == {"mongodb", "fhir"}
        assert status["mongodb"]["state"] == "disconnected"
        assert status["mongodb"]["transport"] == "stdio"
        assert await bridge.start() == {}

    async def test_call_tool(self, bridge):
        result = await bridge.call_tool("mongo", "find_documents", {"collection": "documents", "limit": 2})

        assert result.success
        assert result.summary == "Found 2 documents in documents:"
        status = bridge.status()
        assert status["mongodb"]["state"] == "ready"
        assert status["mongodb"]["tools"] > 0
        assert status["fhir"]["state"] == "disconnected"

    async def test_unknown_tool_is_reported(self, bridge):
        result = await bridge.call_tool("mongodb", "drop_database")

        assert not result.success
        assert result.error_kind == "UnknownTool"
        assert result.as_text() == "Error executing mongodb tool drop_database: Unknown tool: drop_database"
        assert bridge.status()["mongodb"]["state"] == "ready"

    async def test_call_tool_requires_a_tool(self, bridge):
        with pytest.raises(InvalidInstruction):
            await bridge.call_tool("mongodb", "")

    async def test_handle_openai_tool_call(self, bridge):
        call = ChatCompletionMessageToolCall(
            id="call_1",
            type="function",
            function=ToolCallFunction(name="mongodb__count_documents", arguments="{}"),
        )
        completion = ChatCompletion(
            id="cmpl-1",
            choices=[
                Choice(
                    finish_reason="tool_calls",
                    index=0,
                    message=ChatCompletionMessage(role="assistant", content=None, tool_calls=[call]),
                )
            ],
            created=0,
            model="gpt-4o",
            object="chat.completion",
        )

        outcome = await bridge.handle_response(completion)

        assert outcome.result.success
        assert outcome.result.as_text() == "Total documents: 42"

    async def test_discovery_and_prompt(self, bridge):
        await bridge.supervisor("mongodb").connect()

        catalogs = await bridge.discover_tools()
        assert "find_documents" in {spec.name for spec in catalogs["mongodb"]}
        assert catalogs["fhir"] == []

        prompt = bridge.tool_prompt()
        assert "mcp_instructions" in prompt
        assert "Available mongodb tools" in prompt
        assert "collection (string)" in prompt
        assert "fhir" not in prompt.split("```")[-1]

        names = {tool["function"]["name"] for tool in bridge.openai_tools()}
        assert "mongodb__find_documents" in names

    async def test_aclose_stops_everything(self, bridge):
        await bridge.call_tool("fhir", "echo", {"a": 1})
        await bridge.aclose()

        assert {s["state"] for s in bridge.status().values()} == {"disconnected"}

    async def test_unknown_supervisor(self, bridge):
        with pytest.raises(UnknownBackend):
            bridge.supervisor("postgres")


class TestStartup:
    async def test_eager_start_isolates_broken_backend(self, make_backend, settings):
        bridge = ToolBridge(
            [make_backend("mongodb"), BackendConfig.stdio("ghost", "/nonexistent/tool-server")],
            settings=settings,
        )
        try:
            report = await bridge.start(eager=True)
        finally:
            await bridge.aclose()

        assert report["mongodb"] is None
        assert report["ghost"].kind == "SpawnError"

    async def test_context_manager_uses_settings(self, make_backend, settings):
        settings.eager_start = True
        async with ToolBridge([make_backend("mongodb")], settings=settings) as bridge:
            assert bridge.status()["mongodb"]["state"] == "ready"

    def test_duplicate_backends_rejected(self, make_backend):
        with pytest.raises(ValueError):
            ToolBridge([make_backend("mongodb"), make_backend("mongo")])

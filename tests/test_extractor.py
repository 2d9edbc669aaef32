"""Tests for directive extraction and response cleaning."""

import json

import pytest
from anthropic.types import Message, TextBlock, ToolUseBlock, Usage
from openai.types.chat.chat_completion import ChatCompletion, Choice
from openai.types.chat.chat_completion_message import ChatCompletionMessage
from openai.types.chat.chat_completion_message_tool_call import (
    ChatCompletionMessageToolCall,
    Function as ToolCallFunction,
)

from tool_bridge.extractor import (
    clean_response_text,
    extract_instruction,
    from_fenced_json,
    from_raw_json,
    response_text,
)
from tool_bridge.response import ChatResponse
from tool_bridge.types import Instruction, ToolCallRequest

DIRECTIVE = {
    "target": "mongodb",
    "tool": "find_documents",
    "params": {"collection": "documents", "query": {}},
}

FENCED = (
    "Let me look that up for you.\n\n"
    "```json\n" + json.dumps(DIRECTIVE, indent=2) + "\n```\n\n"
    "I'll share the results shortly."
)


def _completion(message: ChatCompletionMessage) -> ChatCompletion:
    return ChatCompletion(
        id="cmpl-1",
        choices=[Choice(finish_reason="tool_calls", index=0, message=message)],
        created=0,
        model="gpt-4o",
        object="chat.completion",
    )


class TestFencedJson:
    def test_extracts_exact_triple(self):
        assert extract_instruction(FENCED) == Instruction(
            target="mongodb",
            tool="find_documents",
            params={"collection": "documents", "query": {}},
        )

    def test_nested_mcp_instructions_wrapper(self):
        text = "Sure.\n```json\n" + json.dumps({"mcp_instructions": DIRECTIVE}) + "\n```"
        assert from_fenced_json(text).tool == "find_documents"

    def test_instructions_wrapper(self):
        text = "```json\n" + json.dumps({"instructions": {**DIRECTIVE, "target": "es"}}) + "\n```"
        assert from_fenced_json(text).target == "es"

    def test_later_fence_is_used_when_first_is_not_a_directive(self):
        text = (
            "```json\n{\"example\": true}\n```\n"
            "```json\n" + json.dumps(DIRECTIVE) + "\n```"
        )
        assert from_fenced_json(text).target == "mongodb"

    def test_malformed_fence_falls_through_to_raw_json(self):
        text = (
            '```json\n{"target": "mongodb", "tool": oops}\n```\n'
            "Fallback: " + json.dumps({**DIRECTIVE, "tool": "count_documents"})
        )
        assert extract_instruction(text).tool == "count_documents"

    def test_non_json_fence_is_ignored(self):
        text = "```python\n" + json.dumps(DIRECTIVE) + "\n```"
        assert from_fenced_json(text) is None


class TestRawJson:
    def test_raw_object_in_prose(self):
        text = "Running " + json.dumps(DIRECTIVE) + " now."
        assert from_raw_json(text).params == {"collection": "documents", "query": {}}

    def test_raw_mcp_instructions_wrapper(self):
        text = "ok " + json.dumps({"mcp_instructions": {**DIRECTIVE, "target": "fhir"}})
        assert extract_instruction(text).target == "fhir"

    def test_objects_without_directive_keys_are_ignored(self):
        assert from_raw_json('{"a": 1} and {"b": {"c": 2}}') is None

    def test_unparseable_params_are_treated_as_absent(self):
        text = json.dumps({"target": "mongodb", "tool": "count_documents", "params": "{broken"})
        assert extract_instruction(text).params == {}

    def test_string_encoded_params_are_decoded(self):
        text = json.dumps({"target": "mongodb", "tool": "echo", "params": '{"x": 1}'})
        assert extract_instruction(text).params == {"x": 1}


class TestStructuredSources:
    def test_direct_structured_field_wins(self):
        payload = {
            "answer": "```json\n" + json.dumps({**DIRECTIVE, "tool": "from_text"}) + "\n```",
            "mcp_instructions": DIRECTIVE,
        }
        assert extract_instruction(payload).tool == "find_documents"

    def test_plain_answer_payload(self):
        assert extract_instruction({"answer": FENCED}).target == "mongodb"

    def test_openai_tool_call_with_prefixed_name(self):
        call = ChatCompletionMessageToolCall(
            id="call_1",
            type="function",
            function=ToolCallFunction(
                name="mongodb__count_documents", arguments='{"collection": "documents"}'
            ),
        )
        completion = _completion(ChatCompletionMessage(role="assistant", tool_calls=[call]))

        assert extract_instruction(completion) == Instruction(
            target="mongodb", tool="count_documents", params={"collection": "documents"}
        )

    def test_openai_tool_call_with_bad_arguments(self):
        call = ChatCompletionMessageToolCall(
            id="call_1",
            type="function",
            function=ToolCallFunction(name="list_collections", arguments="{not valid json"),
        )
        completion = _completion(ChatCompletionMessage(role="assistant", tool_calls=[call]))

        instruction = extract_instruction(completion)
        assert instruction.target == ""
        assert instruction.tool == "list_collections"
        assert instruction.params == {}

    def test_openai_dict_form(self):
        payload = {
            "choices": [
                {
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {
                                "id": "call_2",
                                "type": "function",
                                "function": {"name": "es.search_documents", "arguments": "{}"},
                            }
                        ],
                    }
                }
            ]
        }
        assert extract_instruction(payload) == Instruction("es", "search_documents", {})

    def test_anthropic_tool_use(self):
        message = Message(
            id="msg_1",
            type="message",
            role="assistant",
            model="claude-sonnet-4-5",
            content=[
                TextBlock(type="text", text="Checking."),
                ToolUseBlock(
                    type="tool_use",
                    id="toolu_1",
                    name="fhir__search_patients",
                    input={"name": "Smith"},
                ),
            ],
            stop_reason="tool_use",
            stop_sequence=None,
            usage=Usage(input_tokens=1, output_tokens=1),
        )
        assert extract_instruction(message) == Instruction("fhir", "search_patients", {"name": "Smith"})

    def test_tool_calls_beat_text(self):
        response = ChatResponse(
            content=FENCED,
            tool_calls=[ToolCallRequest(id="c1", name="search_documents", arguments={}, target="elasticsearch")],
        )
        assert extract_instruction(response).target == "elasticsearch"


class TestNoInstruction:
    @pytest.mark.parametrize(
        "response",
        [
            "Hello! How can I help you today?",
            "",
            None,
            42,
            {"answer": "The weather is nice."},
            {"answer": 'Example config: {"debug": true}'},
            ChatResponse(content="```json\n{\"target\": \"mongodb\"}\n```"),
        ],
    )
    def test_returns_none(self, response):
        assert extract_instruction(response) is None

    def test_never_raises_on_hostile_payload(self):
        class Exploding:
            def model_dump(self):
                raise RuntimeError("boom")

        assert extract_instruction(Exploding()) is None
        assert response_text(Exploding()) == ""


class TestCleanResponseText:
    def test_fence_is_removed(self):
        cleaned = clean_response_text(FENCED)

        assert cleaned == "Let me look that up for you.\n\nI'll share the results shortly."
        assert "target" not in cleaned
        assert "{" not in cleaned

    def test_raw_directive_is_removed(self):
        cleaned = clean_response_text("Checking now. " + json.dumps(DIRECTIVE) + "\n\n\n\nDone.")

        assert "target" not in cleaned
        assert cleaned == "Checking now. \n\nDone."

    def test_text_without_json_is_unchanged(self):
        text = "Nothing to see here.\n\n\n\nReally."
        assert clean_response_text(text) == text

    def test_unrelated_code_blocks_are_kept(self):
        text = "Use this:\n```python\nprint({'a': 1})\n```"
        assert clean_response_text(text) == text

    def test_directive_only_cleans_to_empty(self):
        assert clean_response_text("```json\n" + json.dumps(DIRECTIVE) + "\n```") == ""
        assert clean_response_text(json.dumps({"mcp_instructions": DIRECTIVE})) == ""

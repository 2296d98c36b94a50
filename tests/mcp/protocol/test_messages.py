"""Tests for JSON-RPC envelopes, MCP errors, content types and the state machine."""

import pytest

from mcpilot.mcp.protocol import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ImageContent,
    InvalidStateTransition,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    MCPError,
    ProtocolState,
    ProtocolStateMachine,
    ResourceContent,
    TextContent,
    ToolCallResult,
    ToolDescriptor,
    parse_content,
    parse_message,
)
from mcpilot.mcp.protocol.types import PromptDescriptor, PromptResult, ResourceReadResult


class TestParseMessage:
    """Tests for envelope classification."""

    def test_request(self):
        message = parse_message({"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        assert isinstance(message, JSONRPCRequest)
        assert message.params is None

    def test_notification(self):
        message = parse_message({"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert isinstance(message, JSONRPCNotification)

    def test_response_with_string_id(self):
        message = parse_message({"jsonrpc": "2.0", "id": "abc", "result": {"ok": True}})
        assert isinstance(message, JSONRPCResponse)
        assert message.id == "abc"
        assert not message.is_error

    def test_error_response(self):
        message = parse_message({"jsonrpc": "2.0", "id": 2, "error": {"code": -32601, "message": "nope"}})
        assert message.is_error
        assert message.error.code == METHOD_NOT_FOUND
        assert isinstance(message.error, MCPError)

    def test_null_id_with_method_is_notification(self):
        message = parse_message({"jsonrpc": "2.0", "id": None, "method": "notifications/progress", "params": [1]})
        assert isinstance(message, JSONRPCNotification)
        assert message.params is None

    def test_error_response_with_null_id(self):
        message = parse_message({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}})
        assert isinstance(message, JSONRPCResponse)
        assert message.id is None
        assert message.error.code == PARSE_ERROR

    def test_result_and_error_rejected(self):
        with pytest.raises(ValueError, match="both"):
            parse_message({"jsonrpc": "2.0", "id": 1, "result": {}, "error": {"code": 1, "message": "x"}})

    def test_wrong_version_rejected(self):
        with pytest.raises(ValueError, match="version"):
            parse_message({"jsonrpc": "1.0", "id": 1, "method": "ping"})

    def test_unclassifiable_rejected(self):
        with pytest.raises(ValueError):
            parse_message({"jsonrpc": "2.0"})


class TestEnvelopes:
    """Tests for envelope serialization."""

    def test_request_omits_missing_params(self):
        assert JSONRPCRequest(method="ping", id=5).to_dict() == {"jsonrpc": "2.0", "id": 5, "method": "ping"}

    def test_success_response_defaults_to_empty_result(self):
        assert JSONRPCResponse.success(id=1).to_dict() == {"jsonrpc": "2.0", "id": 1, "result": {}}

    def test_error_response_carries_data(self):
        response = JSONRPCResponse.failure(None, MCPError(PARSE_ERROR, "Parse error", {"x": 1}))
        assert response.to_dict() == {
            "jsonrpc": "2.0",
            "id": None,
            "error": {"code": PARSE_ERROR, "message": "Parse error", "data": {"x": 1}},
        }


class TestMCPError:
    """Tests for MCPError factories."""

    def test_method_not_found_names_method(self):
        error = MCPError.method_not_found("foo/bar")
        assert error.code == METHOD_NOT_FOUND
        assert error.message == "Method not found: foo/bar"

    def test_invalid_params_default_message(self):
        assert MCPError.invalid_params().to_dict() == {"code": INVALID_PARAMS, "message": "Invalid params"}

    def test_timeout_data(self):
        error = MCPError.timeout(2.5)
        assert error.data == {"timeout": 2.5}
        assert "2.5" in str(error)

    def test_from_dict_defaults(self):
        error = MCPError.from_dict({})
        assert error.code == -32603
        assert error.message == "Unknown error"


class TestContent:
    """Tests for content block parsing."""

    def test_text(self):
        assert parse_content({"type": "text", "text": "hi"}) == TextContent(text="hi")

    def test_image(self):
        block = parse_content({"type": "image", "data": "AAAA", "mimeType": "image/jpeg"})
        assert block == ImageContent(data="AAAA", mime_type="image/jpeg")

    def test_embedded_resource(self):
        block = parse_content({"type": "resource", "resource": {"uri": "file:///a", "text": "body"}})
        assert isinstance(block, ResourceContent)
        assert block.uri == "file:///a"
        assert block.text == "body"

    def test_resource_link_has_no_text(self):
        block = parse_content({"type": "resource_link", "uri": "file:///b"})
        assert block == ResourceContent(uri="file:///b")

    def test_unknown_type_skipped(self):
        assert parse_content({"type": "audio", "data": "..."}) is None


class TestResults:
    """Tests for typed result views."""

    def test_tool_descriptor_defaults_schema(self):
        tool = ToolDescriptor.from_dict({"name": "t"})
        assert tool.input_schema == {"type": "object", "properties": {}}
        assert tool.description == ""

    def test_tool_result_structured_only_becomes_text(self):
        result = ToolCallResult.from_dict({"structuredContent": {"answer": 42}})
        assert result.first_text == '{"answer":42}'
        assert result.structured_content == {"answer": 42}

    def test_tool_result_error(self):
        result = ToolCallResult.from_dict({"isError": True, "content": [{"type": "text", "text": "bad"}]})
        assert result.is_error
        assert result.first_text == "bad"

    def test_resource_read_first_text_skips_blank(self):
        result = ResourceReadResult.from_dict(
            {"contents": [{"uri": "a", "text": "  "}, {"uri": "b", "text": "second"}]}
        )
        assert result.first_text == "second"

    def test_prompt_descriptor_arguments(self):
        prompt = PromptDescriptor.from_dict(
            {"name": "p", "arguments": [{"name": "x", "required": True}, {"description": "no name"}]}
        )
        assert [a.name for a in prompt.arguments] == ["x"]
        assert prompt.arguments[0].required

    def test_prompt_result_messages(self):
        result = PromptResult.from_dict(
            {"messages": [{"role": "system", "content": {"type": "text", "text": "hello"}}]}
        )
        assert result.messages[0].role == "system"
        assert result.to_dict()["messages"][0]["content"] == {"type": "text", "text": "hello"}


class TestProtocolStateMachine:
    """Tests for connection state transitions."""

    def test_happy_path(self):
        machine = ProtocolStateMachine()
        for state in (
            ProtocolState.CONNECTING,
            ProtocolState.INITIALIZING,
            ProtocolState.DISCOVERING,
            ProtocolState.READY,
        ):
            machine.transition(state)
        assert machine.is_ready

    def test_invalid_transition_raises(self):
        machine = ProtocolStateMachine()
        with pytest.raises(InvalidStateTransition):
            machine.transition(ProtocolState.READY)

    def test_callbacks_receive_old_and_new(self):
        machine = ProtocolStateMachine()
        seen = []
        machine.on_transition(lambda old, new: seen.append((old, new)))
        machine.transition(ProtocolState.CONNECTING)
        assert seen == [(ProtocolState.DISCONNECTED, ProtocolState.CONNECTING)]

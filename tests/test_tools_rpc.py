import json

import pytest

from slack_mcp import container, metrics
from slack_mcp.context import set_current_session
from slack_mcp.rpc import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    SERVER_ERROR,
    dispatch,
    parse_body,
)
from slack_mcp.tools import TOOLS_BY_NAME, _call_tool, _list_tools, tool_names, validate_params_by_schema

from conftest import rpc, text_of

EXPECTED_TOOLS = {
    "slack_list_channels",
    "slack_search_messages",
    "slack_channel_history",
    "slack_send_message",
    "slack_get_users",
    "slack_get_user_info",
    "slack_get_channel_info",
    "slack_get_thread_replies",
    "search",
    "fetch",
}


@pytest.fixture
def session(rest):
    container.set_rest_adapter(rest)
    set_current_session({"slack_token": "xoxp-1", "user_id": "abc", "kind": "session"})


def test_tool_catalogue():
    assert set(tool_names()) == EXPECTED_TOOLS
    tools, cursor = _list_tools(None)
    assert cursor is None
    for t in tools:
        assert set(t) == {"name", "description", "inputSchema"}
        assert t["inputSchema"]["type"] == "object"


def test_schema_validation_messages():
    schema = TOOLS_BY_NAME["slack_send_message"]["inputSchema"]
    assert validate_params_by_schema({"channel": "C1", "text": "hi"}, schema) is None
    assert "text" in validate_params_by_schema({"channel": "C1"}, schema)
    assert validate_params_by_schema({"channel": "C1", "text": "hi", "bogus": 1}, schema) is not None


def test_call_tool_unknown_and_invalid():
    with pytest.raises(ValueError):
        _call_tool("slack_delete_everything", {})
    with pytest.raises(TypeError):
        _call_tool("slack_get_user_info", {})


def test_call_tool_wraps_plain_results(slack, session):
    slack.routes["search.messages"] = {"ok": True, "messages": {"matches": []}}
    result = _call_tool("search", {"query": "deploy"})
    assert result["isError"] is False
    assert json.loads(text_of(result)) == {"results": []}


def test_call_tool_reports_slack_errors_as_tool_errors(slack, session):
    slack.routes["users.info"] = {"ok": False, "error": "user_not_found"}
    result = _call_tool("slack_get_user_info", {"user": "U404"})
    assert result["isError"] is True
    assert text_of(result) == "Error: Slack API error: user_not_found"


def test_call_tool_without_session_token(rest):
    container.set_rest_adapter(rest)
    result = _call_tool("slack_get_users", {})
    assert result["isError"] is True
    assert "re-authorize" in text_of(result)


def test_initialize(config):
    resp = dispatch(rpc("initialize", {}), config)
    assert resp["id"] == 1
    assert resp["result"]["protocolVersion"] == config.protocol_revision
    assert resp["result"]["serverInfo"]["name"] == config.server_name
    assert resp["result"]["capabilities"] == {"tools": {"listChanged": False}}


def test_ping_and_tools_list(config):
    assert dispatch(rpc("ping"), config)["result"] == {}
    tools = dispatch(rpc("tools/list"), config)["result"]["tools"]
    assert {t["name"] for t in tools} == EXPECTED_TOOLS


def test_tools_call(config, slack, session):
    slack.routes["users.info"] = {"ok": True, "user": {"id": "U1", "name": "alice"}}
    resp = dispatch(rpc("tools/call", {"name": "slack_get_user_info", "arguments": {"user": "U1"}}), config)
    assert resp["result"]["isError"] is False
    assert "User information for U1" in text_of(resp["result"])
    assert slack.last("users.info")["auth"] == "Bearer xoxp-1"


def test_tool_name_as_method(config, slack, session):
    slack.routes["users.list"] = {"ok": True, "members": []}
    resp = dispatch(rpc("slack_get_users", {"limit": 5}), config)
    assert "Found 0 users" in text_of(resp["result"])


def test_tools_call_invalid_params(config):
    resp = dispatch(rpc("tools/call", {"name": "slack_send_message", "arguments": {"channel": "C1"}}), config)
    assert resp["error"]["code"] == INVALID_PARAMS
    assert resp["error"]["message"].startswith("Invalid params:")

    resp = dispatch(rpc("tools/call", {"arguments": {}}), config)
    assert resp["error"]["code"] == INVALID_PARAMS

    resp = dispatch(rpc("tools/call", {"name": "fetch", "arguments": "C1:1.0"}), config)
    assert resp["error"]["code"] == INVALID_PARAMS


def test_unknown_tool_and_method(config):
    resp = dispatch(rpc("tools/call", {"name": "nope", "arguments": {}}), config)
    assert resp["error"]["code"] == METHOD_NOT_FOUND
    resp = dispatch(rpc("resources/list"), config)
    assert resp["error"] == {"code": METHOD_NOT_FOUND, "message": "Method not found"}


def test_unexpected_errors_become_server_errors(config, monkeypatch):
    import slack_mcp.rpc as rpc_module

    def explode(name, arguments):
        raise KeyError("boom")

    monkeypatch.setattr(rpc_module, "_call_tool", explode)
    resp = dispatch(rpc("tools/call", {"name": "search", "arguments": {"query": "x"}}), config)
    assert resp["error"]["code"] == SERVER_ERROR


def test_notifications(config):
    assert dispatch({"jsonrpc": "2.0", "method": "notifications/initialized"}, config) is None
    resp = dispatch(rpc("notifications/cancelled", {}), config)
    assert resp["result"] == {}


@pytest.mark.parametrize("payload", [
    [rpc("ping")],
    {"jsonrpc": "2.0", "id": 1},
    {"jsonrpc": "2.0", "method": "ping", "id": 1, "params": [1, 2]},
    "ping",
])
def test_invalid_requests(config, payload):
    assert dispatch(payload, config)["error"]["code"] == INVALID_REQUEST


def test_wrong_jsonrpc_version(config):
    resp = dispatch({"jsonrpc": "1.0", "method": "ping", "id": 7}, config)
    assert resp["id"] == 7
    assert resp["error"]["code"] == INVALID_REQUEST


def test_parse_body():
    assert parse_body(b'{"a": 1}') == {"a": 1}
    with pytest.raises(ValueError):
        parse_body(b"{not json")


def test_requests_are_counted(config):
    dispatch(rpc("tools/list"), config)
    assert 'mcp_requests_total{method="tools/list",status="ok"} 1' in metrics.render()

# rpc.py
# - JSON-RPC 2.0 handling shared by the HTTP (/mcp) and STDIO transports
# - initialize, tools/list, tools/call, notifications
# - tool name sent directly as method is treated as tools/call

import json
import logging
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from slack_mcp import metrics
from slack_mcp.config import Config
from slack_mcp.schemas.mcp import JsonRpcRequest, MCP_JSONRPC_VERSION
from slack_mcp.tools import _call_tool, _list_tools, TOOLS_BY_NAME

logger = logging.getLogger("mcp")

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000


def capabilities(config: Config) -> Dict[str, Any]:
    return {
        "protocolVersion": config.protocol_revision,
        "capabilities": {"tools": {"listChanged": False}},
        "serverInfo": {"name": config.server_name, "version": config.server_version},
    }


def jsonrpc_ok(id_val: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": MCP_JSONRPC_VERSION, "id": id_val, "result": result}


def jsonrpc_err(id_val: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": MCP_JSONRPC_VERSION, "id": id_val, "error": {"code": code, "message": message}}


def parse_body(raw: bytes) -> Any:
    """Return decoded JSON or raise ValueError."""
    return json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)


def dispatch(payload: Any, config: Config, *, correlation_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Handle one decoded JSON-RPC message. Returns None for notifications."""
    t0 = time.time()
    if isinstance(payload, list):
        return jsonrpc_err(None, INVALID_REQUEST, "Batch not supported")
    try:
        req = JsonRpcRequest.model_validate(payload)
    except ValidationError:
        return jsonrpc_err(None, INVALID_REQUEST, "Invalid Request")
    if req.jsonrpc != MCP_JSONRPC_VERSION:
        return jsonrpc_err(req.id, INVALID_REQUEST, "Invalid jsonrpc version")

    method = req.method or ""
    params = req.params or {}
    corr = correlation_id or str(req.id)

    def log_event(event: str, **fields: Any) -> None:
        msg = {"event": event, "id": req.id, "method": method, "corr": corr}
        msg.update(fields)
        logger.info(json.dumps(msg, ensure_ascii=False, default=str))

    def done(status: str, tool: str = "") -> None:
        metrics.inc("mcp_requests_total", method=method, status=status)
        metrics.observe_hist("mcp_http_request_duration_ms", int((time.time() - t0) * 1000), endpoint=method, status=status, tool=tool)

    if req.id is None:
        log_event("notification")
        return None
    if method.startswith("notifications/"):
        return jsonrpc_ok(req.id, {})

    if method not in ("initialize", "ping", "tools/list", "tools/call") and method in TOOLS_BY_NAME:
        params = {"name": method, "arguments": params}
        method = "tools/call"

    if method == "initialize":
        log_event("rpc", stage="initialize")
        done("ok")
        return jsonrpc_ok(req.id, capabilities(config))

    if method == "ping":
        return jsonrpc_ok(req.id, {})

    if method == "tools/list":
        tools, next_cursor = _list_tools(params.get("cursor"))
        result: Dict[str, Any] = {"tools": tools}
        if next_cursor is not None:
            result["nextCursor"] = next_cursor
        log_event("rpc", stage="tools/list")
        done("ok")
        return jsonrpc_ok(req.id, result)

    if method == "tools/call":
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not name or not isinstance(arguments, dict):
            log_event("rpc.error", reason="invalid_params")
            done("invalid_params", name or "")
            return jsonrpc_err(req.id, INVALID_PARAMS, "Invalid params")
        try:
            result = _call_tool(name, arguments)
        except TypeError as te:
            log_event("rpc.error", tool=name, reason="type_error", msg=str(te))
            done("invalid_params", name)
            return jsonrpc_err(req.id, INVALID_PARAMS, f"Invalid params: {str(te)}")
        except ValueError as ve:
            log_event("rpc.error", tool=name, reason="unknown_tool")
            done("not_found", name)
            return jsonrpc_err(req.id, METHOD_NOT_FOUND, str(ve))
        except Exception as e:
            logger.exception("server error on tools/call")
            done("server_error", name)
            return jsonrpc_err(req.id, SERVER_ERROR, f"Server error: {str(e)}")
        dt = int((time.time() - t0) * 1000)
        log_event("rpc", stage="tools/call", tool=name, ms=dt, is_error=result.get("isError"))
        metrics.observe_hist("mcp_tool_call_duration_ms", dt, tool=name)
        done("tool_error" if result.get("isError") else "ok", name)
        return jsonrpc_ok(req.id, result)

    log_event("rpc.error", reason="method_not_found")
    done("not_found")
    return jsonrpc_err(req.id, METHOD_NOT_FOUND, "Method not found")

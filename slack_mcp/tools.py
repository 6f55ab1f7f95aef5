# tools.py
# - MCP tool meta/executor definition
# - tool definitions are JSON files: name, description, inputSchema, tags
# - validate_params_by_schema: tool parameter validation
# - _list_tools: returns tool list
# - _call_tool: executes tool and returns result


import os
import json
import glob
import logging
from typing import Dict, Any, Callable, Optional, List, Tuple

from jsonschema import validate, ValidationError

from slack_mcp.adapter_slack_rest import SlackAPIError
from slack_mcp.config import cfg
from slack_mcp.container import get_slack_service

logger = logging.getLogger("tools")


def _svc():
    return get_slack_service()


# tool name -> service method (arguments are passed through as keywords)
_METHODS: Dict[str, str] = {
    "slack_list_channels": "list_channels",
    "slack_search_messages": "search_messages",
    "slack_channel_history": "channel_history",
    "slack_send_message": "send_message",
    "slack_get_users": "get_users",
    "slack_get_user_info": "get_user_info",
    "slack_get_channel_info": "get_channel_info",
    "slack_get_thread_replies": "get_thread_replies",
    "search": "search",
    "fetch": "fetch",
}


def _exec_for(name: str) -> Optional[Callable[[Dict[str, Any]], Any]]:
    method = _METHODS.get(name)
    if not method:
        return None
    return lambda p, m=method: getattr(_svc(), m)(**p)


def load_tool_defs(schema_dir: str) -> List[Dict[str, Any]]:
    tool_defs = []
    for path in sorted(glob.glob(os.path.join(schema_dir, "*.json"))):
        with open(path, "r", encoding="utf-8") as f:
            tool_defs.append(json.load(f))
    return tool_defs


TOOLS: List[Dict[str, Any]] = load_tool_defs(cfg.tool_schema_dir)
TOOLS_BY_NAME: Dict[str, Dict[str, Any]] = {t["name"]: t for t in TOOLS}

TOOL_EXEC_MAP: Dict[str, Callable[[Dict[str, Any]], Any]] = {}
for tname in TOOLS_BY_NAME.keys():
    fn = _exec_for(tname)
    if fn:
        TOOL_EXEC_MAP[tname] = fn


def validate_params_by_schema(params: Dict[str, Any], schema: Dict[str, Any]) -> Optional[str]:
    try:
        validate(instance=params, schema=schema)
        return None
    except ValidationError as e:
        return e.message


def _list_tools(cursor: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Return tool list (tools/list). All tools fit in one page."""
    tool_defs: List[Dict[str, Any]] = []
    for t in TOOLS:
        tool_defs.append({
            "name": t["name"],
            "description": t.get("description", ""),
            "inputSchema": t.get("inputSchema", {}),
        })
    return tool_defs, None


def tool_names() -> List[str]:
    return [t["name"] for t in TOOLS]


def _wrap(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict) and "content" in raw and "isError" in raw:
        return raw
    if isinstance(raw, str):
        return {"content": [{"type": "text", "text": raw}], "isError": False}
    return {"content": [{"type": "text", "text": json.dumps(raw, ensure_ascii=False)}], "isError": False}


def _call_tool(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Execute tool and return result (tools/call)"""
    if name not in TOOLS_BY_NAME:
        raise ValueError(f"Unknown tool: {name}")
    tool = TOOLS_BY_NAME[name]
    err = validate_params_by_schema(arguments or {}, tool.get("inputSchema", {}))
    if err:
        raise TypeError(err)
    exec_fn = TOOL_EXEC_MAP.get(name)
    if not exec_fn:
        raise ValueError("No exec function mapped for tool")
    logger.debug(f"tool.call name={name} args_keys={list((arguments or {}).keys())}")
    try:
        return _wrap(exec_fn(arguments or {}))
    except (SlackAPIError, ValueError, RuntimeError) as e:
        logger.info(json.dumps({"event": "tool.failed", "tool": name, "error": str(e)}))
        return {"content": [{"type": "text", "text": f"Error: {str(e)}"}], "isError": True}

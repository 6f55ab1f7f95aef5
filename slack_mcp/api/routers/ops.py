from __future__ import annotations
import platform
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response

from slack_mcp import metrics
from slack_mcp.adapter_slack_rest import SlackAPIError
from slack_mcp.config import Config
from slack_mcp.container import get_rest_adapter
from slack_mcp.kv import StoreUnavailable
from slack_mcp.tools import tool_names


router = APIRouter(tags=["ops"])


@router.get("/")
def root(request: Request):
    config: Config = request.app.state.config
    return {
        "name": config.server_name,
        "description": "Model Context Protocol server for Slack integration",
        "version": config.server_version,
        "status": "running",
        "endpoints": {
            "mcp": "/mcp",
            "oauth_config": "/oauth/config",
            "oauth_authorize": "/oauth/authorize",
            "oauth_token": "/oauth/token",
            "diagnostics": "/diagnostics",
        },
        "tools": tool_names(),
    }


@router.get("/health")
def health(request: Request):
    config: Config = request.app.state.config
    return {
        "status": "ok",
        "server": {"name": config.server_name, "version": config.server_version},
        "protocolRevision": config.protocol_revision,
        "kvBackend": getattr(request.app.state.kv, "backend", "custom"),
    }


@router.get("/metrics")
def metrics_endpoint():
    # No auth; deploy behind reverse proxy if needed
    return Response(content=metrics.render(), media_type="text/plain; version=0.0.4")


@router.get("/diagnostics")
def diagnostics(request: Request):
    config: Config = request.app.state.config
    kv = request.app.state.kv
    environment = {
        "hasKvUrl": bool(config.kv_rest_api_url),
        "hasKvToken": bool(config.kv_rest_api_token),
        "hasDbUrl": bool(config.db_url),
        "hasOauthSecret": bool(config.oauth_secret_key),
        "hasSlackBotToken": bool(config.slack_bot_token),
        "hasSlackUserToken": bool(config.slack_user_token),
        "pythonVersion": platform.python_version(),
        "platform": platform.system().lower(),
        "environment": config.environment,
    }

    try:
        kv.set("diagnostics:probe", "test-value", 60)
        kv_test = "working" if kv.get("diagnostics:probe") == "test-value" else "value mismatch"
    except StoreUnavailable as e:
        kv_test = f"error: {e.message}"

    slack_test = "no token provided"
    if config.slack_user_token:
        try:
            data = get_rest_adapter().auth_test(config.slack_user_token)
            slack_test = f"valid - {data.get('team')}"
        except SlackAPIError as e:
            slack_test = f"invalid: {e.code}"

    return {
        "success": True,
        "message": "System diagnostics complete",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "tests": {"kvStorage": kv_test, "slackToken": slack_test},
        "environment": environment,
    }

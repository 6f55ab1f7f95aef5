# main.py
# - FastAPI-based MCP server for Slack
# - All tools are provided via a single JSON-RPC endpoint (/mcp) using tools/list, tools/call
# - OAuth-style flow (/oauth/*) stores the caller's Slack token and issues signed session tokens

import json
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slack_mcp import container
from slack_mcp.adapter_slack_rest import SlackRestAdapter
from slack_mcp.api.routers import oauth as oauth_router
from slack_mcp.api.routers import ops as ops_router
from slack_mcp.api.routers import slack as slack_router
from slack_mcp.api.security import dep_require_session
from slack_mcp.auth import TokenManager
from slack_mcp.config import Config, cfg
from slack_mcp.context import set_current_session
from slack_mcp.kv import KVStore, build_kv_store
from slack_mcp.rpc import PARSE_ERROR, capabilities, dispatch, jsonrpc_err, parse_body
from slack_mcp.schemas.mcp import ManifestResponse
from slack_mcp.tools import _list_tools

# Logging setup
logger = logging.getLogger("mcp")
logging.basicConfig(level=getattr(logging, cfg.log_level.upper(), logging.INFO))


def _dispatch_as(session: Dict[str, Any], payload: Any, config: Config, correlation_id: Optional[str]) -> Optional[Dict[str, Any]]:
    # worker threads do not inherit the request context
    set_current_session(session)
    return dispatch(payload, config, correlation_id=correlation_id)


def create_app(config: Optional[Config] = None, *, kv: Optional[KVStore] = None, rest: Optional[SlackRestAdapter] = None) -> FastAPI:
    config = config or cfg
    kv = kv if kv is not None else build_kv_store(config)
    if rest is not None:
        container.set_rest_adapter(rest)

    app = FastAPI(title=config.server_name, version=config.server_version)
    app.state.config = config
    app.state.kv = kv
    app.state.token_manager = TokenManager.from_config(config, kv)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )

    app.include_router(ops_router.router)
    app.include_router(oauth_router.router)
    app.include_router(slack_router.router)

    @app.get("/mcp")
    def mcp_info():
        info = capabilities(config)
        return {
            "message": "Slack MCP Server",
            "status": "running",
            "server": info["serverInfo"],
            "protocolRevision": config.protocol_revision,
            "tools": [t["name"] for t in _list_tools(None)[0]],
        }

    @app.get("/mcp/capabilities")
    def mcp_capabilities():
        return capabilities(config)

    @app.get("/mcp/manifest", response_model=ManifestResponse)
    def mcp_manifest():
        tools, _ = _list_tools(None)
        return {"tools": tools}

    @app.post("/mcp")
    async def mcp_entry(request: Request, session: Dict[str, Any] = Depends(dep_require_session)):
        """Single JSON-RPC endpoint."""
        raw = await request.body()
        try:
            payload = parse_body(raw)
        except ValueError:
            return JSONResponse(jsonrpc_err(None, PARSE_ERROR, "Parse error"))

        correlation_id = request.headers.get("x-correlation-id")
        resp = await run_in_threadpool(_dispatch_as, session, payload, config, correlation_id)
        headers = {"x-correlation-id": correlation_id} if correlation_id else {}
        if resp is None:
            # Some clients warn on 204; return empty JSON 200 to be lenient
            return JSONResponse(content={}, headers=headers)
        return JSONResponse(resp, headers=headers)

    logger.info(json.dumps({
        "event": "app.created",
        "kv_backend": getattr(kv, "backend", "custom"),
        "environment": config.environment,
    }))
    return app


app = create_app()

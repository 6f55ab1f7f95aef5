from __future__ import annotations
import json
import logging
from typing import Optional, Dict, Any

from fastapi import Header, HTTPException, Request

from slack_mcp import metrics
from slack_mcp.auth import TokenError, TokenManager
from slack_mcp.config import Config
from slack_mcp.kv import StoreUnavailable

logger = logging.getLogger("mcp")

_INVALID_SESSION = {TokenError.MALFORMED, TokenError.SIGNATURE_MISMATCH, TokenError.EXPIRED}


def get_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    lower = authorization.lower()
    if lower.startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def _unauthorized(error: str, description: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": error, "error_description": description},
        headers={"WWW-Authenticate": f'Bearer error="{error}"'},
    )


def authenticate(request: Request, authorization: Optional[str]) -> Dict[str, Any]:
    """Resolve the caller's Slack token from a session token (or the configured bot token)."""
    config: Config = request.app.state.config
    manager: TokenManager = request.app.state.token_manager

    bearer = get_bearer_token(authorization)
    if bearer is None:
        if not authorization and config.slack_bot_token:
            metrics.inc("mcp_auth_total", outcome="bot_token")
            return {"slack_token": config.slack_bot_token, "user_id": None, "kind": "bot"}
        metrics.inc("mcp_auth_total", outcome="missing")
        raise _unauthorized("invalid_token", "Bearer session token required")

    try:
        res = manager.resolve(bearer)
    except StoreUnavailable as e:
        logger.error(json.dumps({"event": "auth.store_unavailable", "backend": e.backend, "error": e.message}))
        metrics.inc("mcp_auth_total", outcome="store_unavailable")
        raise HTTPException(
            status_code=503,
            detail={"error": "store_unavailable", "error_description": "Credential store unavailable, retry later"},
            headers={"Retry-After": "5"},
        )
    if res.error in _INVALID_SESSION:
        metrics.inc("mcp_auth_total", outcome=res.error.value)
        raise _unauthorized("invalid_token", "Invalid session, please re-authorize")
    if res.error == TokenError.CREDENTIAL_NOT_FOUND:
        metrics.inc("mcp_auth_total", outcome=res.error.value)
        raise _unauthorized("credential_not_found", "No Slack token stored for this session, please re-authorize with Slack")
    metrics.inc("mcp_auth_total", outcome="success")
    return {"slack_token": res.secret, "user_id": res.claims.user_id, "kind": "session"}


def dep_require_session(request: Request, authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """Runs in the threadpool: session resolution may hit a remote KV store."""
    return authenticate(request, authorization)


def require_bot_token(request: Request) -> str:
    config: Config = request.app.state.config
    if not config.slack_bot_token:
        raise HTTPException(status_code=500, detail="SLACK_BOT_TOKEN not configured")
    return config.slack_bot_token

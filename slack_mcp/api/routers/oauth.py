from __future__ import annotations
import html
import json
import logging
from typing import Any, Dict
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError

from slack_mcp import metrics
from slack_mcp.adapter_slack_rest import SlackAPIError
from slack_mcp.auth import TokenError, TokenManager
from slack_mcp.auth.session_tokens import now_ms
from slack_mcp.config import Config
from slack_mcp.container import get_rest_adapter
from slack_mcp.kv import StoreUnavailable
from slack_mcp.schemas.oauth import AuthorizeForm, OAuthServerConfig, TokenRequest, TokenResponse

logger = logging.getLogger("mcp")

router = APIRouter(tags=["oauth"])


def _base_url(request: Request) -> str:
    config: Config = request.app.state.config
    if config.public_base_url:
        return config.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


async def _read_body(request: Request) -> Dict[str, Any]:
    """Accept both JSON and form-encoded bodies."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _valid_redirect(uri: str) -> bool:
    parsed = urlparse(uri)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _with_query(uri: str, **params: str) -> str:
    parsed = urlparse(uri)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query += [(k, v) for k, v in params.items() if v]
    return urlunparse(parsed._replace(query=urlencode(query)))


def _oauth_error(status: int, error: str, description: str | None = None) -> JSONResponse:
    body = {"error": error}
    if description:
        body["error_description"] = description
    return JSONResponse(body, status_code=status)


def _store_unavailable(e: StoreUnavailable) -> JSONResponse:
    logger.error(json.dumps({"event": "oauth.store_unavailable", "backend": e.backend, "error": e.message}))
    return JSONResponse(
        {"error": "temporarily_unavailable", "error_description": "Credential store unavailable, retry later"},
        status_code=503,
        headers={"Retry-After": "5"},
    )


@router.get("/oauth/config", response_model=OAuthServerConfig)
@router.get("/.well-known/oauth-authorization-server", response_model=OAuthServerConfig)
def oauth_config(request: Request):
    config: Config = request.app.state.config
    base = _base_url(request)
    return OAuthServerConfig(
        issuer=base,
        authorization_endpoint=f"{base}/oauth/authorize",
        token_endpoint=f"{base}/oauth/token",
        client_id=config.oauth_client_id,
    )


_AUTHORIZE_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Connect Slack</title></head>
<body>
  <h1>Connect your Slack workspace</h1>
  <p>Paste a Slack user token (xoxp-...) or bot token (xoxb-...). It is stored server-side
  and the client only receives a signed session token.</p>
  <form method="post" action="/oauth/authorize">
    <input type="hidden" name="redirect_uri" value="{redirect_uri}">
    <input type="hidden" name="state" value="{state}">
    <input type="hidden" name="client_id" value="{client_id}">
    <label>Slack token <input type="password" name="slack_token" required></label>
    <button type="submit">Authorize</button>
  </form>
</body>
</html>
"""


@router.get("/oauth/authorize")
def authorize_page(request: Request):
    qp = request.query_params
    redirect_uri = qp.get("redirect_uri")
    if not redirect_uri:
        return _oauth_error(400, "invalid_request", "redirect_uri is required")
    if not _valid_redirect(redirect_uri):
        return _oauth_error(400, "invalid_request", "Invalid redirect_uri")
    page = _AUTHORIZE_PAGE.format(
        redirect_uri=html.escape(redirect_uri, quote=True),
        state=html.escape(qp.get("state") or "", quote=True),
        client_id=html.escape(qp.get("client_id") or "", quote=True),
    )
    return HTMLResponse(page)


def _invalid_body(e: ValidationError) -> JSONResponse:
    fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
    return _oauth_error(400, "invalid_request", f"Invalid field(s): {fields}")


@router.post("/oauth/authorize")
async def authorize_submit(request: Request):
    try:
        form = AuthorizeForm.model_validate(await _read_body(request))
    except ValidationError as e:
        return _invalid_body(e)
    if not form.redirect_uri or not _valid_redirect(form.redirect_uri):
        return _oauth_error(400, "invalid_request", "Invalid redirect_uri")
    if not form.slack_token:
        return _oauth_error(400, "invalid_request", "slack_token is required")

    try:
        identity = await run_in_threadpool(get_rest_adapter().auth_test, form.slack_token)
    except SlackAPIError as e:
        if e.status >= 500:
            return _oauth_error(502, "upstream_unavailable", e.message)
        return _oauth_error(400, "invalid_slack_token", e.message)

    manager: TokenManager = request.app.state.token_manager
    session_data = f"{identity.get('team_id')}_{identity.get('user_id')}_{now_ms()}"
    try:
        grant = await run_in_threadpool(manager.authorize, session_data, form.slack_token)
    except StoreUnavailable as e:
        return _store_unavailable(e)

    metrics.inc("oauth_tokens_issued_total", stage="authorize")
    logger.info(json.dumps({"event": "oauth.authorized", "user_id": grant.user_id, "team": identity.get("team")}))
    return RedirectResponse(_with_query(form.redirect_uri, code=grant.access_token, state=form.state or ""), status_code=302)


@router.post("/oauth/token", response_model=TokenResponse)
async def token_exchange(request: Request):
    try:
        req = TokenRequest.model_validate(await _read_body(request))
    except ValidationError as e:
        return _invalid_body(e)
    if req.grant_type != "authorization_code":
        return _oauth_error(400, "unsupported_grant_type")
    if not req.code:
        return _oauth_error(400, "invalid_request", "authorization_code is required")

    manager: TokenManager = request.app.state.token_manager
    try:
        res = await run_in_threadpool(manager.resolve, req.code)
    except StoreUnavailable as e:
        return _store_unavailable(e)
    if res.error == TokenError.CREDENTIAL_NOT_FOUND:
        return _oauth_error(400, "invalid_grant", "No Slack token stored for this code, please re-authorize")
    if not res.ok:
        return _oauth_error(400, "invalid_grant", "Invalid or expired authorization code")

    metrics.inc("oauth_tokens_issued_total", stage="token")
    return TokenResponse(
        access_token=manager.codec.mint(res.claims.user_id),
        expires_in=manager.codec.max_age_ms // 1000,
    )


@router.post("/oauth/revoke")
async def revoke(request: Request):
    """Delete the stored Slack token behind a session; the session token itself stays valid but useless."""
    token = (await _read_body(request)).get("token")
    if not isinstance(token, str):
        return _oauth_error(400, "invalid_request", "token is required")
    manager: TokenManager = request.app.state.token_manager
    verified = manager.codec.verify(token)
    if not verified.ok:
        return _oauth_error(400, "invalid_token")
    try:
        await run_in_threadpool(manager.credentials.delete, verified.claims.user_id)
    except StoreUnavailable as e:
        return _store_unavailable(e)
    return {"revoked": True}

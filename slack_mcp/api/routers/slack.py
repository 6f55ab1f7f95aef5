from __future__ import annotations
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from slack_mcp.adapter_slack_rest import SlackAPIError
from slack_mcp.api.security import require_bot_token
from slack_mcp.container import get_slack_service, static_token

router = APIRouter(prefix="/slack", tags=["slack"])


class SearchPayload(BaseModel):
    query: Optional[str] = None
    count: int = 20


def _fail(e: SlackAPIError) -> JSONResponse:
    return JSONResponse({"error": e.message}, status_code=500)


@router.get("/channels")
def list_channels(types: str = "public_channel,private_channel", limit: int = 100, token: str = Depends(require_bot_token)):
    try:
        channels = get_slack_service(static_token(token)).list_channels_raw(types=types, limit=limit)
    except SlackAPIError as e:
        return _fail(e)
    return {"success": True, "count": len(channels), "channels": channels}


@router.post("/search")
def search(payload: SearchPayload, token: str = Depends(require_bot_token)):
    if not payload.query:
        raise HTTPException(status_code=400, detail="Query required")
    try:
        messages = get_slack_service(static_token(token)).search_messages_raw(payload.query, count=payload.count)
    except SlackAPIError as e:
        return _fail(e)
    return {"success": True, "query": payload.query, "count": len(messages), "messages": messages}


@router.get("/users")
def list_users(limit: int = 100, token: str = Depends(require_bot_token)):
    try:
        users = get_slack_service(static_token(token)).list_users_raw(limit=limit)
    except SlackAPIError as e:
        return _fail(e)
    return {"success": True, "count": len(users), "users": users}


@router.post("/events")
async def events(request: Request):
    try:
        body: Dict[str, Any] = await request.json()
    except ValueError:
        body = {}
    if isinstance(body, dict) and body.get("type") == "url_verification":
        return {"challenge": body.get("challenge")}
    return Response(status_code=200)

from __future__ import annotations
from typing import Optional, Dict, Any
import contextvars


_session_meta: contextvars.ContextVar[Optional[Dict[str, Any]]] = contextvars.ContextVar("session_meta", default=None)


def set_current_session(meta: Optional[Dict[str, Any]]) -> None:
    _session_meta.set(meta)


def get_current_session() -> Optional[Dict[str, Any]]:
    return _session_meta.get()


def current_slack_token() -> str:
    meta = get_current_session() or {}
    token = meta.get("slack_token")
    if not token:
        raise RuntimeError("Slack token not available for this session. Please re-authorize.")
    return token

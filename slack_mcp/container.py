"""
Very small composition root that wires the Slack adapter and service.
The adapter is process-wide; the upstream token is resolved per call.
"""
from typing import Callable, Optional

from slack_mcp.adapter_slack_rest import SlackRestAdapter
from slack_mcp.config import cfg
from slack_mcp.context import current_slack_token
from slack_mcp.usecases.slack_service import SlackService

_rest: Optional[SlackRestAdapter] = None


def get_rest_adapter() -> SlackRestAdapter:
    global _rest
    if _rest is None:
        _rest = SlackRestAdapter(cfg)
    return _rest


def set_rest_adapter(adapter: Optional[SlackRestAdapter]) -> None:
    global _rest
    _rest = adapter


def get_slack_service(token: Optional[Callable[[], str]] = None) -> SlackService:
    return SlackService(get_rest_adapter(), token or current_slack_token)


def static_token(value: str) -> Callable[[], str]:
    return lambda: value

from __future__ import annotations
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from slack_mcp.adapter_slack_rest import SlackRestAdapter


def _iso_from_ts(ts: Any) -> Optional[str]:
    """Slack ts ("1700000000.000100") or epoch seconds -> ISO-8601 UTC."""
    if ts in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat().replace("+00:00", "Z")
    except (TypeError, ValueError):
        return None


def _project_channel(ch: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": ch.get("id"),
        "name": ch.get("name"),
        "is_private": ch.get("is_private"),
        "is_member": ch.get("is_member"),
        "is_archived": ch.get("is_archived"),
        "topic": (ch.get("topic") or {}).get("value") or "No topic set",
        "purpose": (ch.get("purpose") or {}).get("value") or "No purpose set",
        "member_count": ch.get("num_members"),
        "created": _iso_from_ts(ch.get("created")),
        "creator": ch.get("creator"),
    }


def _project_message(m: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "user": m.get("user"),
        "text": m.get("text"),
        "timestamp": m.get("ts"),
        "date": _iso_from_ts(m.get("ts")),
        "type": m.get("type"),
        "subtype": m.get("subtype"),
        "thread_ts": m.get("thread_ts"),
        "reply_count": m.get("reply_count") or 0,
        "reactions": m.get("reactions") or [],
    }


def _project_user(u: Dict[str, Any]) -> Dict[str, Any]:
    profile = u.get("profile") or {}
    return {
        "id": u.get("id"),
        "name": u.get("name"),
        "real_name": u.get("real_name"),
        "display_name": profile.get("display_name") or u.get("real_name"),
        "email": profile.get("email"),
        "title": profile.get("title"),
        "phone": profile.get("phone"),
        "is_bot": u.get("is_bot"),
        "is_admin": u.get("is_admin"),
        "is_owner": u.get("is_owner"),
        "is_primary_owner": u.get("is_primary_owner"),
        "timezone": u.get("tz"),
        "status": profile.get("status_text") or "No status",
        "presence": u.get("presence"),
    }


def _text_result(text: str) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": False}


def _json_block(items: Any) -> str:
    return json.dumps(items, ensure_ascii=False, indent=2)


class SlackService:
    """Reshapes Slack Web API responses for tool callers.

    ``token`` is a callable so the upstream secret is looked up per call.
    """

    def __init__(self, rest: SlackRestAdapter, token: Callable[[], str]):
        self.rest = rest
        self._token = token

    def _t(self) -> str:
        return self._token()

    def resolve_channel(self, channel: str) -> str:
        """Map "#name" to a channel id; unknown names pass through unchanged."""
        if not channel.startswith("#"):
            return channel
        data = self.rest.conversations_list(self._t())
        for ch in data.get("channels") or []:
            if ch.get("name") == channel[1:]:
                return ch.get("id") or channel
        return channel

    # Channels
    def list_channels(self, types: str = "public_channel,private_channel", limit: int = 100, exclude_archived: bool = True) -> Dict[str, Any]:
        data = self.rest.conversations_list(self._t(), types=types, limit=limit, exclude_archived=exclude_archived)
        channels = [_project_channel(c) for c in data.get("channels") or []]
        return _text_result(f"Found {len(channels)} channels:\n\n{_json_block(channels)}")

    def list_channels_raw(self, types: str = "public_channel,private_channel", limit: int = 100) -> List[Dict[str, Any]]:
        data = self.rest.conversations_list(self._t(), types=types, limit=limit)
        return [
            {
                "id": c.get("id"),
                "name": c.get("name"),
                "is_private": c.get("is_private"),
                "topic": (c.get("topic") or {}).get("value") or "No topic",
                "member_count": c.get("num_members"),
            }
            for c in data.get("channels") or []
        ]

    def get_channel_info(self, channel: str, include_locale: bool = False) -> Dict[str, Any]:
        data = self.rest.conversations_info(self._t(), self.resolve_channel(channel), include_locale=include_locale)
        ch = data.get("channel") or {}
        info = _project_channel(ch)
        info.update({"is_general": ch.get("is_general"), "locale": ch.get("locale")})
        return _text_result(f"Channel information for {channel}:\n\n{_json_block(info)}")

    # Messages
    def search_messages(self, query: str, count: int = 20, sort: str = "timestamp", sort_dir: str = "desc") -> Dict[str, Any]:
        matches = self._search(query, count=count, sort=sort, sort_dir=sort_dir)
        messages = [
            {
                "channel": (m.get("channel") or {}).get("name"),
                "channel_id": (m.get("channel") or {}).get("id"),
                "user": m.get("username"),
                "user_id": m.get("user"),
                "text": m.get("text"),
                "timestamp": m.get("ts"),
                "date": _iso_from_ts(m.get("ts")),
                "permalink": m.get("permalink"),
                "score": m.get("score"),
            }
            for m in matches
        ]
        return _text_result(f'Found {len(messages)} messages matching "{query}":\n\n{_json_block(messages)}')

    def _search(self, query: str, **kwargs: Any) -> List[Dict[str, Any]]:
        data = self.rest.search_messages(self._t(), query, **kwargs)
        return (data.get("messages") or {}).get("matches") or []

    def search_messages_raw(self, query: str, count: int = 20) -> List[Dict[str, Any]]:
        return [
            {
                "channel": (m.get("channel") or {}).get("name"),
                "user": m.get("username"),
                "text": m.get("text"),
                "timestamp": m.get("ts"),
                "permalink": m.get("permalink"),
            }
            for m in self._search(query, count=count)
        ]

    def channel_history(self, channel: str, limit: int = 50, oldest: Optional[str] = None, latest: Optional[str] = None, include_all_metadata: bool = False) -> Dict[str, Any]:
        data = self.rest.conversations_history(
            self._t(),
            self.resolve_channel(channel),
            limit=limit,
            oldest=oldest,
            latest=latest,
            include_all_metadata=include_all_metadata,
        )
        messages = [_project_message(m) for m in data.get("messages") or []]
        return _text_result(f"Channel history for {channel} ({len(messages)} messages):\n\n{_json_block(messages)}")

    def get_thread_replies(self, channel: str, ts: str, limit: int = 100) -> Dict[str, Any]:
        data = self.rest.conversations_replies(self._t(), self.resolve_channel(channel), ts, limit=limit)
        replies = []
        for m in data.get("messages") or []:
            item = _project_message(m)
            item.pop("reply_count", None)
            item["parent_user_id"] = m.get("parent_user_id")
            replies.append(item)
        return _text_result(f"Thread replies for message {ts} in {channel} ({len(replies)} replies):\n\n{_json_block(replies)}")

    def send_message(self, channel: str, text: str, thread_ts: Optional[str] = None, unfurl_links: bool = True) -> Dict[str, Any]:
        data = self.rest.chat_post_message(self._t(), self.resolve_channel(channel), text, thread_ts=thread_ts, unfurl_links=unfurl_links)
        return _text_result(f"Message sent successfully to {channel}. Message timestamp: {data.get('ts')}")

    # Users
    def get_users(self, limit: int = 100, include_locale: bool = False) -> Dict[str, Any]:
        users = self._active_users(limit=limit, include_locale=include_locale)
        return _text_result(f"Found {len(users)} users:\n\n{_json_block([_project_user(u) for u in users])}")

    def _active_users(self, **kwargs: Any) -> List[Dict[str, Any]]:
        data = self.rest.users_list(self._t(), **kwargs)
        return [u for u in data.get("members") or [] if not u.get("deleted")]

    def list_users_raw(self, limit: int = 100) -> List[Dict[str, Any]]:
        return [
            {
                "id": u.get("id"),
                "name": u.get("name"),
                "real_name": u.get("real_name"),
                "email": (u.get("profile") or {}).get("email"),
                "is_bot": u.get("is_bot"),
            }
            for u in self._active_users(limit=limit)
        ]

    def get_user_info(self, user: str, include_locale: bool = False) -> Dict[str, Any]:
        data = self.rest.users_info(self._t(), user, include_locale=include_locale)
        u = data.get("user") or {}
        profile = u.get("profile") or {}
        fields = profile.get("fields") or {}
        info = _project_user(u)
        info.update({
            "department": (fields.get("department") or {}).get("value"),
            "manager": (fields.get("manager") or {}).get("value"),
            "locale": u.get("locale"),
            "avatar": profile.get("image_512"),
        })
        return _text_result(f"User information for {user}:\n\n{_json_block(info)}")

    # Connector convention: search -> ids, fetch(id) -> document
    def search(self, query: str, count: int = 20) -> Dict[str, Any]:
        results = []
        for m in self._search(query, count=count):
            ch = m.get("channel") or {}
            results.append({
                "id": f"{ch.get('id')}:{m.get('ts')}",
                "title": f"#{ch.get('name') or ch.get('id')} - {m.get('username') or m.get('user') or 'unknown'}",
                "text": (m.get("text") or "")[:200],
                "url": m.get("permalink"),
            })
        return {"results": results}

    def fetch(self, id: str) -> Dict[str, Any]:
        channel, sep, ts = (id or "").partition(":")
        if not sep or not channel or not ts:
            raise ValueError(f"invalid document id: {id!r} (expected '<channel_id>:<ts>')")
        data = self.rest.conversations_history(self._t(), channel, latest=ts, inclusive=True, limit=1)
        messages = data.get("messages") or []
        if not messages or messages[0].get("ts") != ts:
            raise ValueError(f"message not found: {id}")
        m = messages[0]
        return {
            "id": id,
            "title": f"Message in {channel} at {_iso_from_ts(ts)}",
            "text": m.get("text") or "",
            "url": None,
            "metadata": {
                "channel": channel,
                "user": m.get("user"),
                "ts": ts,
                "thread_ts": m.get("thread_ts"),
                "reply_count": m.get("reply_count") or 0,
            },
        }

# adapter_slack_rest.py
# - Slack Web API integration adapter
# - REST calls with a bearer token, includes error/rate limiter/circuit breaker utilities

import time
import threading
from datetime import datetime, timezone
from typing import Dict, Any, Optional

import httpx
from slack_mcp.config import Config, cfg


def _headers(token: str) -> Dict[str, str]:
    """Return headers for Slack API call"""
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/x-www-form-urlencoded",
    }


def token_type(token: Optional[str]) -> str:
    if token and token.startswith("xoxp-"):
        return "user"
    if token and token.startswith("xoxb-"):
        return "bot"
    return "unknown"


class SlackAPIError(Exception):
    """Slack API error wrapper"""
    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message


def _friendly_error(method: str, code: str, token: str) -> str:
    if code == "not_allowed_token_type" and token_type(token) == "user":
        return f"This API method ({method}) requires a bot token, but you're using a user token. Some features may be limited."
    if code == "missing_scope":
        return f"Missing required permission scope for {method}. Please check your token permissions."
    if code == "invalid_auth":
        return "Invalid authentication. Your token may have expired or been revoked."
    return f"Slack API error: {code}"


class _RateLimiter:
    """Simple token bucket rate limiter"""
    def __init__(self, rate_per_sec: float, burst: int, clock=time.time, sleep=time.sleep):
        self.capacity = burst
        self.tokens = burst
        self.rate = rate_per_sec
        self.clock = clock
        self.sleep = sleep
        self.last = clock()
        self.lock = threading.Lock()

    def acquire(self) -> None:
        # reserve a slot under the lock, wait outside it
        with self.lock:
            now = self.clock()
            delta = now - self.last
            self.last = now
            self.tokens = min(self.capacity, self.tokens + delta * self.rate)
            self.tokens -= 1
            sleep_for = -self.tokens / self.rate if self.tokens < 0 else 0
        if sleep_for > 0:
            self.sleep(sleep_for)


class _CircuitBreaker:
    """Simple circuit breaker"""
    def __init__(self, fail_threshold: int = 3, cooldown_sec: int = 5):
        self.fail = 0
        self.open_until = 0.0
        self.fail_threshold = fail_threshold
        self.cooldown_sec = cooldown_sec
        self.lock = threading.Lock()

    def before(self) -> None:
        with self.lock:
            now = time.time()
            if now < self.open_until:
                raise SlackAPIError(503, "circuit_open", "Slack API temporarily unavailable (circuit open)")

    def record(self, ok: bool) -> None:
        with self.lock:
            if ok:
                self.fail = 0
            else:
                self.fail += 1
                if self.fail >= self.fail_threshold:
                    self.open_until = time.time() + self.cooldown_sec


def _parse_retry_after(val: str) -> float:
    """Parse Retry-After header (seconds or HTTP-date). Return seconds to sleep (>=0)."""
    try:
        return max(0.0, float(val))
    except ValueError:
        pass
    try:
        from email.utils import parsedate_to_datetime
        dt = parsedate_to_datetime(val)
        return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())
    except (TypeError, ValueError):
        return 0.0


class SlackRestAdapter:
    """Thin Slack Web API client. Every method takes the bearer token first."""

    def __init__(self, config: Config = cfg, *, client: Optional[httpx.Client] = None, sleep=time.sleep):
        self.base_url = config.slack_api_base_url.rstrip("/")
        self.max_retries = config.http_max_retries
        self.backoff_initial = config.http_backoff_initial
        self.backoff_factor = config.http_backoff_factor
        self._client = client or httpx.Client(timeout=config.http_timeout)
        self._rate_limiter = _RateLimiter(rate_per_sec=config.rate_per_sec, burst=config.rate_burst)
        self._circuit = _CircuitBreaker(fail_threshold=config.cb_fails, cooldown_sec=config.cb_cooldown_sec)
        self._sleep = sleep

    # -----------------------------
    # HTTP Wrapper
    # -----------------------------
    def _request(self, http_method: str, api_method: str, token: str, *, params: Optional[Dict[str, Any]] = None, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """429/5xx backoff + rate limit + circuit breaker + Slack ``ok`` envelope check."""
        self._circuit.before()
        self._rate_limiter.acquire()

        url = f"{self.base_url}/{api_method}"
        # Slack expects omitted rather than empty parameters
        params = {k: _wire(v) for k, v in (params or {}).items() if v is not None}
        data = {k: _wire(v) for k, v in (data or {}).items() if v is not None}
        backoff = self.backoff_initial

        for attempt in range(self.max_retries + 1):
            try:
                if http_method == "POST":
                    r = self._client.post(url, headers=_headers(token), data=data)
                else:
                    r = self._client.get(url, headers=_headers(token), params=params)
            except httpx.HTTPError as e:
                self._circuit.record(False)
                raise SlackAPIError(502, "client_error", str(e)[:120] or e.__class__.__name__) from e

            if r.status_code in (429, 500, 502, 503, 504) and attempt < self.max_retries:
                ra = r.headers.get("Retry-After")
                self._sleep(_parse_retry_after(ra) if ra else backoff)
                backoff *= self.backoff_factor
                continue

            if r.status_code >= 400:
                self._circuit.record(False)
                raise SlackAPIError(r.status_code, "http_error", f"HTTP error! status: {r.status_code}")

            self._circuit.record(True)
            try:
                body = r.json()
            except ValueError as e:
                raise SlackAPIError(r.status_code, "invalid_response", "Slack returned a non-JSON response") from e
            if not body.get("ok"):
                code = body.get("error") or "unknown_error"
                raise SlackAPIError(r.status_code, code, _friendly_error(api_method, code, token))
            return body
        # unreachable: the final attempt either returns or raises
        raise SlackAPIError(503, "retries_exhausted", "Slack API retries exhausted")

    def call(self, token: str, api_method: str, **params: Any) -> Dict[str, Any]:
        return self._request("GET", api_method, token, params=params)

    def post(self, token: str, api_method: str, **data: Any) -> Dict[str, Any]:
        return self._request("POST", api_method, token, data=data)

    # -----------------------------
    # Web API methods
    # -----------------------------
    def auth_test(self, token: str) -> Dict[str, Any]:
        return self.call(token, "auth.test")

    def conversations_list(self, token: str, *, types: str = "public_channel,private_channel", limit: Optional[int] = None, exclude_archived: Optional[bool] = None) -> Dict[str, Any]:
        return self.call(token, "conversations.list", types=types, limit=limit, exclude_archived=exclude_archived)

    def conversations_history(self, token: str, channel: str, *, limit: Optional[int] = None, oldest: Optional[str] = None, latest: Optional[str] = None, inclusive: Optional[bool] = None, include_all_metadata: Optional[bool] = None) -> Dict[str, Any]:
        return self.call(token, "conversations.history", channel=channel, limit=limit, oldest=oldest, latest=latest, inclusive=inclusive, include_all_metadata=include_all_metadata)

    def conversations_replies(self, token: str, channel: str, ts: str, *, limit: Optional[int] = None) -> Dict[str, Any]:
        return self.call(token, "conversations.replies", channel=channel, ts=ts, limit=limit)

    def conversations_info(self, token: str, channel: str, *, include_locale: Optional[bool] = None) -> Dict[str, Any]:
        return self.call(token, "conversations.info", channel=channel, include_locale=include_locale)

    def search_messages(self, token: str, query: str, *, count: Optional[int] = None, sort: Optional[str] = None, sort_dir: Optional[str] = None) -> Dict[str, Any]:
        return self.call(token, "search.messages", query=query, count=count, sort=sort, sort_dir=sort_dir)

    def users_list(self, token: str, *, limit: Optional[int] = None, include_locale: Optional[bool] = None) -> Dict[str, Any]:
        return self.call(token, "users.list", limit=limit, include_locale=include_locale)

    def users_info(self, token: str, user: str, *, include_locale: Optional[bool] = None) -> Dict[str, Any]:
        return self.call(token, "users.info", user=user, include_locale=include_locale)

    def chat_post_message(self, token: str, channel: str, text: str, *, thread_ts: Optional[str] = None, unfurl_links: Optional[bool] = None) -> Dict[str, Any]:
        return self.post(token, "chat.postMessage", channel=channel, text=text, thread_ts=thread_ts, unfurl_links=unfurl_links)


def _wire(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value

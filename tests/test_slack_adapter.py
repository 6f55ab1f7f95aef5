import httpx
import pytest

from slack_mcp.adapter_slack_rest import SlackAPIError, SlackRestAdapter, _RateLimiter, _parse_retry_after, token_type

from conftest import make_config


def _adapter(handler, sleeps=None, **overrides):
    sleeps = sleeps if sleeps is not None else []
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SlackRestAdapter(make_config(**overrides), client=client, sleep=sleeps.append)


def test_token_type():
    assert token_type("xoxp-1") == "user"
    assert token_type("xoxb-1") == "bot"
    assert token_type("other") == "unknown"
    assert token_type(None) == "unknown"


def test_get_sends_bearer_and_drops_empty_params(slack, rest):
    slack.routes["conversations.history"] = {"ok": True, "messages": []}
    rest.conversations_history("xoxp-1", "C1", limit=5, oldest=None, inclusive=True)
    call = slack.last("conversations.history")
    assert call["auth"] == "Bearer xoxp-1"
    assert call["params"] == {"channel": "C1", "limit": "5", "inclusive": "true"}


def test_post_sends_form_body(slack, rest):
    slack.routes["chat.postMessage"] = {"ok": True, "ts": "1.2"}
    rest.chat_post_message("xoxb-1", "C1", "hello", unfurl_links=False)
    call = slack.last("chat.postMessage")
    assert call["params"] == {"channel": "C1", "text": "hello", "unfurl_links": "false"}


@pytest.mark.parametrize("code, token, expected", [
    ("not_allowed_token_type", "xoxp-1", "requires a bot token"),
    ("missing_scope", "xoxp-1", "Missing required permission scope for users.list"),
    ("invalid_auth", "xoxb-1", "Invalid authentication"),
    ("channel_not_found", "xoxb-1", "Slack API error: channel_not_found"),
])
def test_slack_errors_are_friendly(slack, rest, code, token, expected):
    slack.routes["users.list"] = {"ok": False, "error": code}
    with pytest.raises(SlackAPIError) as exc:
        rest.users_list(token)
    assert exc.value.code == code
    assert expected in exc.value.message


def test_retries_429_honouring_retry_after():
    responses = [
        httpx.Response(429, headers={"Retry-After": "3"}),
        httpx.Response(200, json={"ok": True, "user_id": "U1"}),
    ]
    sleeps = []
    adapter = _adapter(lambda request: responses.pop(0), sleeps)
    assert adapter.auth_test("xoxb-1")["user_id"] == "U1"
    assert sleeps == [3.0]


def test_http_error_after_retries():
    sleeps = []
    adapter = _adapter(lambda request: httpx.Response(502), sleeps, http_max_retries=2, http_backoff_initial=0.5)
    with pytest.raises(SlackAPIError) as exc:
        adapter.auth_test("xoxb-1")
    assert exc.value.status == 502
    assert exc.value.code == "http_error"
    assert sleeps == [0.5, 1.0]


def test_transport_error_is_wrapped():
    def boom(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(SlackAPIError) as exc:
        _adapter(boom).auth_test("xoxb-1")
    assert exc.value.status == 502
    assert exc.value.code == "client_error"


def test_circuit_opens_after_repeated_failures():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400)

    adapter = _adapter(handler, cb_fails=2, cb_cooldown_sec=60)
    for _ in range(2):
        with pytest.raises(SlackAPIError):
            adapter.auth_test("xoxb-1")
    with pytest.raises(SlackAPIError) as exc:
        adapter.auth_test("xoxb-1")
    assert exc.value.code == "circuit_open"
    assert len(calls) == 2


def test_non_json_response():
    adapter = _adapter(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(SlackAPIError) as exc:
        adapter.auth_test("xoxb-1")
    assert exc.value.code == "invalid_response"


def test_parse_retry_after():
    assert _parse_retry_after("2") == 2.0
    assert _parse_retry_after("-1") == 0.0
    assert _parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
    assert _parse_retry_after("soon") == 0.0


def test_rate_limiter_waits_outside_the_lock():
    waits = []
    limiter = None

    def sleep(seconds):
        assert not limiter.lock.locked()
        waits.append(seconds)

    limiter = _RateLimiter(rate_per_sec=1, burst=1, clock=lambda: 100.0, sleep=sleep)
    limiter.acquire()
    assert waits == []
    limiter.acquire()
    limiter.acquire()
    assert waits == [1.0, 2.0]

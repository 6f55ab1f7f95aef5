from urllib.parse import parse_qs, urlparse

import pytest

from slack_mcp.auth.session_tokens import SessionTokenCodec

from conftest import SECRET, USER_TOKEN

REDIRECT = "https://client.test/callback"


def _authorize(client, **overrides):
    form = {"slack_token": USER_TOKEN, "redirect_uri": REDIRECT, "state": "xyz"}
    form.update(overrides)
    return client.post("/oauth/authorize", data=form, follow_redirects=False)


def _code_from(resp):
    assert resp.status_code == 302
    location = urlparse(resp.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == REDIRECT
    qs = parse_qs(location.query)
    assert qs["state"] == ["xyz"]
    return qs["code"][0]


def test_oauth_metadata(client):
    for path in ("/oauth/config", "/.well-known/oauth-authorization-server"):
        body = client.get(path).json()
        assert body["issuer"] == "http://testserver"
        assert body["authorization_endpoint"] == "http://testserver/oauth/authorize"
        assert body["token_endpoint"] == "http://testserver/oauth/token"
        assert body["grant_types_supported"] == ["authorization_code"]


def test_oauth_metadata_uses_public_base_url(make_client):
    client = make_client(public_base_url="https://mcp.example.com/")
    assert client.get("/oauth/config").json()["token_endpoint"] == "https://mcp.example.com/oauth/token"


def test_authorize_page_escapes_parameters(client):
    resp = client.get("/oauth/authorize", params={"redirect_uri": REDIRECT, "state": '"><script>'})
    assert resp.status_code == 200
    assert "text/html" in resp.headers["content-type"]
    assert "&quot;&gt;&lt;script&gt;" in resp.text
    assert '"><script>' not in resp.text


@pytest.mark.parametrize("redirect", [None, "javascript:alert(1)", "/relative"])
def test_authorize_page_rejects_bad_redirect(client, redirect):
    params = {"redirect_uri": redirect} if redirect else {}
    resp = client.get("/oauth/authorize", params=params)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"


def test_authorize_stores_token_and_redirects(client, kv, slack):
    code = _code_from(_authorize(client))
    res = SessionTokenCodec(SECRET).verify(code)
    assert res.ok
    assert kv.get(f"slack_token:{res.claims.user_id}") == USER_TOKEN
    assert slack.last("auth.test")["auth"] == f"Bearer {USER_TOKEN}"


def test_authorize_accepts_json_body(client):
    resp = client.post(
        "/oauth/authorize",
        json={"slack_token": USER_TOKEN, "redirect_uri": REDIRECT, "state": "xyz"},
        follow_redirects=False,
    )
    _code_from(resp)


def test_authorize_rejects_invalid_slack_token(client, slack, kv):
    slack.routes["auth.test"] = {"ok": False, "error": "invalid_auth"}
    resp = _authorize(client)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_slack_token"
    assert kv._data == {}


def test_authorize_requires_token_and_redirect(client):
    assert _authorize(client, slack_token="").json()["error"] == "invalid_request"
    assert _authorize(client, redirect_uri="ftp://x").status_code == 400


def test_token_exchange(client):
    code = _code_from(_authorize(client))
    resp = client.post("/oauth/token", data={"grant_type": "authorization_code", "code": code})
    assert resp.status_code == 200
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == 86400
    assert body["scope"] == "read write"
    assert SessionTokenCodec(SECRET).verify(body["access_token"]).claims.user_id == SessionTokenCodec(SECRET).verify(code).claims.user_id


def test_token_exchange_json_body(client):
    code = _code_from(_authorize(client))
    resp = client.post("/oauth/token", json={"grant_type": "authorization_code", "code": code})
    assert resp.status_code == 200


def test_token_exchange_errors(client):
    resp = client.post("/oauth/token", data={"grant_type": "password", "code": "x"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "unsupported_grant_type"

    resp = client.post("/oauth/token", data={"grant_type": "authorization_code"})
    assert resp.json()["error"] == "invalid_request"

    resp = client.post("/oauth/token", data={"grant_type": "authorization_code", "code": "not-a-real-token"})
    assert resp.json()["error"] == "invalid_grant"


def test_token_exchange_without_stored_credential(client):
    orphan = SessionTokenCodec(SECRET).mint("0000000000000000")
    resp = client.post("/oauth/token", data={"grant_type": "authorization_code", "code": orphan})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_grant"


def test_revoke_deletes_credential(client, kv):
    code = _code_from(_authorize(client))
    user_id = SessionTokenCodec(SECRET).verify(code).claims.user_id
    resp = client.post("/oauth/revoke", data={"token": code})
    assert resp.json() == {"revoked": True}
    assert kv.get(f"slack_token:{user_id}") is None

    assert client.post("/oauth/revoke", data={"token": "garbage"}).status_code == 400


def test_issued_tokens_are_counted(client):
    from slack_mcp import metrics

    _authorize(client)
    assert 'oauth_tokens_issued_total{stage="authorize"} 1' in metrics.render()


def test_authorize_accepts_multipart_form(client):
    files = {k: (None, v) for k, v in {"slack_token": USER_TOKEN, "redirect_uri": REDIRECT, "state": "xyz"}.items()}
    resp = client.post("/oauth/authorize", files=files, follow_redirects=False)
    _code_from(resp)


@pytest.mark.parametrize("path,body", [
    ("/oauth/authorize", {"slack_token": 123, "redirect_uri": REDIRECT}),
    ("/oauth/authorize", {"slack_token": USER_TOKEN, "redirect_uri": ["https://a.test"]}),
    ("/oauth/token", {"grant_type": "authorization_code", "code": 5}),
    ("/oauth/revoke", {"token": 5}),
    ("/oauth/revoke", {}),
])
def test_wrongly_typed_json_fields_are_rejected(client, path, body):
    resp = client.post(path, json=body, follow_redirects=False)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"


def test_revoke_rejects_unverifiable_token(client):
    resp = client.post("/oauth/revoke", json={"token": SessionTokenCodec("other").mint("abc")})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_token"

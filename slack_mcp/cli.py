#!/usr/bin/env python3
"""
Command line entry points.
Usage examples:
    python -m slack_mcp.cli serve --port 8081
    SLACK_BOT_TOKEN=xoxb-... python -m slack_mcp.cli stdio
    python -m slack_mcp.cli token derive "T123_U456_1700000000000"
    python -m slack_mcp.cli token authorize --slack-token xoxp-... --session-data "T123_U456_1700000000000"
    python -m slack_mcp.cli token verify <SESSION_TOKEN>
Environment:
    OAUTH_SECRET_KEY, KV_BACKEND / KV_REST_API_URL / KV_REST_API_TOKEN / DB_URL, SLACK_BOT_TOKEN
"""
import sys
import json
import argparse
from typing import Optional, TextIO

from slack_mcp.config import Config, cfg


def _print(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _manager(config: Config):
    from slack_mcp.auth import TokenManager
    from slack_mcp.kv import build_kv_store
    return TokenManager.from_config(config, build_kv_store(config))


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn
    uvicorn.run("slack_mcp.main:app", host=args.host, port=args.port or cfg.port, log_level=cfg.log_level.lower())
    return 0


def run_stdio(config: Config, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout) -> int:
    """Serve JSON-RPC over stdin/stdout (one message per line) with the configured bot token."""
    from slack_mcp.adapter_slack_rest import SlackAPIError
    from slack_mcp.container import get_rest_adapter
    from slack_mcp.context import set_current_session
    from slack_mcp.rpc import PARSE_ERROR, dispatch, jsonrpc_err, parse_body

    if not config.slack_bot_token:
        print("ERROR: SLACK_BOT_TOKEN environment variable is required", file=sys.stderr)
        return 1
    try:
        who = get_rest_adapter().auth_test(config.slack_bot_token)
    except SlackAPIError as e:
        print(f"Slack API connection failed: {e.message}", file=sys.stderr)
        return 1
    print(f"Connected to: {who.get('team')} as {who.get('user')}", file=sys.stderr)
    set_current_session({"slack_token": config.slack_bot_token, "user_id": None, "kind": "bot"})

    print("[MCP STDIO mode] Ready for JSON-RPC requests via stdin.", file=sys.stderr)
    for line in stdin:
        line = line.strip()
        if not line:
            continue
        try:
            payload = parse_body(line)
        except ValueError:
            resp = jsonrpc_err(None, PARSE_ERROR, "Parse error")
        else:
            resp = dispatch(payload, config)
        if resp is not None:
            stdout.write(json.dumps(resp, ensure_ascii=False) + "\n")
            stdout.flush()
    return 0


def cmd_stdio(args: argparse.Namespace) -> int:
    return run_stdio(cfg)


def cmd_token_derive(args: argparse.Namespace) -> int:
    from slack_mcp.auth.session_tokens import derive_user_id, resolve_signing_secret
    secret = resolve_signing_secret(cfg.oauth_secret_key, production=cfg.is_production)
    _print({"user_id": derive_user_id(args.session_data, secret)})
    return 0


def cmd_token_authorize(args: argparse.Namespace) -> int:
    from slack_mcp.kv import StoreUnavailable
    try:
        grant = _manager(cfg).authorize(args.session_data, args.slack_token)
    except StoreUnavailable as e:
        print(f"credential store unavailable: {e}", file=sys.stderr)
        return 3
    _print({"user_id": grant.user_id, "access_token": grant.access_token})
    return 0


def cmd_token_verify(args: argparse.Namespace) -> int:
    from slack_mcp.auth.session_tokens import SessionTokenCodec, resolve_signing_secret
    secret = resolve_signing_secret(cfg.oauth_secret_key, production=cfg.is_production)
    res = SessionTokenCodec(secret, max_age_ms=cfg.session_max_age_seconds * 1000).verify(args.token)
    if not res.ok:
        _print({"valid": False, "error": res.error.value})
        return 1
    _print({"valid": True, "user_id": res.claims.user_id, "issued_at_ms": res.claims.issued_at_ms})
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="slack-mcp", description="Slack MCP server")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_serve = sub.add_parser("serve", help="Run the HTTP server (uvicorn)")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=None)
    p_serve.set_defaults(func=cmd_serve)

    p_stdio = sub.add_parser("stdio", help="Serve JSON-RPC over stdin/stdout using SLACK_BOT_TOKEN")
    p_stdio.set_defaults(func=cmd_stdio)

    g_tok = sub.add_parser("token", help="Session token helpers")
    sub_tok = g_tok.add_subparsers(dest="token_cmd", required=True)

    p_derive = sub_tok.add_parser("derive", help="Derive the user id for session data")
    p_derive.add_argument("session_data")
    p_derive.set_defaults(func=cmd_token_derive)

    p_auth = sub_tok.add_parser("authorize", help="Store a Slack token and mint a session token")
    p_auth.add_argument("--slack-token", required=True)
    p_auth.add_argument("--session-data", required=True)
    p_auth.set_defaults(func=cmd_token_authorize)

    p_verify = sub_tok.add_parser("verify", help="Verify a session token")
    p_verify.add_argument("token")
    p_verify.set_defaults(func=cmd_token_verify)
    return p


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Optional

from slack_mcp.auth.credentials import CredentialStore
from slack_mcp.auth.session_tokens import (
    SessionClaims,
    SessionTokenCodec,
    TokenError,
    derive_user_id,
    resolve_signing_secret,
)
from slack_mcp.config import Config
from slack_mcp.kv import KVStore

logger = logging.getLogger("slack_mcp.auth")


@dataclass(frozen=True)
class Authorization:
    user_id: str
    access_token: str


@dataclass(frozen=True)
class Resolution:
    claims: Optional[SessionClaims] = None
    secret: Optional[str] = None
    error: Optional[TokenError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.secret is not None


class TokenManager:
    """Mints session tokens for stored Slack credentials and resolves them back."""

    def __init__(self, secret: str, codec: SessionTokenCodec, credentials: CredentialStore):
        self._secret = secret
        self.codec = codec
        self.credentials = credentials

    @classmethod
    def from_config(cls, config: Config, kv: KVStore) -> "TokenManager":
        secret = resolve_signing_secret(config.oauth_secret_key, production=config.is_production)
        codec = SessionTokenCodec(secret, max_age_ms=config.session_max_age_seconds * 1000)
        credentials = CredentialStore(kv, ttl_seconds=config.credential_ttl_seconds, key_prefix=config.credential_key_prefix)
        return cls(secret, codec, credentials)

    def derive_user_id(self, session_data: str) -> str:
        return derive_user_id(session_data, self._secret)

    def authorize(self, session_data: str, slack_token: str) -> Authorization:
        user_id = self.derive_user_id(session_data)
        self.credentials.store(user_id, slack_token)
        return Authorization(user_id=user_id, access_token=self.codec.mint(user_id))

    def resolve(self, access_token: Optional[str]) -> Resolution:
        verified = self.codec.verify(access_token)
        if not verified.ok:
            logger.info(json.dumps({"event": "session.rejected", "reason": verified.error.value}))
            return Resolution(error=verified.error)
        claims = verified.claims
        secret = self.credentials.retrieve(claims.user_id)
        if secret is None:
            logger.info(json.dumps({"event": "session.rejected", "reason": TokenError.CREDENTIAL_NOT_FOUND.value, "user_id": claims.user_id}))
            return Resolution(claims=claims, error=TokenError.CREDENTIAL_NOT_FOUND)
        return Resolution(claims=claims, secret=secret)

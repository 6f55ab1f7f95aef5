"""Signed session tokens bound to a derived user id.

Token format: ``b64url(payload) "." b64url(hmac_sha256(secret, payload))``

The payload is canonical JSON ``{"issuedAt": <epoch ms>, "userId": <id>}``.
Both segments are unpadded base64url, so the ``.`` separator can never occur
inside either of them. Tokens carry no upstream secret; the user id has to be
resolved through the credential store.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger("slack_mcp.auth")

USER_ID_LENGTH = 16
DEFAULT_MAX_AGE_MS = 86400 * 1000
DEV_SECRET_KEY = "default-secret-key"

_B64URL = re.compile(r"^[A-Za-z0-9_-]+$")


def now_ms() -> int:
    return int(time.time() * 1000)


class TokenError(str, Enum):
    MALFORMED = "malformed_token"
    SIGNATURE_MISMATCH = "signature_mismatch"
    EXPIRED = "token_expired"
    CREDENTIAL_NOT_FOUND = "credential_not_found"


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    issued_at_ms: int


@dataclass(frozen=True)
class VerifyResult:
    claims: Optional[SessionClaims] = None
    error: Optional[TokenError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.claims is not None


def derive_user_id(session_data: str, secret: str) -> str:
    """Stable opaque id for a session: first 16 hex chars of sha256(data + secret)."""
    digest = hashlib.sha256((session_data + secret).encode("utf-8")).hexdigest()
    return digest[:USER_ID_LENGTH]


def resolve_signing_secret(secret: Optional[str], *, production: bool = False) -> str:
    if secret:
        return secret
    if production:
        raise RuntimeError("OAUTH_SECRET_KEY must be set in production")
    logger.warning(
        "OAUTH_SECRET_KEY is not set; using the built-in development secret. "
        "Anyone who knows it can forge session tokens. Never run like this in production."
    )
    return DEV_SECRET_KEY


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    if not _B64URL.match(segment):
        raise ValueError("not base64url")
    raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    # reject non-canonical encodings (stray bits in the last character)
    if _b64encode(raw) != segment:
        raise ValueError("non-canonical base64url")
    return raw


class SessionTokenCodec:
    def __init__(self, secret: str, *, max_age_ms: int = DEFAULT_MAX_AGE_MS, clock: Callable[[], int] = now_ms):
        if not secret:
            raise ValueError("secret must not be empty")
        self._key = secret.encode("utf-8")
        self.max_age_ms = max_age_ms
        self._clock = clock

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self._key, payload, hashlib.sha256).digest()

    def mint(self, user_id: str) -> str:
        payload = json.dumps(
            {"userId": user_id, "issuedAt": int(self._clock())},
            separators=(",", ":"),
            sort_keys=True,
        ).encode("utf-8")
        return f"{_b64encode(payload)}.{_b64encode(self._sign(payload))}"

    def verify(self, token: Optional[str]) -> VerifyResult:
        if not isinstance(token, str):
            return VerifyResult(error=TokenError.MALFORMED)
        parts = token.split(".")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            return VerifyResult(error=TokenError.MALFORMED)
        try:
            payload = _b64decode(parts[0])
            signature = _b64decode(parts[1])
        except (ValueError, binascii.Error):
            return VerifyResult(error=TokenError.MALFORMED)

        if not hmac.compare_digest(signature, self._sign(payload)):
            return VerifyResult(error=TokenError.SIGNATURE_MISMATCH)

        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return VerifyResult(error=TokenError.MALFORMED)
        if not isinstance(data, dict):
            return VerifyResult(error=TokenError.MALFORMED)
        user_id = data.get("userId")
        issued_at = data.get("issuedAt")
        if not isinstance(user_id, str) or not user_id:
            return VerifyResult(error=TokenError.MALFORMED)
        if not isinstance(issued_at, int) or isinstance(issued_at, bool):
            return VerifyResult(error=TokenError.MALFORMED)

        if int(self._clock()) - issued_at > self.max_age_ms:
            return VerifyResult(error=TokenError.EXPIRED)
        return VerifyResult(claims=SessionClaims(user_id=user_id, issued_at_ms=issued_at))

from slack_mcp.auth.credentials import CredentialStore
from slack_mcp.auth.manager import Authorization, Resolution, TokenManager
from slack_mcp.auth.session_tokens import (
    SessionClaims,
    SessionTokenCodec,
    TokenError,
    VerifyResult,
    derive_user_id,
)

__all__ = [
    "Authorization",
    "CredentialStore",
    "Resolution",
    "SessionClaims",
    "SessionTokenCodec",
    "TokenError",
    "TokenManager",
    "VerifyResult",
    "derive_user_id",
]

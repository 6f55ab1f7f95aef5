from __future__ import annotations
import json
import logging
from typing import Optional

from slack_mcp.kv import KVStore

logger = logging.getLogger("slack_mcp.auth")

DEFAULT_TTL_SECONDS = 86400 * 30
DEFAULT_KEY_PREFIX = "slack_token:"


class CredentialStore:
    """UserId -> upstream Slack token, expiring after a fixed TTL.

    Store failures surface as ``StoreUnavailable`` from the underlying backend.
    """

    def __init__(self, kv: KVStore, *, ttl_seconds: int = DEFAULT_TTL_SECONDS, key_prefix: str = DEFAULT_KEY_PREFIX):
        self.kv = kv
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, user_id: str) -> str:
        return f"{self.key_prefix}{user_id}"

    def store(self, user_id: str, secret: str) -> bool:
        self.kv.set(self._key(user_id), secret, self.ttl_seconds)
        logger.info(json.dumps({"event": "credential.stored", "user_id": user_id, "ttl": self.ttl_seconds}))
        return True

    def retrieve(self, user_id: str) -> Optional[str]:
        secret = self.kv.get(self._key(user_id))
        logger.debug(json.dumps({"event": "credential.lookup", "user_id": user_id, "found": bool(secret)}))
        return secret or None

    def delete(self, user_id: str) -> None:
        self.kv.delete(self._key(user_id))
        logger.info(json.dumps({"event": "credential.deleted", "user_id": user_id}))

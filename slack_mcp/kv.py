# kv.py
# - Key-value store backends used by the credential store
# - KVStore: set(key, value, ttl_seconds) / get(key) / delete(key)
# - RestKVStore: Vercel KV / Upstash REST API over httpx (bounded retries)
# - SqlKVStore: SQLAlchemy table with expiry column
# - MemoryKVStore: process-local, explicit opt-in only

from __future__ import annotations
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import httpx
from sqlalchemy import delete as sa_delete
from sqlalchemy.exc import SQLAlchemyError

from slack_mcp.config import Config
from slack_mcp.db import ensure_schema, get_session
from slack_mcp.models import Base, KVEntry

logger = logging.getLogger("slack_mcp.kv")


class StoreUnavailable(Exception):
    """The key-value store could not be reached; a retry may succeed later."""
    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend
        self.message = message


class KVStore(Protocol):
    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...


class MemoryKVStore:
    """Non-durable store. Entries vanish with the process."""

    backend = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time):
        self._data: Dict[str, Tuple[str, float]] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires = item
            if expires <= self._clock():
                del self._data[key]
                return None
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SqlKVStore:
    backend = "sql"

    def __init__(self, db_url: str, *, echo: bool = False, auto_create: bool = True, clock: Callable[[], float] = time.time):
        self.db_url = db_url
        self.echo = echo
        self._clock = clock
        if auto_create:
            try:
                ensure_schema(Base, db_url, echo=echo)
            except SQLAlchemyError as e:
                raise StoreUnavailable(self.backend, str(e)[:200]) from e

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = int(self._clock()) + int(ttl_seconds)
        try:
            with get_session(self.db_url, echo=self.echo) as s:
                rec = s.get(KVEntry, key)
                if rec is None:
                    rec = KVEntry(key=key, value=value)
                    s.add(rec)
                rec.value = value
                rec.expires_at = expires_at
        except SQLAlchemyError as e:
            raise StoreUnavailable(self.backend, str(e)[:200]) from e

    def get(self, key: str) -> Optional[str]:
        try:
            with get_session(self.db_url, echo=self.echo) as s:
                rec = s.get(KVEntry, key)
                if rec is None:
                    return None
                if rec.expires_at is not None and rec.expires_at <= int(self._clock()):
                    s.delete(rec)
                    return None
                return rec.value
        except SQLAlchemyError as e:
            raise StoreUnavailable(self.backend, str(e)[:200]) from e

    def delete(self, key: str) -> None:
        try:
            with get_session(self.db_url, echo=self.echo) as s:
                s.execute(sa_delete(KVEntry).where(KVEntry.key == key))
        except SQLAlchemyError as e:
            raise StoreUnavailable(self.backend, str(e)[:200]) from e


class RestKVStore:
    """Redis-over-REST store (Vercel KV / Upstash).

    Commands are posted as JSON arrays, e.g. ["SET", "k", "v", "EX", 60].
    Transport errors, 429 and 5xx are retried at most ``max_retries`` times.
    """

    backend = "rest"
    _RETRY_STATUS = (429, 500, 502, 503, 504)

    def __init__(
        self,
        url: str,
        token: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff_initial: float = 0.2,
        backoff_factor: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not url or not token:
            raise ValueError("KV_REST_API_URL and KV_REST_API_TOKEN are required for the rest backend")
        self.url = url.rstrip("/")
        self._token = token
        self._client = client or httpx.Client(timeout=timeout)
        self.max_retries = max_retries
        self.backoff_initial = backoff_initial
        self.backoff_factor = backoff_factor
        self._sleep = sleep

    def _command(self, *args: Any) -> Any:
        body: List[Any] = list(args)
        headers = {"Authorization": f"Bearer {self._token}"}
        backoff = self.backoff_initial
        last_error = ""
        for attempt in range(self.max_retries + 1):
            try:
                r = self._client.post(self.url, json=body, headers=headers)
            except httpx.HTTPError as e:
                last_error = str(e)[:200] or e.__class__.__name__
            else:
                if r.status_code < 400:
                    try:
                        data = r.json()
                    except ValueError as e:
                        raise StoreUnavailable(self.backend, "invalid response body") from e
                    if isinstance(data, dict) and data.get("error"):
                        raise StoreUnavailable(self.backend, str(data["error"])[:200])
                    return data.get("result") if isinstance(data, dict) else None
                if r.status_code not in self._RETRY_STATUS:
                    raise StoreUnavailable(self.backend, f"HTTP {r.status_code}: {r.text[:120]}")
                last_error = f"HTTP {r.status_code}"
            if attempt < self.max_retries:
                logger.warning(json.dumps({"event": "kv.retry", "command": body[0], "attempt": attempt + 1, "error": last_error}))
                self._sleep(backoff)
                backoff *= self.backoff_factor
        raise StoreUnavailable(self.backend, last_error)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._command("SET", key, value, "EX", int(ttl_seconds))

    def get(self, key: str) -> Optional[str]:
        result = self._command("GET", key)
        if result is None:
            return None
        return result if isinstance(result, str) else json.dumps(result)

    def delete(self, key: str) -> None:
        self._command("DEL", key)


def _warn_non_durable() -> None:
    logger.warning(
        "KV backend is in-memory: stored Slack credentials are NOT durable and are lost on restart. "
        "Set KV_REST_API_URL/KV_REST_API_TOKEN or DB_URL for persistent storage."
    )


def build_kv_store(config: Config) -> KVStore:
    backend = (config.kv_backend or "").strip().lower()
    if not backend:
        if config.kv_rest_api_url and config.kv_rest_api_token:
            backend = "rest"
        elif config.db_url:
            backend = "sql"
        else:
            backend = "memory"
    if backend == "rest":
        logger.info(json.dumps({"event": "kv.backend", "backend": "rest"}))
        return RestKVStore(
            config.kv_rest_api_url or "",
            config.kv_rest_api_token or "",
            timeout=config.http_timeout,
            max_retries=config.kv_max_retries,
        )
    if backend == "sql":
        if not config.db_url:
            raise ValueError("KV_BACKEND=sql requires DB_URL")
        logger.info(json.dumps({"event": "kv.backend", "backend": "sql"}))
        return SqlKVStore(config.db_url, echo=config.db_echo)
    if backend == "memory":
        _warn_non_durable()
        return MemoryKVStore()
    raise ValueError(f"unknown KV_BACKEND: {backend}")

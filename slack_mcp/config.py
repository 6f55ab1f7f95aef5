import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

# Load .env if present (host/dev convenience; the platform also injects env)
load_dotenv()


def _get_env_bool(key: str, default: bool = False) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_list(key: str, default: List[str] | None = None) -> List[str]:
    raw = os.getenv(key)
    if raw is None:
        return default or []
    parts = [p.strip() for p in raw.split(",")]
    return [p for p in parts if p]


@dataclass
class Config:
    # server
    server_name: str = os.getenv("SERVER_NAME", "slack-mcp-server")
    server_version: str = os.getenv("SERVER_VERSION", "0.3.0")
    protocol_revision: str = os.getenv("MCP_PROTOCOL_REV", "2025-06-18")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    port: int = int(os.getenv("PORT", "8081"))
    environment: str = os.getenv("ENVIRONMENT", "development")
    public_base_url: str | None = os.getenv("PUBLIC_BASE_URL")

    # cors
    allow_origins: List[str] = field(default_factory=lambda: _get_env_list("ALLOW_ORIGINS", ["*"]))

    # oauth / session tokens
    oauth_secret_key: str | None = os.getenv("OAUTH_SECRET_KEY")
    oauth_client_id: str = os.getenv("OAUTH_CLIENT_ID", "slack-mcp-server")
    session_max_age_seconds: int = int(os.getenv("SESSION_MAX_AGE_SECONDS", "86400"))
    credential_ttl_seconds: int = int(os.getenv("CREDENTIAL_TTL_SECONDS", str(86400 * 30)))
    credential_key_prefix: str = os.getenv("CREDENTIAL_KEY_PREFIX", "slack_token:")

    # tool schema dir
    tool_schema_dir: str = os.getenv("TOOL_SCHEMA_DIR") or os.path.join(os.path.dirname(__file__), "tool_schemas")

    # key-value store
    kv_backend: str | None = os.getenv("KV_BACKEND")
    kv_rest_api_url: str | None = os.getenv("KV_REST_API_URL")
    kv_rest_api_token: str | None = os.getenv("KV_REST_API_TOKEN")
    kv_max_retries: int = int(os.getenv("KV_MAX_RETRIES", "2"))

    # database (sql kv backend)
    db_url: str | None = os.getenv("DB_URL")
    db_echo: bool = _get_env_bool("DB_ECHO", False)

    # slack
    slack_api_base_url: str = os.getenv("SLACK_API_BASE_URL", "https://slack.com/api")
    slack_bot_token: str | None = os.getenv("SLACK_BOT_TOKEN")
    slack_user_token: str | None = os.getenv("SLACK_USER_TOKEN")

    # http/client
    http_timeout: int = int(os.getenv("HTTP_TIMEOUT", "30"))
    http_max_retries: int = int(os.getenv("HTTP_MAX_RETRIES", "2"))
    http_backoff_initial: float = float(os.getenv("HTTP_BACKOFF_INITIAL", "0.8"))
    http_backoff_factor: float = float(os.getenv("HTTP_BACKOFF_FACTOR", "2.0"))

    # rate limiter
    rate_per_sec: float = float(os.getenv("RATE_PER_SEC", "5"))
    rate_burst: int = int(os.getenv("RATE_BURST", "5"))

    # circuit breaker
    cb_fails: int = int(os.getenv("CB_FAILS", "3"))
    cb_cooldown_sec: int = int(os.getenv("CB_COOLDOWN_SEC", "5"))

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


cfg = Config()

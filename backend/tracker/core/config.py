# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Tenancy and courier behaviour differ per deployment, so nothing
# about them is hardcoded outside this module.

import json
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


DEFAULT_RESERVED_SUBDOMAINS = [
    "www",
    "app",
    "api",
    "static",
    "assets",
    "cdn",
    "admin",
    "mail",
    "ftp",
    "localhost",
]

DEFAULT_COURIER_PRIORITY = ["acs", "geniki", "elta", "speedex", "generic"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Core DB connection string, like sqlite:///./tracker.db or a Postgres URL.
    DATABASE_URL: str

    # Secret key used for signing bearer tokens. Must be kept private in production.
    SECRET_KEY: str

    # Token algorithm and lifetime for the authenticated principal.
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Deployment environment. Super-admin overrides require HTTPS in production.
    APP_ENV: str = "development"

    # Tenancy: override transport, reserved names and lookup caching.
    TENANT_HEADER_NAME: str = "X-Tenant-ID"
    TENANT_QUERY_PARAM: str = "tenant_id"
    TENANCY_RESERVED_SUBDOMAINS: List[str] = Field(
        default_factory=lambda: list(DEFAULT_RESERVED_SUBDOMAINS)
    )
    TENANCY_BASE_DOMAIN: Optional[str] = None
    # Seconds; None disables the lookup cache entirely.
    TENANCY_CACHE_TTL: Optional[int] = 60
    TENANCY_CACHE_TAGS: List[str] = Field(default_factory=lambda: ["tenants"])
    TENANCY_OVERRIDE_REQUIRE_HTTPS_ALWAYS: bool = False

    # Proxy/client IP extraction settings
    TRUST_PROXY_HEADERS: bool = False
    TRUSTED_PROXY_IPS: List[str] = Field(default_factory=list)
    TRUSTED_IP_HEADERS: List[str] = Field(
        default_factory=lambda: [
            "CF-Connecting-IP",
            "X-Forwarded-For",
            "X-Real-IP",
        ]
    )

    # Cache backend selection: "memory", "redis" or "none".
    CACHE_BACKEND: str = "memory"
    REDIS_URL: Optional[str] = None
    CACHE_NAMESPACE: str = "tracker"
    CACHE_DEFAULT_TTL_SECONDS: int = 60

    # Per-tenant + identity request budgets.
    API_RATE_LIMIT_PER_MINUTE: int = 120
    API_UNAUTHENTICATED_RATE_LIMIT_PER_MINUTE: int = 60
    WOOCOMMERCE_RATE_LIMIT_PER_MINUTE: int = 60

    # Courier resolution order; first entry wins ties between overlapping formats.
    COURIER_PRIORITY: List[str] = Field(
        default_factory=lambda: list(DEFAULT_COURIER_PRIORITY)
    )
    # JSON maps keyed by courier id, e.g. {"acs": "https://webservices.acscourier.net/..."}.
    COURIER_API_ENDPOINTS: Dict[str, str] = Field(default_factory=dict)
    COURIER_API_KEYS: Dict[str, str] = Field(default_factory=dict)
    COURIER_API_CREDENTIALS: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    COURIER_HTTP_TIMEOUT_SECONDS: float = 10.0

    # Background status polling.
    COURIER_POLL_MAX_WORKERS: int = 8
    COURIER_POLL_PER_COURIER_CONCURRENCY: int = 2
    COURIER_POLL_MAX_ATTEMPTS: int = 3
    COURIER_POLL_BACKOFF_BASE_SECONDS: float = 2.0
    COURIER_POLL_BACKOFF_MAX_SECONDS: float = 30.0
    COURIER_POLL_LOOKBACK_DAYS: int = 14
    COURIER_POLL_INTERVAL_SECONDS: float = 300.0
    COURIER_POLL_BATCH_LIMIT: int = 500

    @field_validator(
        "TENANCY_RESERVED_SUBDOMAINS",
        "TENANCY_CACHE_TAGS",
        "TRUSTED_PROXY_IPS",
        "TRUSTED_IP_HEADERS",
        "COURIER_PRIORITY",
        mode="before",
    )
    @classmethod
    def _parse_list_values(cls, value):
        if isinstance(value, str):
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return parts
        return value

    @field_validator("TENANCY_CACHE_TTL", mode="before")
    @classmethod
    def _parse_cache_ttl(cls, value):
        if isinstance(value, str) and value.strip().lower() in {"", "null", "none"}:
            return None
        return value

    @field_validator("TENANCY_BASE_DOMAIN", mode="before")
    @classmethod
    def _normalize_base_domain(cls, value):
        if isinstance(value, str):
            value = value.strip().lower().strip(".")
            return value or None
        return value

    @property
    def is_production(self) -> bool:
        return (self.APP_ENV or "").strip().lower() == "production"

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    LOG_LEVEL: str = "INFO"


# Instantiate a single settings object for app-wide import.
# Any module can just `from tracker.core.config import settings`.
settings = Settings()

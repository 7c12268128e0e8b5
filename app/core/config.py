from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    raw = _get_env(name, None)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_env_list(name: str, default: list[str]) -> tuple[str, ...]:
    raw = _get_env(name, None)
    if raw is None:
        return tuple(default)
    values = [item.strip() for item in raw.split(",")]
    clean = [item for item in values if item]
    return tuple(clean) if clean else tuple(default)


@dataclass(frozen=True)
class Settings:
    api_key: str | None
    rate_limit: str
    rate_limit_enabled: bool
    log_level: str
    sentry_dsn: str | None
    cors_allowed_origins: tuple[str, ...]
    metering_config_path: str | None
    provider_timeout_s: float
    usage_store_backend: str
    usage_db_path: str
    audit_enabled: bool
    audit_db_path: str
    audit_retention_days: int
    documents_db_path: str
    max_upload_bytes: int
    openai_api_key: str | None
    openai_base_url: str | None
    anthropic_api_key: str | None
    anthropic_base_url: str
    gemini_api_key: str | None
    gemini_base_url: str
    cohere_api_key: str | None
    cohere_base_url: str


settings = Settings(
    api_key=_get_env("API_KEY"),
    rate_limit=_get_env("RATE_LIMIT", "60/minute") or "60/minute",
    rate_limit_enabled=_get_env_bool("RATE_LIMIT_ENABLED", True),
    log_level=_get_env("LOG_LEVEL", "INFO") or "INFO",
    sentry_dsn=_get_env("SENTRY_DSN"),
    cors_allowed_origins=_get_env_list(
        "CORS_ALLOWED_ORIGINS",
        [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ],
    ),
    metering_config_path=_get_env("METERING_CONFIG_PATH"),
    provider_timeout_s=_get_env_float("PROVIDER_TIMEOUT_S", 30.0),
    usage_store_backend=(_get_env("USAGE_STORE_BACKEND", "sqlite") or "sqlite").strip().lower(),
    usage_db_path=_get_env("USAGE_DB_PATH", "data/usage.db") or "data/usage.db",
    audit_enabled=_get_env_bool("AUDIT_ENABLED", True),
    audit_db_path=_get_env("AUDIT_DB_PATH", "data/provider_calls.db") or "data/provider_calls.db",
    audit_retention_days=_get_env_int("AUDIT_RETENTION_DAYS", 180),
    documents_db_path=_get_env("DOCUMENTS_DB_PATH", "data/documents.db") or "data/documents.db",
    max_upload_bytes=_get_env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
    openai_api_key=_get_env("OPENAI_API_KEY"),
    openai_base_url=_get_env("OPENAI_BASE_URL"),
    anthropic_api_key=_get_env("ANTHROPIC_API_KEY"),
    anthropic_base_url=_get_env("ANTHROPIC_BASE_URL", "https://api.anthropic.com") or "https://api.anthropic.com",
    gemini_api_key=_get_env("GEMINI_API_KEY"),
    gemini_base_url=(
        _get_env("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
        or "https://generativelanguage.googleapis.com"
    ),
    cohere_api_key=_get_env("COHERE_API_KEY"),
    cohere_base_url=_get_env("COHERE_BASE_URL", "https://api.cohere.com") or "https://api.cohere.com",
)

if settings.usage_store_backend not in {"memory", "sqlite"}:
    raise RuntimeError("USAGE_STORE_BACKEND must be either 'memory' or 'sqlite'.")

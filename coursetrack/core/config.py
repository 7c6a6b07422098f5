"""Process configuration, read once from the environment at import."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_BOOLS = {"true": True, "1": True, "false": False, "0": False}


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


def _parse_list(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    analytics_cache_ttl: int = 300
    cors_origins: tuple[str, ...] = ("http://localhost:5173",)
    # PEM file with the auth collaborator's ES256 public key; unset means
    # every bearer token is rejected
    jwt_public_key_file: str | None = None
    jwt_issuer: str = "auth-service"
    jwt_audience: str = "coursetrack"

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")
    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )
    if log_json_raw not in _BOOLS:
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    ttl = _parse_int("ANALYTICS_CACHE_TTL", _getenv("ANALYTICS_CACHE_TTL", "300"))
    if ttl <= 0:
        raise ValueError(f"ANALYTICS_CACHE_TTL must be positive (got {ttl})")

    key_file = _getenv("JWT_PUBLIC_KEY_FILE", "") or None
    if app_env_raw == "prod" and key_file is None:
        raise ValueError("JWT_PUBLIC_KEY_FILE is required when APP_ENV=prod")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_BOOLS[log_json_raw],
        port=_parse_int("PORT", _getenv("PORT", "8000")),
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        analytics_cache_ttl=ttl,
        cors_origins=_parse_list(_getenv("CORS_ORIGINS", "http://localhost:5173")),
        jwt_public_key_file=key_file,
        jwt_issuer=_getenv("JWT_ISSUER", "auth-service"),
        jwt_audience=_getenv("JWT_AUDIENCE", "coursetrack"),
    )


SETTINGS = load_settings()

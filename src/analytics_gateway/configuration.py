"""
Gateway configuration.
"""

from __future__ import annotations

import os
from typing import List, Optional

from pydantic import BaseModel

from backend.analytics_dashboard.repository import DEFAULT_TIMEOUT_SECONDS, env_timeout_seconds


class UpstreamConfig(BaseModel):
    host: str = "https://us.posthog.com"
    """Base URL of the hosted analytics API."""

    api_key: Optional[str] = None
    """Personal API key injected into forwarded queries; never sent to the browser."""

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


class CorsConfig(BaseModel):
    allow_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    allow_credentials: bool = True


class LoggingConfig(BaseModel):
    level: str = "INFO"
    access_log: bool = True


class GatewayConfig(BaseModel):
    upstream: UpstreamConfig = UpstreamConfig()
    cors: CorsConfig = CorsConfig()
    logging: LoggingConfig = LoggingConfig()
    mount_dashboard: bool = True


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_gateway_config() -> GatewayConfig:
    cfg = GatewayConfig()
    cfg.upstream = UpstreamConfig(
        host=os.getenv("POSTHOG_HOST", cfg.upstream.host),
        api_key=os.getenv("POSTHOG_API_KEY") or None,
        timeout_seconds=env_timeout_seconds("POSTHOG_TIMEOUT_SECONDS"),
    )
    cfg.cors = CorsConfig(
        allow_origins=_env_list("CORS_ORIGINS", cfg.cors.allow_origins),
        allow_credentials=_env_bool("CORS_ALLOW_CREDENTIALS", cfg.cors.allow_credentials),
    )
    cfg.logging = LoggingConfig(
        level=(os.getenv("LOG_LEVEL") or cfg.logging.level).upper(),
        access_log=_env_bool("UVICORN_ACCESS_LOG", cfg.logging.access_log),
    )
    cfg.mount_dashboard = _env_bool("MOUNT_DASHBOARD", cfg.mount_dashboard)
    return cfg

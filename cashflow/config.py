from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./cashflow.db"
    frontend_origin: str = "http://localhost:3000"
    max_window_days: int = 1830
    default_window_days: int = 90
    lookback_months: int = 3
    reference_zone: str = "UTC"
    cache_ttl_seconds: int = 60
    log_level: str = "INFO"


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    defaults = Settings()
    return Settings(
        database_url=env.get("DATABASE_URL", defaults.database_url),
        frontend_origin=env.get("FRONTEND_ORIGIN", defaults.frontend_origin),
        max_window_days=_positive_int(env, "FORECAST_MAX_WINDOW_DAYS", defaults.max_window_days),
        default_window_days=_positive_int(
            env, "FORECAST_DEFAULT_WINDOW_DAYS", defaults.default_window_days
        ),
        lookback_months=_positive_int(env, "FORECAST_LOOKBACK_MONTHS", defaults.lookback_months),
        reference_zone=_zone_name(env, "FORECAST_REFERENCE_ZONE", defaults.reference_zone),
        cache_ttl_seconds=_positive_int(env, "CACHE_TTL_SECONDS", defaults.cache_ttl_seconds),
        log_level=_log_level(env, "LOG_LEVEL", defaults.log_level),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _positive_int(env: Mapping[str, str], name: str, fallback: int) -> int:
    raw = env.get(name)
    if raw is None:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer.", name, raw)
        return fallback
    if value <= 0:
        logger.warning("Ignoring %s=%r: must be positive.", name, raw)
        return fallback
    return value


def _zone_name(env: Mapping[str, str], name: str, fallback: str) -> str:
    raw = env.get(name)
    if not raw:
        return fallback
    try:
        ZoneInfo(raw.strip())
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Ignoring %s=%r: unknown time zone.", name, raw)
        return fallback
    return raw.strip()


def _log_level(env: Mapping[str, str], name: str, fallback: str) -> str:
    raw = env.get(name, fallback).strip().upper()
    if raw not in LOG_LEVELS:
        logger.warning("Ignoring %s=%r: unknown log level.", name, raw)
        return fallback
    return raw

"""Runtime configuration helpers."""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import urlparse

from .constants import TODOIST_API_BASE

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


@dataclass(frozen=True)
class GatewaySettings:
    """Gateway settings sourced from environment variables or CLI."""

    todoist_token: str = ""
    shared_secret: str = ""
    issuer_base: str = ""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    todoist_api_base: str = TODOIST_API_BASE
    todoist_timeout_seconds: float = 10.0
    log_level: str = "INFO"


def get_runtime_settings(env: Mapping[str, str] | None = None) -> GatewaySettings:
    """Validate and return gateway settings from environment variables."""
    source = os.environ if env is None else env

    issuer_base = normalize_issuer_base(source.get("ISSUER_BASE", ""))
    if issuer_base:
        _validate_http_url(issuer_base, field_name="ISSUER_BASE")

    todoist_api_base = source.get("TODOIST_API_BASE", "").strip() or TODOIST_API_BASE
    _validate_http_url(todoist_api_base, field_name="TODOIST_API_BASE")

    port = _parse_int_env(source=source, key="PORT", default=DEFAULT_PORT)
    validate_port(port, field_name="PORT")

    return GatewaySettings(
        todoist_token=source.get("TODOIST_TOKEN", "").strip(),
        shared_secret=source.get("MCP_SHARED_SECRET", "").strip(),
        issuer_base=issuer_base,
        host=source.get("HOST", "").strip() or DEFAULT_HOST,
        port=port,
        todoist_api_base=todoist_api_base.rstrip("/"),
        todoist_timeout_seconds=_parse_float_env(
            source=source,
            key="TODOIST_TIMEOUT_SECONDS",
            default=10.0,
            min_value=0.1,
        ),
        log_level=normalize_log_level(source.get("LOG_LEVEL", "") or "INFO", field_name="LOG_LEVEL"),
    )


def normalize_issuer_base(value: str | None) -> str:
    """Strip whitespace and one trailing slash from the issuer URL."""
    normalized = (value or "").strip()
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized


def normalize_log_level(value: str, field_name: str = "log-level") -> str:
    normalized = value.strip().upper()
    if normalized not in LOG_LEVELS:
        raise ValueError(f"{field_name} must be one of: {', '.join(LOG_LEVELS)}.")
    return normalized


def validate_port(port: int, field_name: str = "port") -> None:
    if not (1 <= port <= 65535):
        raise ValueError(f"{field_name} must be between 1 and 65535.")


def _parse_int_env(source: Mapping[str, str], key: str, default: int) -> int:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer.") from exc


def _parse_float_env(
    source: Mapping[str, str],
    key: str,
    default: float,
    min_value: float | None = None,
) -> float:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        parsed = float(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be a number.") from exc
    if not math.isfinite(parsed):
        raise ValueError(f"{key} must be a finite number.")
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{key} must be >= {min_value}.")
    return parsed


def _validate_http_url(value: str, field_name: str) -> None:
    parsed = urlparse(value.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"{field_name} must be a valid http(s) URL.")

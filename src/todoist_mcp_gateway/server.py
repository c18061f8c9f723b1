"""Command line entry point for the Todoist MCP gateway."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from dotenv import find_dotenv, load_dotenv

from .app import create_app
from .runtime import (
    LOG_LEVELS,
    GatewaySettings,
    get_runtime_settings,
    normalize_log_level,
    validate_port,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"


def configure_logging(level: str) -> None:
    """Send gateway logs to stderr at ``level``."""
    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def _effective_config_payload(settings: GatewaySettings) -> dict[str, Any]:
    """Build sanitized runtime configuration output for preflight diagnostics."""
    return {
        "host": settings.host,
        "port": settings.port,
        "log_level": settings.log_level,
        "issuer_base": settings.issuer_base or None,
        "todoist": {
            "api_base": settings.todoist_api_base,
            "timeout_seconds": settings.todoist_timeout_seconds,
            "token_configured": bool(settings.todoist_token),
        },
        "auth": {
            "shared_secret_configured": bool(settings.shared_secret),
        },
    }


def main(argv: list[str] | None = None) -> None:
    """Run the gateway HTTP server."""
    load_dotenv(find_dotenv(usecwd=True), override=False)
    parser = argparse.ArgumentParser(description="Todoist MCP gateway")
    try:
        defaults = get_runtime_settings()
    except ValueError as exc:
        parser.error(str(exc))
    parser.add_argument(
        "--host",
        default=defaults.host,
        help="Interface to bind (default: HOST or 0.0.0.0).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=defaults.port,
        help="Port to listen on (default: PORT or 8080).",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=defaults.log_level,
        help="Logging verbosity (default: LOG_LEVEL or INFO).",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate runtime settings and exit without starting the server.",
    )
    parser.add_argument(
        "--print-effective-config",
        action="store_true",
        help="Print sanitized effective runtime configuration and exit.",
    )
    args = parser.parse_args(argv)

    try:
        validate_port(int(args.port), field_name="port")
        settings = GatewaySettings(
            todoist_token=defaults.todoist_token,
            shared_secret=defaults.shared_secret,
            issuer_base=defaults.issuer_base,
            host=str(args.host).strip() or defaults.host,
            port=int(args.port),
            todoist_api_base=defaults.todoist_api_base,
            todoist_timeout_seconds=defaults.todoist_timeout_seconds,
            log_level=normalize_log_level(str(args.log_level)),
        )
    except ValueError as exc:
        parser.error(str(exc))

    if args.print_effective_config:
        print(json.dumps(_effective_config_payload(settings), indent=2, sort_keys=True))

    if args.check_config or args.print_effective_config:
        if not args.print_effective_config:
            print("Configuration is valid.")
        return

    configure_logging(settings.log_level)

    import uvicorn

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

"""MindMate server entry point: ``python -m mindmate.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from mindmate.core.config.settings import get_settings
from mindmate.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the MindMate MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.mindmate_log_level.upper(), logging.INFO)
    )

    logger = logging.getLogger(__name__)
    if not settings.mindmate_allow_insecure_bind and not _is_loopback_host(settings.mindmate_host):
        raise RuntimeError(
            "Refusing to bind MindMate server to a non-loopback host without an auth layer. "
            "Set MINDMATE_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting MindMate wellbeing server on %s:%d",
        settings.mindmate_host,
        settings.mindmate_port,
    )

    mcp = create_app(settings_override=settings)
    mcp.run(
        transport="streamable-http",
        host=settings.mindmate_host,
        port=settings.mindmate_port,
    )


if __name__ == "__main__":
    run()

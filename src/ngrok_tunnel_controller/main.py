"""Process entry point: logging, configuration, and the controller run loop."""

from __future__ import annotations

import asyncio
import signal
import sys

import structlog
from kubernetes.config import ConfigException

from ngrok_tunnel_controller.config import ConfigError, ControllerConfig, load_config
from ngrok_tunnel_controller.controller import TunnelController
from ngrok_tunnel_controller.models import scrub_sensitive_values

log = structlog.get_logger()


def configure_logging() -> None:
    """Configure structlog for console output on a TTY and JSON otherwise, both to stderr."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


async def run(config: ControllerConfig) -> None:
    """Run the controller until SIGINT or SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    controller = TunnelController(config)
    await controller.run(stop)


def main() -> None:
    """Start the controller; a startup or fatal runtime error exits the process with status 1."""
    configure_logging()
    token: str | None = None
    try:
        config = load_config()
        token = config.token
        asyncio.run(run(config))
    except Exception as e:
        secrets = [token] if token else []
        event = "startup_failed" if isinstance(e, (ConfigError, ConfigException)) else "controller_failed"
        log.error(event, error_type=type(e).__name__, error=scrub_sensitive_values(str(e), secrets))
        sys.exit(1)


if __name__ == "__main__":
    main()

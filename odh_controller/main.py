#!/usr/bin/env python3
"""
ODH Controller - Main Entry Point

Loads the configuration, builds the handler registries, creates the main
operator, sets it up and runs it until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys

import structlog

from odh_controller.bootstrap.errors import OperatorError
from odh_controller.bootstrap.factory import Factory, OperatorKind
from odh_controller.handlers.registry import default_registries
from odh_controller.services.config import ConfigError, load_config

logger = structlog.get_logger("setup")


def configure_logging(development: bool = False, level: str = "INFO") -> None:
    """Configure structured logging for the operator and for kopf's stdlib loggers."""
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = structlog.dev.ConsoleRenderer() if development else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def run(operator) -> None:
    """Start the operator with a stop flag wired to SIGINT/SIGTERM."""
    stop_flag = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("received shutdown signal")
        stop_flag.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await operator.start(stop_flag)


def main() -> int:
    """Main entry point for the controller."""

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    configure_logging(config.development, config.log_level)

    services, components = default_registries()
    factory = Factory(config, services=services, components=components)

    try:
        operator = factory.create(OperatorKind.MAIN)
    except OperatorError:
        logger.exception("unable to create operator")
        return 1

    try:
        operator.setup()
    except OperatorError:
        logger.exception("unable to setup operator")
        return 1

    logger.info("starting operator")
    try:
        asyncio.run(run(operator))
    except Exception:
        logger.exception("problem running operator")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

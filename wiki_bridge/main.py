"""
Bridge entry point.

Loads configuration, configures logging, and starts the bridge.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import structlog
import yaml

from .bridge import WikiBridge
from .config import load_config


def _level_number(level: str) -> int:
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return number


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_level_number(level)),
    )


def run(argv: list[str] | None = None) -> None:
    """CLI entry point for the bridge."""
    parser = argparse.ArgumentParser(description="Wiki ↔ Chat Subscription Bridge")
    parser.add_argument(
        "-c", "--config",
        default="wiki-bridge.yaml",
        help="Path to configuration file (default: wiki-bridge.yaml)",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except (ValueError, yaml.YAMLError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.info("bridge.config_loaded", config_path=args.config, store=config.store.backend)

    bridge = WikiBridge(config)
    try:
        asyncio.run(bridge.run_forever())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

"""
Kiosk entry point.

Loads configuration, configures logging, and starts the kiosk.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog
from pydantic import ValidationError

from shiftcheck_shared.logging_config import configure_logging

from .client import KioskError
from .config import load_config
from .kiosk import Kiosk


def run() -> None:
    """CLI entry point for the kiosk."""
    parser = argparse.ArgumentParser(description="ShiftCheck kiosk")
    parser.add_argument(
        "-c", "--config",
        default="shiftcheck-kiosk.yaml",
        help="Path to configuration file (default: shiftcheck-kiosk.yaml)",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except ValidationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.info(
        "kiosk.config_loaded",
        config_path=args.config,
        org=config.kiosk.org_slug,
        location_id=str(config.kiosk.location_id),
    )

    try:
        kiosk = Kiosk(config)
    except KioskError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(kiosk.run_forever())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

#!/usr/bin/env python3
"""
Main entry point for running compacting event sources.

Usage:
    # Consume two streams until interrupted
    python -m streamstate.main --stream orders --stream customers

    # Restore, catch up once, write a snapshot and exit
    python -m streamstate.main --stream orders --config config/prod.yaml --once
"""

import argparse
import signal
import sys
from typing import List, Optional

from streamstate.bootstrap import EventSourcing
from streamstate.core.errors import StreamStateError
from streamstate.utils.config import Config, ConfigError
from streamstate.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="streamstate - snapshot-compacted state from partitioned event streams"
    )

    parser.add_argument(
        "--stream",
        dest="streams",
        action="append",
        required=True,
        help="Stream to consume (repeatable)",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML file merged over the default configuration",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from configuration)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Consume until all partitions are idle, take a snapshot and exit",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = Config(args.config)
    except ConfigError as e:
        logger.error("Invalid configuration", error=str(e))
        return 2

    configure_logging(
        log_level=args.log_level or config.get("logging.level", "INFO"),
        log_format=config.get("logging.format", "json"),
        log_output=config.get("logging.output", "stdout"),
    )

    logger.info("Starting streamstate", streams=args.streams, once=args.once)

    try:
        sourcing = EventSourcing(args.streams, config=config)

        if args.once:
            vectors = sourcing.run_once()
            for stream_name, vector in vectors.items():
                logger.info("Stream caught up", stream=stream_name, positions=dict(vector))
            return 0

        def handle_signal(signum, frame):
            logger.info("Received signal", signal=signal.Signals(signum).name)
            for source in sourcing.sources.values():
                source.stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, handle_signal)

        sourcing.start()
        sourcing.wait()
        sourcing.stop()

    except ValueError as e:
        logger.error("Invalid configuration", error=str(e))
        return 2

    except StreamStateError as e:
        logger.error("streamstate error", error=str(e), exc_info=True)
        return 1

    if sourcing.errors:
        logger.error("Streams failed", streams=sorted(sourcing.errors))
        return 1

    logger.info("streamstate stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())

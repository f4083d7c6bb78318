"""
=============================================================================
MESSENGER CLI ENTRY POINT
=============================================================================

    # Run with defaults (0.0.0.0:8033)
    python -m tcpmessenger

    # Custom port
    python -m tcpmessenger -p 9000

    # Localhost only, verbose JSON logs
    python -m tcpmessenger --host 127.0.0.1 -l DEBUG --log-format json

    # Keep chat names reserved after their owners disconnect
    python -m tcpmessenger --keep-names

Environment variables (see MessengerConfig.from_env) provide the defaults;
command-line flags override them.

=============================================================================
"""

import argparse
import sys
from typing import List, Optional

from . import __version__
from .config import MessengerConfig, LOG_FORMATS
from .errors import ListenError
from .server import Messenger


def build_parser(defaults: MessengerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcpmessenger",
        description="In-memory line relay: producers, consumers and named chat over one TCP port",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m tcpmessenger                    # Listen on 0.0.0.0:8033
  python -m tcpmessenger -p 9000            # Custom port
  python -m tcpmessenger --pipeline-size 0  # Never block producers
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})"
    )

    # ─────────────────────────────────────────────────────────────────────
    # RELAY ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--pipeline-size",
        type=int,
        default=defaults.pipeline_size,
        help="Messages that may wait for the broadcaster before producers block; 0 = unbounded "
             f"(default: {defaults.pipeline_size})"
    )

    parser.add_argument(
        "--keep-names",
        action="store_true",
        default=not defaults.release_names,
        help="Never release a chat name once claimed, even after its owner disconnects"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        default=defaults.log_level.upper(),
        help=f"Logging level (default: {defaults.log_level.upper()})"
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=defaults.log_format,
        help=f"Log output format (default: {defaults.log_format})"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"tcpmessenger {__version__}"
    )

    return parser


def config_from_args(argv: Optional[List[str]] = None) -> MessengerConfig:
    """Environment first, then command-line flags on top."""
    defaults = MessengerConfig.from_env()
    args = build_parser(defaults).parse_args(argv)

    return MessengerConfig(
        host=args.host,
        port=args.port,
        backlog=defaults.backlog,
        buffer_size=defaults.buffer_size,
        idle_timeout=defaults.idle_timeout,
        max_line_length=defaults.max_line_length,
        pipeline_size=args.pipeline_size,
        release_names=not args.keep_names,
        log_level=args.log_level,
        log_format=args.log_format,
    )


def main(argv: Optional[List[str]] = None) -> int:
    try:
        config = config_from_args(argv)
        messenger = Messenger(config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        messenger.run()
    except ListenError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
agentguard entry point.

This file handles startup concerns (arg-parsing, logging) and launches the HTTP API that serves
guarded agent turns.
"""

import argparse
import logging
import sys

from agentguard.api.app import run_api
from agentguard.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # SDK clients log every request through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the agentguard API server")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.API_PORT,
        help="Port for the HTTP server (default from env: %(default)s)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        default=settings.DEBUG,
        help="Restart the server when source files change",
    )
    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the agentguard application.

    Parses the command line, initializes logging, and starts the API server.
    """
    if argv is None:
        argv = sys.argv[1:]

    args = _build_parser().parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting agentguard [provider=%s]", settings.MODEL_PROVIDER)

    run_api(host="0.0.0.0", port=args.port, reload=args.reload, log_level=settings.LOG_LEVEL)


if __name__ == "__main__":
    main()

"""mcpgate entry point.

Usage::

    mcpgate                  Start the gateway (same as ``serve``)
    mcpgate serve --port 9000
    mcpgate cleanup          Delete expired codes and expire old tokens
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from mcpgate.config import get_settings
from mcpgate.logging_setup import setup_logging

setup_logging(level="INFO")
logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("mcpgate")
    except PackageNotFoundError:
        from mcpgate import __version__

        return __version__


def run_cleanup() -> None:
    from mcpgate.api.oauth2.server import get_oauth_server

    codes, tokens = get_oauth_server().cleanup_expired()
    print(f"Removed {codes} expired code(s), expired {tokens} token(s)")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="mcpgate - OAuth 2.0 gateway for MCP clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {_version()}")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "cleanup"],
        help="What to run (default: serve)",
    )
    parser.add_argument("--host", type=str, default=None, help="Host to bind (default: settings)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port (default: settings)")
    parser.add_argument("--dev", action="store_true", help="Auto-reload on source changes")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    args = parser.parse_args()
    if args.debug:
        setup_logging(level="DEBUG")

    if args.command == "cleanup":
        run_cleanup()
        return

    from mcpgate.api.serve import run_api_server

    settings = get_settings()
    try:
        run_api_server(
            host=args.host or settings.web_host,
            port=args.port or settings.web_port,
            dev=args.dev,
        )
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()

"""
=============================================================================
COMMAND-LINE ENTRY POINT
=============================================================================

    httpadapter                             # Appfile, else the welcome app
    httpadapter blog.app:application        # explicit target
    httpadapter --app-file deploy/Appfile
    httpadapter blog:app --port 0           # any free port
    python -m httpadapter --log-format json

Configuration is layered: defaults, then the Appfile port, then HTTP_*
environment variables, then command-line flags.

Exit status: 0 after a clean shutdown, 1 when the application cannot be
loaded or the server cannot start, 2 for bad arguments or configuration.

=============================================================================
"""

import argparse
import dataclasses
import os
import sys
import threading
from typing import List, Optional

from . import __version__
from .access_log import configure_logging
from .config import LOG_FORMATS, LOG_LEVELS, ServerConfig
from .loader import LoaderError, load_application, resolve_entry_point
from .server import DispatchServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="httpadapter",
        description="Serve one application over HTTP/1.1",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  httpadapter                          # serve the Appfile target, or the welcome app
  httpadapter blog.app:application     # serve a module attribute
  httpadapter --port 0                 # let the OS pick a port
        """,
    )

    parser.add_argument(
        "target",
        nargs="?",
        help="Application as module:attribute (default: from Appfile, else httpadapter.app:welcome)",
    )
    parser.add_argument(
        "--app-file", "-f",
        default=None,
        help="Entry-point file to read when no target is given (default: ./Appfile if present)",
    )

    parser.add_argument("--host", "-H", default=None, help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port to listen on (default: 8080)")
    parser.add_argument("--workers", "-w", type=int, default=None, help="Maximum worker threads")
    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=None,
        help="Seconds an application call may take before 504 (0 disables)",
    )

    parser.add_argument("--log-level", "-l", choices=LOG_LEVELS, default=None)
    parser.add_argument("--log-format", choices=LOG_FORMATS, default=None)
    parser.add_argument("--no-keep-alive", action="store_true", help="Close every connection after one response")

    parser.add_argument("--version", "-v", action="version", version=f"httpadapter {__version__}")
    return parser


def build_config(args: argparse.Namespace, entry_port: Optional[int] = None) -> ServerConfig:
    """Layer the Appfile port, the environment and the flags over the defaults."""
    config = ServerConfig.from_env()

    overrides = {}
    if entry_port is not None and "HTTP_PORT" not in os.environ:
        overrides["port"] = entry_port
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.workers is not None:
        overrides["max_workers"] = args.workers
        overrides["min_workers"] = min(config.min_workers, args.workers)
    if args.timeout is not None:
        overrides["handler_timeout"] = args.timeout or None
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    if args.log_format is not None:
        overrides["log_format"] = args.log_format
    if args.no_keep_alive:
        overrides["keep_alive"] = False

    return dataclasses.replace(config, **overrides)


def _announce(server: DispatchServer, target: str):
    if server.wait_until_ready(timeout=10.0):
        host, port = server.address
        print(f"Serving {target} on http://{host}:{port} (Ctrl+C to stop)", flush=True)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        entry = resolve_entry_point(args.target, args.app_file)
        config = build_config(args, entry.port)
        config.validate()
    except LoaderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    configure_logging(config.log_level)

    try:
        app = load_application(entry.target)
    except LoaderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    server = DispatchServer(app, config)
    threading.Thread(target=_announce, args=(server, entry.target), daemon=True).start()

    try:
        server.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
=============================================================================
QSERV COMMAND LINE
=============================================================================

    qserv                                  serve . on 0.0.0.0:8080
    qserv -dir /var/www -port 3000         custom root and port
    qserv -list                            enable directory listings
    qserv -config config.json              load a JSON configuration
    qserv -generate-config example.json    write the defaults and exit

Flags take one dash or two (-port or --port).

Settings are layered, later layers winning:

    defaults → -config file → QSERV_* environment → flags

and the result is validated once before anything binds.

Exit status: 0 after a signal-initiated shutdown or an informational
flag, 1 for configuration or startup errors.

=============================================================================
"""

import argparse
import logging
import ssl
import sys
from typing import List, Optional

from . import __version__
from .config import (
    ConfigError,
    apply_env,
    default_config,
    load_config,
    save_config,
    validate_config,
    with_overrides,
)
from .log import setup_logging
from .server import QServer


logger = logging.getLogger("qserv")


HELP_EPILOG = """
examples:
  qserv                                   serve the current directory on port 8080
  qserv -dir /var/www -port 3000          serve a specific directory on a custom port
  qserv -list                             enable directory listing
  qserv -config config.json               use a configuration file
  qserv -generate-config config.json      write an example configuration

environment:
  QSERV_HOST, QSERV_PORT, QSERV_DIR, QSERV_LOG_LEVEL
      applied after the configuration file, before flags

features:
  static files, directory listing, HTTPS, basic auth, CORS, rate limiting,
  IP allow/deny lists, gzip, cache headers and ETags, SPA mode,
  custom error pages, access logging, security headers
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qserv",
        description="qserv - simple HTTP file server with advanced features",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
        add_help=False,
    )

    parser.add_argument("-config", "--config", metavar="PATH", help="path to configuration file (JSON)")
    parser.add_argument("-port", "--port", type=int, help="port to listen on (overrides config)")
    parser.add_argument("-host", "--host", help="host to bind to (overrides config)")
    parser.add_argument("-dir", "--dir", dest="root_dir", metavar="PATH", help="root directory to serve (overrides config)")
    parser.add_argument("-list", "--list", dest="listing", action="store_true", help="enable directory listing")
    parser.add_argument(
        "-generate-config", "--generate-config",
        dest="generate_config",
        metavar="PATH",
        help="write an example configuration file and exit",
    )
    parser.add_argument(
        "-log-level", "--log-level",
        dest="log_level",
        type=str.lower,
        choices=["debug", "info", "warn", "error"],
        help="log level (overrides config)",
    )
    parser.add_argument(
        "-workers", "--workers",
        type=int,
        metavar="N",
        help="worker threads (max will be 2x this)",
    )
    parser.add_argument("-version", "--version", action="store_true", help="show version and exit")
    parser.add_argument("-help", "--help", "-h", action="help", help="show this help message and exit")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the command line.

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:]).

    Returns:
        Process exit status.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"qserv version {__version__}")
        return 0

    if args.generate_config:
        try:
            save_config(args.generate_config, default_config())
        except OSError as e:
            print(f"Error generating config: {e}", file=sys.stderr)
            return 1
        print(f"Example configuration saved to: {args.generate_config}")
        return 0

    try:
        config = load_config(args.config) if args.config else default_config()
        config = apply_env(config)
        config = with_overrides(
            config,
            host=args.host,
            port=args.port,
            root_dir=args.root_dir,
            directory_listing=args.listing,
            log_level=args.log_level,
            workers=args.workers,
        )
        config = validate_config(config)
    except ConfigError as e:
        print("Invalid configuration:", file=sys.stderr)
        for violation in e.violations:
            print(f"  - {violation}", file=sys.stderr)
        return 1

    try:
        setup_logging(config.logging)
    except OSError as e:
        print(f"Error creating logger: {e}", file=sys.stderr)
        return 1

    server = QServer(config)
    try:
        server.run()
    except (OSError, ssl.SSLError) as e:
        logger.error(f"Server error: {e}")
        print(f"Server error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Command-line interface for the investdesk service."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from investdesk.config import ConfigurationError, Settings, load_settings
from investdesk.database import Database

logger = logging.getLogger("investdesk.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="investdesk service utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: INVESTDESK_CONFIG)",
    )
    # accepted after the subcommand too; SUPPRESS keeps the global value when omitted
    config_parent = argparse.ArgumentParser(add_help=False)
    config_parent.add_argument("--config", default=argparse.SUPPRESS, help=argparse.SUPPRESS)

    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", parents=[config_parent], help="Initialise the investdesk database")

    serve_parser = subparsers.add_parser("serve", parents=[config_parent], help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP API (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db"}

    leading: list[str] = []
    if args_list and args_list[0].startswith("--config="):
        leading, args_list = args_list[:1], args_list[1:]
    elif len(args_list) >= 2 and args_list[0] == "--config":
        leading, args_list = args_list[:2], args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*leading, *args_list])
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args([*leading, *args_list])
            args_list = ["serve", *args_list]

    return parser.parse_args([*leading, *args_list])


def _load_settings(config: str | None) -> Settings:
    config_path = Path(config).expanduser().resolve(strict=False) if config else None
    try:
        return load_settings(config_path)
    except ConfigurationError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path, bcrypt_rounds=settings.bcrypt_rounds)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(
    *,
    settings: Settings,
    database: Database,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from investdesk.api import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting investdesk API on %s://%s:%s", protocol, host, port)

    app = create_app(settings=settings, database=database)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    settings = _load_settings(args.config)
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(
            settings=settings,
            database=database,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()

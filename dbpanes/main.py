import argparse
import os
import sys

from loguru import logger

from dbpanes.config import (
    add_connection,
    connection_from_url,
    load_config,
    log_path,
    remove_connection,
    save_config,
)
from dbpanes.tui import DatabasePanesApp


def configure_logging(level: str) -> None:
    # The default stderr sink would draw over the terminal UI.
    logger.remove()
    path = log_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        path,
        level=level.upper(),
        rotation="5 MB",
        retention=3,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dbpanes")
    subparsers = parser.add_subparsers(dest="command")

    add_parser = subparsers.add_parser("add-connection")
    add_parser.add_argument("--name", required=True)
    add_parser.add_argument("--url", required=True)

    remove_parser = subparsers.add_parser("remove-connection")
    remove_parser.add_argument("--name", required=True)

    parser.add_argument("--conn")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("DBPANES_LOG_LEVEL", "INFO"),
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "add-connection":
        config = load_config()
        try:
            updated = add_connection(config, connection_from_url(args.name, args.url))
        except ValueError as error:
            print(f"Error: {error}", file=sys.stderr)
            raise SystemExit(1) from error
        save_config(updated)
        logger.info("Saved connection {}", args.name)
        print(f"Saved connection: {args.name}")
        return

    if args.command == "remove-connection":
        config = load_config()
        try:
            updated = remove_connection(config, args.name)
        except ValueError as error:
            print(f"Error: {error}", file=sys.stderr)
            raise SystemExit(1) from error
        save_config(updated)
        logger.info("Removed connection {}", args.name)
        print(f"Removed connection: {args.name}")
        return

    config = load_config()
    logger.info("Starting dbpanes with {} saved connections", len(config.connections))
    app = DatabasePanesApp(config, initial_connection_name=args.conn)
    app.run()


if __name__ == "__main__":
    main()

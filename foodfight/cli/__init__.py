#!/usr/bin/env python3
"""
Food Fight operator CLI

Usage:
    python -m foodfight.cli <command> [options]

Commands:
    db          Database operations (init, reset)
    session     Session operations (list, show, close)
    sweep       Advance every session whose voting window has expired

Environment:
    DATABASE_URL    Database connection string
    LOG_LEVEL       DEBUG|INFO|WARNING|ERROR
"""
import sys
import argparse
import logging
from typing import Optional

from foodfight.config import settings
from foodfight.cli.db_commands import DbCommand
from foodfight.cli.session_commands import SessionCommand, SweepCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="foodfight",
        description="Food Fight voting engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s db init
  %(prog)s session list
  %(prog)s session show 12
  %(prog)s session close 12 --force
  %(prog)s sweep
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL or INFO)"
    )

    parser.add_argument(
        "--database-url",
        default=settings.DATABASE_URL,
        help="Database URL (default: DATABASE_URL)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Database commands
    db_parser = subparsers.add_parser("db", help="Database operations")
    db_subparsers = db_parser.add_subparsers(dest="db_action")

    # db init
    db_subparsers.add_parser("init", help="Create missing tables")

    # db reset
    reset_parser = db_subparsers.add_parser("reset", help="Drop and recreate every table")
    reset_parser.add_argument("--force", action="store_true", help="Skip confirmation")

    # Session commands
    session_parser = subparsers.add_parser("session", help="Session operations")
    session_subparsers = session_parser.add_subparsers(dest="session_action")

    # session list
    list_parser = session_subparsers.add_parser("list", help="List sessions, newest first")
    list_parser.add_argument("--limit", type=int, default=50, help="Maximum rows")

    # session show
    show_parser = session_subparsers.add_parser("show", help="Show one session")
    show_parser.add_argument("id", type=int, help="Session ID")

    # session close
    close_parser = session_subparsers.add_parser("close", help="Run the phase-end check for a session")
    close_parser.add_argument("id", type=int, help="Session ID")
    close_parser.add_argument("--force", action="store_true", help="Close even if the window is still open")

    # sweep
    subparsers.add_parser("sweep", help="Advance every expired voting session")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)

    command_map = {
        "db": DbCommand,
        "session": SessionCommand,
        "sweep": SweepCommand,
    }

    if parsed.command in command_map:
        handler = command_map[parsed.command](database_url=parsed.database_url)
        return handler.execute(parsed)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())

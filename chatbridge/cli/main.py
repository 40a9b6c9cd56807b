"""Entry point for the command-line interface."""

from __future__ import annotations

import argparse
import logging

from chatbridge.log import configure_logging, install_exception_hooks
from chatbridge.settings import AppSettings, load_app_settings

from .commands import COMMANDS


def build_parser() -> argparse.ArgumentParser:
    """Construct argument parser for CLI commands."""
    parser = argparse.ArgumentParser(prog="chatbridge", description="ChatBridge CLI")
    parser.add_argument(
        "--settings",
        help="path to JSON/TOML settings",
    )
    parser.add_argument(
        "--log-dir",
        help="directory for log files",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="print debug messages",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    for name, cmd in COMMANDS.items():
        p = sub.add_parser(name, help=cmd.help)
        cmd.add_arguments(p)
        p.set_defaults(func=cmd.func)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(
        logging.DEBUG if args.verbose else logging.WARNING,
        log_dir=args.log_dir,
    )
    install_exception_hooks()
    settings = AppSettings()
    if args.settings:
        try:
            settings = load_app_settings(args.settings)
        except (OSError, ValueError) as exc:
            parser.error(f"cannot load settings: {exc}")
    args.app_settings = settings
    args.func(args)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

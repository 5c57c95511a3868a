# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for relpipe.

Every operation is a subcommand of `relpipe`. The global options (--config,
--log-level, --dry-run) are inherited by every subcommand through argparse's
parent parser mechanism.

Usage:
    relpipe run dist/win-unpacked
    relpipe run dist --transform strip-maps --transform sign --workers 4
    relpipe strip-maps build/
    relpipe sign dist/ --config relpipe.yaml --report reports/sign.json
    relpipe scan dist/
    relpipe info
"""

import argparse
import sys

from relpipe.cli.commands import (
    handle_info,
    handle_run,
    handle_scan,
    handle_sign,
    handle_strip_maps,
)
from relpipe.cli.exit_codes import USER_ERROR
from relpipe.logging.logger import VALID_LOG_LEVELS


def _build_global_parser() -> argparse.ArgumentParser:
    """
    Build the parent parser with global options.

    add_help=False so the help text doesn't collide between the parent and
    the subcommand parsers.
    """
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file.",
    )
    parent.add_argument(
        "--log-level",
        type=str,
        default=None,
        dest="log_level",
        choices=sorted(VALID_LOG_LEVELS),
        help="Set the logging verbosity level (default: from config, else INFO).",
    )
    parent.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Scan and report what would happen without changing any file.",
    )
    return parent


def _build_run_parser() -> argparse.ArgumentParser:
    """Options shared by the subcommands that process a tree."""
    run_parent = argparse.ArgumentParser(add_help=False)
    run_parent.add_argument("root", help="Build output directory to process.")
    run_parent.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Process this many files in parallel.",
    )
    run_parent.add_argument(
        "--report",
        type=str,
        default=None,
        help="Write the JSON run report to this path.",
    )
    run_parent.add_argument(
        "--checksums",
        type=str,
        default=None,
        help="Write a SHA256 manifest of signed artifacts to this path.",
    )
    run_parent.add_argument(
        "--product-name",
        type=str,
        default=None,
        dest="product_name",
        help="Product name embedded by the fallback signer.",
    )
    return run_parent


def _register_subcommands(
    subparsers: argparse._SubParsersAction,  # type: ignore[type-arg]
    parent: argparse.ArgumentParser,
) -> None:
    """
    Register all subcommands with their handler functions.

    Each subcommand sets its handler via set_defaults(func=...).
    """
    run_parent = _build_run_parser()

    run_parser = subparsers.add_parser(
        "run",
        parents=[parent, run_parent],
        help="Run the configured transforms over a build output tree.",
    )
    run_parser.add_argument(
        "--transform",
        action="append",
        default=None,
        dest="transforms",
        help="Transform to run (repeatable, in order). Overrides the config.",
    )
    run_parser.set_defaults(func=handle_run)

    tree_commands = [
        ("strip-maps", "Delete debug-map files.", handle_strip_maps),
        ("sign", "Sign executables, installers, libraries and packages.", handle_sign),
    ]
    for name, help_text, handler in tree_commands:
        parser = subparsers.add_parser(name, parents=[parent, run_parent], help=help_text)
        parser.set_defaults(func=handler)

    scan_parser = subparsers.add_parser(
        "scan", parents=[parent], help="Show how files in a tree are classified."
    )
    scan_parser.add_argument("root", help="Build output directory to scan.")
    scan_parser.set_defaults(func=handle_scan)

    info_parser = subparsers.add_parser(
        "info", parents=[parent], help="Display version and environment info."
    )
    info_parser.set_defaults(func=handle_info)


def main() -> None:
    """
    Main CLI entrypoint. This is what pyproject.toml's [project.scripts] points to.

    If no subcommand is given, we show help and exit with USER_ERROR.
    """
    parent = _build_global_parser()

    root_parser = argparse.ArgumentParser(
        prog="relpipe",
        description="relpipe: post-process release build outputs (strip debug maps, sign, verify).",
        parents=[parent],
    )
    subparsers = root_parser.add_subparsers(dest="command")
    _register_subcommands(subparsers, parent)

    args = root_parser.parse_args()

    if not hasattr(args, "func") or args.func is None:
        root_parser.print_help()
        sys.exit(USER_ERROR)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

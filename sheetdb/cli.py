"""Command line helper for the SheetDB record store."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from sheetdb.errors import SheetDBError
from sheetdb.logging_config import configure_logging
from sheetdb.settings import DEFAULT_SETTINGS_PATH, load_settings
from sheetdb.setup_manager import SetupProgress
from sheetdb.store import SheetDB


def _open_store(args: argparse.Namespace) -> SheetDB:
    settings = load_settings(args.settings)
    if not args.verbose:
        logging.getLogger().setLevel(settings.log_level)
    if args.spreadsheet:
        settings.spreadsheet_id = args.spreadsheet
    return SheetDB.from_settings(settings)


def _print_progress(progress: SetupProgress) -> None:
    sheet = progress.current_sheet or "-"
    print(f"[{progress.progress:3d}%] {sheet}: {progress.current_step}")


def command_list(args: argparse.Namespace) -> int:
    for summary in _open_store(args).list_spreadsheets():
        print(f"{summary.id}\t{summary.name}\t{summary.modified_time}")
    return 0


def command_validate(args: argparse.Namespace) -> int:
    result = _open_store(args).validate_sheet_structure()
    for error in result.errors:
        print(f"Error  : {error}")
    for warning in result.warnings:
        print(f"Warning: {warning}")
    if result.valid:
        print("Spreadsheet structure is valid.")
        return 0
    return 1


def command_setup(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if args.background:
        setup_id = store.start_setup(block=True)
        progress = store.setup_progress()
        print(f"Setup id      : {setup_id}")
    else:
        progress = store.setup_sheets(_print_progress)

    if progress is None:
        print("Setup did not report progress.", file=sys.stderr)
        return 1
    if progress.status == "error":
        print(f"Error: {progress.error}", file=sys.stderr)
        print(f"Completed     : {', '.join(progress.completed_sheets) or 'none'}", file=sys.stderr)
        return 1
    print(f"Sheets ready  : {', '.join(progress.completed_sheets)}")
    return 0


def command_status(args: argparse.Namespace) -> int:
    progress = _open_store(args).setup_progress(stale_after=args.stale_after)
    if progress is None:
        print("No sheet setup has been recorded.")
        return 0
    print(f"Status        : {progress.status}")
    print(f"Progress      : {progress.progress}%")
    print(f"Current step  : {progress.current_step or '-'}")
    print(f"Completed     : {', '.join(progress.completed_sheets) or 'none'}")
    if progress.error:
        print(f"Error         : {progress.error}")
    return 0


def command_records(args: argparse.Namespace) -> int:
    records = _open_store(args).get_sheet_data(args.sheet, include_private_columns=args.private)
    for record in records:
        print(json.dumps(record, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SheetDB spreadsheet record store tool")
    parser.add_argument("--settings", default=DEFAULT_SETTINGS_PATH, help="Path to the settings JSON file")
    parser.add_argument("--spreadsheet", help="Spreadsheet id overriding the configured one")
    parser.add_argument("--verbose", action="store_true", help="Log debug details to the log file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List spreadsheets visible to the account")
    list_parser.set_defaults(func=command_list)

    validate_parser = subparsers.add_parser("validate", help="Check the required sheets and columns")
    validate_parser.set_defaults(func=command_validate)

    setup_parser = subparsers.add_parser("setup", help="Create and update the base sheets")
    setup_parser.add_argument(
        "--background",
        action="store_true",
        help="Run through the background runner with its timeout and persisted progress",
    )
    setup_parser.set_defaults(func=command_setup)

    status_parser = subparsers.add_parser("status", help="Show the persisted setup progress")
    status_parser.add_argument(
        "--stale-after",
        type=float,
        default=None,
        help="Report a running setup without updates for this many seconds as failed",
    )
    status_parser.set_defaults(func=command_status)

    records_parser = subparsers.add_parser("records", help="Print the records of a sheet as JSON lines")
    records_parser.add_argument("sheet", help="Sheet title")
    records_parser.add_argument("--private", action="store_true", help="Include private columns")
    records_parser.set_defaults(func=command_records)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        return args.func(args)
    except SheetDBError as exc:
        logging.getLogger(__name__).error("Command %s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

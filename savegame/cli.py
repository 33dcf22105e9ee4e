"""Command line tool for inspecting and maintaining save slots."""

import argparse
import asyncio
import sys
from typing import Optional

from .config.loader import load_settings
from .errors import ConfigurationError, SaveSystemError
from .models.operations import LoadStrategy
from .models.save_data import SaveData
from .system.context import SaveSystem, create_save_system
from .utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="savegame",
        description="Inspect and maintain save slots",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List slots, newest first
  python -m savegame --save-dir SaveData list

  # Show the validation report for a slot
  python -m savegame validate quicksave

  # Restore the most recent backup of a slot
  python -m savegame restore quicksave
        """,
    )
    parser.add_argument("--save-dir", help="Save directory (overrides settings)")
    parser.add_argument("--config", help="JSON or YAML settings file")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Console log level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List save slots")

    info_parser = subparsers.add_parser("info", help="Show slot information")
    info_parser.add_argument("slot")

    validate_parser = subparsers.add_parser("validate", help="Validate a slot")
    validate_parser.add_argument("slot")

    load_parser = subparsers.add_parser("load", help="Load a slot through recovery")
    load_parser.add_argument("slot")
    load_parser.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in LoadStrategy],
        default=LoadStrategy.FULL.value,
    )

    backups_parser = subparsers.add_parser("backups", help="List slot backups")
    backups_parser.add_argument("slot")

    restore_parser = subparsers.add_parser("restore", help="Restore a slot backup")
    restore_parser.add_argument("slot")
    restore_parser.add_argument("backup", nargs="?", help="Backup ID (default: newest)")

    delete_parser = subparsers.add_parser("delete", help="Delete a slot")
    delete_parser.add_argument("slot")

    return parser


def _cmd_list(system: SaveSystem, args) -> int:
    slots = system.save_manager.get_save_slots()
    if not slots:
        print("No save slots found")
        return 0
    for metadata in slots:
        modified = "-"
        if metadata.last_modified:
            modified = f"{metadata.last_modified:%Y-%m-%d %H:%M}"
        print(
            f"{metadata.slot_name:<20} {modified:<17} v{metadata.save_version:<8} "
            f"{metadata.play_time_hours:6.1f}h  {metadata.current_credits:>14,.0f}"
        )
    return 0


def _cmd_info(system: SaveSystem, args) -> int:
    info = system.save_manager.get_save_slot_info(args.slot)
    if info is None:
        print(f"Slot not found: {args.slot}")
        return 1
    print(info.get_display_info())
    print(f"Version: {info.save_version}")
    print(f"Valid: {info.is_valid}")
    return 0


def _cmd_validate(system: SaveSystem, args) -> int:
    try:
        save_data = SaveData.from_json(system.storage.load_file(args.slot))
    except SaveSystemError as e:
        print(f"Cannot validate {args.slot}: {e}")
        return 1
    result = system.validator.validate_save_data(save_data)
    print(result.get_detailed_report())
    return 0 if result.is_loadable else 1


def _cmd_load(system: SaveSystem, args) -> int:
    save_data = asyncio.run(
        system.load_manager.load_game_async(args.slot, LoadStrategy(args.strategy))
    )
    if save_data is None:
        print(f"Failed to load {args.slot}")
        return 1
    print(save_data.get_save_info())
    return 0


def _cmd_backups(system: SaveSystem, args) -> int:
    backups = system.storage.backups.list_backups(args.slot)
    if not backups:
        print(f"No backups for {args.slot}")
        return 0
    for entry in reversed(backups):
        created = f"{entry.created_at:%Y-%m-%d %H:%M:%S}"
        print(f"{entry.backup_id}  {created}  {entry.size_bytes}B")
    return 0


def _cmd_restore(system: SaveSystem, args) -> int:
    if not system.storage.restore_from_backup(args.slot, args.backup):
        print(f"Failed to restore {args.slot}")
        return 1
    print(f"Restored {args.slot}")
    return 0


def _cmd_delete(system: SaveSystem, args) -> int:
    if not system.save_manager.delete_save_slot(args.slot):
        print(f"Failed to delete {args.slot}")
        return 1
    print(f"Deleted {args.slot}")
    return 0


COMMANDS = {
    "list": _cmd_list,
    "info": _cmd_info,
    "validate": _cmd_validate,
    "load": _cmd_load,
    "backups": _cmd_backups,
    "restore": _cmd_restore,
    "delete": _cmd_delete,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    overrides = {"auto_save_enabled": False, "log_level": args.log_level}
    if args.save_dir:
        overrides["save_directory"] = args.save_dir

    try:
        config = load_settings(args.config, overrides=overrides)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(
        config.logging_config_path,
        default_level=config.log_level,
        log_dir=config.log_dir,
    )

    system = create_save_system(config)
    try:
        return COMMANDS[args.command](system, args)
    except SaveSystemError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

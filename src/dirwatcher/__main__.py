"""Command-line entry point for the directory watcher."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .config import AppConfig, ConfigError, StoreConfig, WatcherConfig, load_config
from .errors import DeleteGuardError
from .filters import FILTER_TYPES
from .watcher import Watcher


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dirwatcher",
        description="Watch a remote directory and print change events as JSON lines",
    )
    parser.add_argument("directory", nargs="?", help="Remote directory to watch")
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("-i", "--interval", type=float, help="Polling interval in seconds (default: 60)")
    parser.add_argument("-n", "--name", help="Only watch entries whose name matches this glob")
    parser.add_argument("-t", "--type", choices=FILTER_TYPES, help="Only watch entries of this type")
    parser.add_argument("--sync-dir", help="Mirror matching objects into this local directory")
    parser.add_argument(
        "--sync-delete",
        action="store_true",
        default=None,
        help="Delete local mirror files whose remote entry was deleted",
    )
    parser.add_argument(
        "--disable-sync-delete-guard",
        action="store_true",
        default=None,
        help="Skip the first-poll check against deleting from a mischosen --sync-dir",
    )
    parser.add_argument("--dry-run", action="store_true", default=None, help="Log mirror changes without making them")
    parser.add_argument("--one-shot", action="store_true", default=None, help="Poll once and exit")
    parser.add_argument("--store-root", help="Local root of the watched store (default: $DIRWATCHER_STORE_ROOT)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    return parser


def build_config(args: argparse.Namespace) -> AppConfig:
    """Combine the optional config file with command-line overrides."""

    if args.config:
        app_config = load_config(Path(args.config))
    elif args.directory:
        app_config = AppConfig(watcher=WatcherConfig(directory=args.directory))
    else:
        raise ConfigError("a directory to watch (or --config) is required")

    watcher = app_config.watcher
    if args.directory:
        watcher.directory = args.directory
    if args.interval is not None:
        watcher.poll_interval = args.interval
    if args.name is not None:
        watcher.name_filter = args.name
    if args.type is not None:
        watcher.type_filter = args.type
    if args.sync_dir is not None:
        watcher.mirror_directory = Path(args.sync_dir).expanduser().resolve()
    if args.sync_delete is not None:
        watcher.allow_mirror_deletion = args.sync_delete
    if args.disable_sync_delete_guard is not None:
        watcher.disable_delete_guard = args.disable_sync_delete_guard
    if args.dry_run is not None:
        watcher.dry_run = args.dry_run
    if args.one_shot is not None:
        watcher.one_shot = args.one_shot
    if args.store_root is not None:
        app_config.store = StoreConfig(root=Path(args.store_root).expanduser().resolve())

    watcher.validate()
    return app_config


async def run(app_config: AppConfig) -> int:
    """Print event groups until the watcher ends; return the exit status."""

    watcher = Watcher(app_config.watcher, store_config=app_config.store)
    failures: List[Exception] = []

    def on_error(exc: Exception) -> None:
        failures.append(exc)
        logging.error("%s", exc)
        if isinstance(exc, DeleteGuardError):
            watcher.close()

    watcher.add_error_listener(on_error)
    try:
        async for group in watcher:
            sys.stdout.write(group.to_json() + "\n")
            sys.stdout.flush()
    finally:
        await watcher.aclose()

    if any(isinstance(exc, DeleteGuardError) for exc in failures):
        return 2
    if failures and app_config.watcher.one_shot:
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    try:
        app_config = build_config(args)
    except ConfigError as exc:
        logging.error("%s", exc)
        raise SystemExit(2) from exc

    try:
        status = asyncio.run(run(app_config))
    except ConfigError as exc:
        logging.error("%s", exc)
        raise SystemExit(2) from exc
    except KeyboardInterrupt:
        logging.info("Watcher interrupted by user")
        status = 130
    raise SystemExit(status)


if __name__ == "__main__":
    main()

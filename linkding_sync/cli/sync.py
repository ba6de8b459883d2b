"""Command-line entry point for running and inspecting Linkding syncs.

Usage:
    linkding-sync run [--full]
    linkding-sync status
    linkding-sync export [--output PATH]
    linkding-sync import PATH
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from linkding_sync.config import load_config
from linkding_sync.core.logging_utils import setup_json_logging
from linkding_sync.di.sync import build_sync_engine
from linkding_sync.sync.messages import SyncComplete, SyncError, SyncProgress
from linkding_sync.sync.scheduler import SyncOutcome

if TYPE_CHECKING:
    from linkding_sync.config import AppConfig
    from linkding_sync.sync.messages import OutboundMessage

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_LOCKED = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="linkding-sync",
        description="Sync Linkding bookmarks into the local offline store",
        allow_abbrev=False,
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        help="Override the configured SQLite path for this run.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level for this session.",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        help="Path to a .env file containing environment variables for the run.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    run_parser = subparsers.add_parser("run", help="Run one sync session to its end.")
    run_parser.add_argument(
        "--full",
        action="store_true",
        help="Fetch every bookmark instead of only those modified since the last sync.",
    )
    subparsers.add_parser("status", help="Show the engine cursor and lock state.")
    export_parser = subparsers.add_parser(
        "export", help="Write local reading progress as versioned JSON."
    )
    export_parser.add_argument(
        "--output",
        type=Path,
        help="File to write; defaults to stdout.",
    )
    import_parser = subparsers.add_parser(
        "import", help="Merge reading progress from an export file."
    )
    import_parser.add_argument("path", type=Path, help="Export file to read.")
    return parser.parse_args(argv)


def _load_env_file(path: Path) -> None:
    """Load variables from a .env-style file without overriding the environment."""
    if not path.is_file():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if value and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _prepare_config(args: argparse.Namespace, *, require_token: bool) -> AppConfig:
    """Load configuration, applying CLI overrides."""
    if args.env_file:
        _load_env_file(args.env_file)

    try:
        cfg = load_config(require_token=require_token)
    except RuntimeError as exc:
        msg = f"Configuration error: {exc}"
        raise SystemExit(msg) from exc

    updates: dict[str, str] = {}
    if args.db_path:
        updates["db_path"] = str(args.db_path)
    if args.log_level:
        updates["log_level"] = args.log_level
    if updates:
        cfg = replace(cfg, runtime=cfg.runtime.model_copy(update=updates))
    return cfg


def _print_message(message: OutboundMessage) -> None:
    if isinstance(message, SyncProgress):
        total = f"/{message.total}" if message.total else ""
        print(f"[{message.phase}] {message.current}{total}")
    elif isinstance(message, SyncError):
        print(f"Sync error: {message.message}", file=sys.stderr)
    elif isinstance(message, SyncComplete):
        print(
            f"Sync complete: {message.processed} bookmarks processed, "
            f"{len(message.touched_ids)} changed, "
            f"{message.partial_failures} partial failures "
            f"in {message.duration_seconds:.1f}s"
        )


async def run_sync(cfg: AppConfig, *, full_sync: bool = False) -> int:
    """Run one sync session and map its outcome to an exit code."""
    engine = build_sync_engine(cfg, observers=[_print_message])
    try:
        outcome = await engine.scheduler.request_sync(full_sync)
        await engine.reporter.drain()
    finally:
        engine.db.close()

    if outcome is SyncOutcome.COMPLETED:
        return EXIT_OK
    if outcome is SyncOutcome.LOCK_UNAVAILABLE:
        print("Another context is already syncing; try again later.", file=sys.stderr)
        return EXIT_LOCKED
    return EXIT_FAILED


async def show_status(cfg: AppConfig) -> int:
    engine = build_sync_engine(cfg)
    try:
        snapshot = await engine.scheduler.status_snapshot()
    finally:
        engine.db.close()
    print(json.dumps(snapshot, indent=2, ensure_ascii=False))
    return EXIT_OK


async def export_progress(cfg: AppConfig, output: Path | None = None) -> int:
    """Dump reading progress to ``output`` (stdout when omitted)."""
    engine = build_sync_engine(cfg)
    try:
        export = await engine.bookmarks.async_export_reading_progress()
    finally:
        engine.db.close()

    text = json.dumps(export, indent=2, ensure_ascii=False)
    if output is None:
        print(text)
    else:
        output.write_text(text + "\n", encoding="utf-8")
        print(f"Exported reading progress for {len(export['reading_progress'])} bookmarks")
    return EXIT_OK


async def import_progress(cfg: AppConfig, path: Path) -> int:
    """Merge an export file into the store; newer local progress wins."""
    try:
        raw = path.read_bytes()
    except OSError as exc:
        print(f"Cannot read {path}: {exc}", file=sys.stderr)
        return EXIT_FAILED

    engine = build_sync_engine(cfg)
    try:
        result = await engine.bookmarks.async_import_reading_progress(raw)
    except ValueError as exc:
        print(f"Invalid export file: {exc}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        engine.db.close()

    logger.info("reading_progress_imported", extra=result.to_dict())
    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK


async def run_cli(args: argparse.Namespace) -> int:
    cfg = _prepare_config(args, require_token=args.command == "run")
    setup_json_logging(
        cfg.runtime.log_level,
        use_loguru=cfg.runtime.log_use_loguru,
        log_file=cfg.runtime.log_file,
    )

    if args.command == "run":
        return await run_sync(cfg, full_sync=args.full)
    if args.command == "export":
        return await export_progress(cfg, args.output)
    if args.command == "import":
        return await import_progress(cfg, args.path)
    return await show_status(cfg)


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``linkding-sync`` and ``python -m linkding_sync.cli.sync``."""
    args = parse_args(argv)
    try:
        return asyncio.run(run_cli(args))
    except KeyboardInterrupt:  # pragma: no cover - user cancelled
        return EXIT_FAILED
    except Exception as exc:
        logger.exception("cli_sync_failed", exc_info=exc)
        return EXIT_FAILED


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

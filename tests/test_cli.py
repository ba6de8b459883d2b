"""Tests for the linkding-sync command-line entry point."""

from __future__ import annotations

import json
import os

import pytest

from linkding_sync.cli import sync as cli
from linkding_sync.di.sync import build_sync_engine
from linkding_sync.infrastructure.persistence.sqlite.repositories import (
    SqliteBookmarkRepositoryAdapter,
)
from linkding_sync.sync.messages import SyncComplete, SyncError, SyncProgress
from linkding_sync.sync.reconciler import merge_bookmark
from tests.conftest import FakeLinkdingRemote, make_remote_bookmark, make_test_app_config

_ENV_KEYS = ("LINKDING_URL", "LINKDING_TOKEN", "DB_PATH", "LOG_LEVEL", "CLI_TEST_VALUE")


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def fake_engine(monkeypatch, temp_store):
    """Route the CLI's engine construction to a fake server and a temp store."""
    remote = FakeLinkdingRemote()

    def _build(cfg, **kwargs):
        return build_sync_engine(cfg, db=temp_store, client_factory=remote.factory, **kwargs)

    monkeypatch.setattr(cli, "build_sync_engine", _build)
    return remote


# ---------------------------------------------------------------------------
# Argument and config handling
# ---------------------------------------------------------------------------


def test_parse_run_with_overrides():
    args = cli.parse_args(["--db-path", "/tmp/x.db", "--log-level", "DEBUG", "run", "--full"])

    assert args.command == "run"
    assert args.full is True
    assert str(args.db_path) == "/tmp/x.db"
    assert args.log_level == "DEBUG"


def test_parse_requires_command():
    with pytest.raises(SystemExit):
        cli.parse_args([])


def test_load_env_file_does_not_override(tmp_path, monkeypatch, clean_env):
    env_file = tmp_path / "sync.env"
    env_file.write_text(
        "# comment\nLINKDING_TOKEN='from-file'\nCLI_TEST_VALUE=\"quoted\"\nbroken line\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("LINKDING_TOKEN", "from-env")

    cli._load_env_file(env_file)

    assert os.environ["LINKDING_TOKEN"] == "from-env"
    assert os.environ["CLI_TEST_VALUE"] == "quoted"


def test_load_env_file_ignores_missing_file(tmp_path, clean_env):
    cli._load_env_file(tmp_path / "missing.env")

    assert "CLI_TEST_VALUE" not in os.environ


def test_prepare_config_applies_cli_overrides(tmp_path, monkeypatch, clean_env):
    monkeypatch.setenv("LINKDING_TOKEN", "abc")
    args = cli.parse_args(["--db-path", str(tmp_path / "o.db"), "--log-level", "ERROR", "run"])

    cfg = cli._prepare_config(args, require_token=True)

    assert cfg.runtime.db_path == str(tmp_path / "o.db")
    assert cfg.runtime.log_level == "ERROR"
    assert cfg.linkding.token == "abc"


def test_prepare_config_exits_without_token(clean_env):
    args = cli.parse_args(["run"])

    with pytest.raises(SystemExit, match="Configuration error"):
        cli._prepare_config(args, require_token=True)


def test_print_message(capsys):
    cli._print_message(SyncProgress(phase="bookmarks", current=100, total=230))
    cli._print_message(SyncError(message="Timed out talking to Linkding", recoverable=True))
    cli._print_message(
        SyncComplete(
            processed=230, touched_ids=[1, 2], partial_failures=0, duration_seconds=1.25
        )
    )

    out, err = capsys.readouterr()
    assert "[bookmarks] 100/230" in out
    assert "Sync complete: 230 bookmarks processed, 2 changed" in out
    assert "Timed out talking to Linkding" in err


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_sync_exit_ok(fake_engine, tmp_path, capsys):
    fake_engine.add_bookmarks(3)

    code = await cli.run_sync(make_test_app_config(tmp_path / "unused.db"))

    assert code == cli.EXIT_OK
    assert "Sync complete: 3 bookmarks processed" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_sync_exit_failed_on_auth_error(fake_engine, tmp_path):
    from linkding_sync.adapters.linkding import LinkdingAPIError

    fake_engine.fail("list_unarchived", 0, error=LinkdingAPIError("x", status_code=401))

    code = await cli.run_sync(make_test_app_config(tmp_path / "unused.db"))

    assert code == cli.EXIT_FAILED


@pytest.mark.asyncio
async def test_run_sync_exit_locked(fake_engine, temp_store, tmp_path, capsys):
    from linkding_sync.infrastructure.persistence.sqlite.repositories import (
        SqliteSyncLeaseRepositoryAdapter,
    )

    cfg = make_test_app_config(tmp_path / "unused.db")
    leases = SqliteSyncLeaseRepositoryAdapter(temp_store)
    await leases.async_try_acquire(cfg.sync.lock_name, "other-context", 600)

    code = await cli.run_sync(cfg)

    assert code == cli.EXIT_LOCKED
    assert "already syncing" in capsys.readouterr().err
    assert fake_engine.open_count == 0


@pytest.mark.asyncio
async def test_show_status_prints_snapshot(fake_engine, tmp_path, capsys):
    code = await cli.show_status(make_test_app_config(tmp_path / "unused.db"))

    assert code == cli.EXIT_OK
    snapshot = json.loads(capsys.readouterr().out)
    assert snapshot["engine_id"] == "default"
    assert snapshot["state"] == "idle"
    assert snapshot["interrupted"] is False
    assert snapshot["cursor"]["last_sync_at"] is None


def test_parse_export_and_import():
    export_args = cli.parse_args(["export", "--output", "progress.json"])
    import_args = cli.parse_args(["import", "progress.json"])

    assert export_args.command == "export"
    assert str(export_args.output) == "progress.json"
    assert import_args.command == "import"
    assert str(import_args.path) == "progress.json"


async def _seed_progress(store) -> SqliteBookmarkRepositoryAdapter:
    bookmarks = SqliteBookmarkRepositoryAdapter(store)
    await bookmarks.async_apply_remote_bookmarks(
        [make_remote_bookmark(1).to_row(), make_remote_bookmark(2).to_row()],
        merge=merge_bookmark,
    )
    await bookmarks.async_save_read_progress(1, 60, reading_mode="readability")
    return bookmarks


@pytest.mark.asyncio
async def test_export_writes_file(fake_engine, temp_store, tmp_path, capsys):
    await _seed_progress(temp_store)
    output = tmp_path / "progress.json"

    code = await cli.export_progress(make_test_app_config(tmp_path / "unused.db"), output)

    assert code == cli.EXIT_OK
    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["version"] == "1.0"
    assert [e["bookmark_id"] for e in data["reading_progress"]] == [1]
    assert "1 bookmarks" in capsys.readouterr().out
    assert fake_engine.open_count == 0


@pytest.mark.asyncio
async def test_export_to_stdout(fake_engine, temp_store, tmp_path, capsys):
    await _seed_progress(temp_store)

    code = await cli.export_progress(make_test_app_config(tmp_path / "unused.db"))

    assert code == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out)["reading_progress"][0]["progress"] == 60.0


@pytest.mark.asyncio
async def test_import_reports_counts(fake_engine, temp_store, tmp_path, capsys):
    bookmarks = await _seed_progress(temp_store)
    source = tmp_path / "progress.json"
    source.write_text(
        json.dumps(
            {
                "version": "1.0",
                "export_timestamp": "2025-06-20T08:00:00Z",
                "reading_progress": [
                    {"bookmark_id": 2, "progress": 35, "last_read_at": "2025-06-20T07:00:00Z"},
                    {"bookmark_id": 7, "progress": 80, "last_read_at": "2025-06-20T07:00:00Z"},
                ],
            }
        ),
        encoding="utf-8",
    )

    code = await cli.import_progress(make_test_app_config(tmp_path / "unused.db"), source)

    assert code == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out) == {"imported": 1, "skipped": 0, "orphaned": 1}
    assert (await bookmarks.async_get_bookmark(2))["read_progress"] == 35.0


@pytest.mark.asyncio
async def test_import_rejects_bad_files(fake_engine, temp_store, tmp_path, capsys):
    cfg = make_test_app_config(tmp_path / "unused.db")
    source = tmp_path / "progress.json"
    source.write_text(
        json.dumps({"version": "9", "export_timestamp": "2025-06-20T08:00:00Z"}),
        encoding="utf-8",
    )

    assert await cli.import_progress(cfg, source) == cli.EXIT_FAILED
    assert "Invalid export file" in capsys.readouterr().err
    assert await cli.import_progress(cfg, tmp_path / "missing.json") == cli.EXIT_FAILED
    assert "Cannot read" in capsys.readouterr().err

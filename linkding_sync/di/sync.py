from __future__ import annotations

from collections.abc import Callable, Iterable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any

from linkding_sync.adapters.linkding import LinkdingClient
from linkding_sync.config import AppConfig, load_config
from linkding_sync.core.logging_utils import get_logger
from linkding_sync.db.session import DatabaseSessionManager
from linkding_sync.infrastructure.persistence.sqlite.repositories import (
    SqliteAssetRepositoryAdapter,
    SqliteBookmarkRepositoryAdapter,
    SqliteSyncLeaseRepositoryAdapter,
    SqliteSyncStateRepositoryAdapter,
)
from linkding_sync.sync.assets import AssetDownloader
from linkding_sync.sync.lock import create_lock_coordinator
from linkding_sync.sync.progress import Observer, ProgressReporter
from linkding_sync.sync.protocols import HostCapabilities, LockCoordinator
from linkding_sync.sync.read_status import ReadStatusUploader
from linkding_sync.sync.reconciler import LocalStoreReconciler
from linkding_sync.sync.retry import RetryPolicy
from linkding_sync.sync.scheduler import PhaseScheduler

logger = get_logger(__name__)

ClientFactory = Callable[[], AbstractAsyncContextManager[Any]]


@dataclass
class SyncEngine:
    """Everything ``build_sync_engine`` wired, for callers that need more than the scheduler."""

    cfg: AppConfig
    db: DatabaseSessionManager
    scheduler: PhaseScheduler
    reporter: ProgressReporter
    lock: LockCoordinator
    capabilities: HostCapabilities
    bookmarks: SqliteBookmarkRepositoryAdapter
    assets: SqliteAssetRepositoryAdapter
    state: SqliteSyncStateRepositoryAdapter


def linkding_client_factory(cfg: AppConfig) -> ClientFactory:
    """Factory opening a fresh ``LinkdingClient`` per run."""

    def _factory() -> LinkdingClient:
        return LinkdingClient(
            cfg.linkding.url,
            cfg.linkding.token,
            timeout=cfg.linkding.timeout_sec,
            asset_timeout=cfg.linkding.asset_timeout_sec,
        )

    return _factory


def build_sync_engine(
    cfg: AppConfig | None = None,
    *,
    db: DatabaseSessionManager | None = None,
    client_factory: ClientFactory | None = None,
    observers: Iterable[Observer] = (),
    owner_id: str | None = None,
    sleep: Callable[[float], Any] | None = None,
) -> SyncEngine:
    """Construct a PhaseScheduler and its collaborators.

    Args:
        cfg: Application configuration. If None, loads from environment.
        db: Database session manager. If None, creates from config and migrates.
        client_factory: Zero-argument factory returning an async context manager
            that yields a remote client. If None, uses LinkdingClient.
        observers: Progress observers subscribed from the start.
        owner_id: Lock owner id for this execution context. Random if None.
        sleep: Backoff sleep override (tests).

    Returns:
        SyncEngine holding the scheduler and the repositories it uses.
    """

    cfg = cfg or load_config()

    if db is None:
        db = DatabaseSessionManager(
            path=cfg.runtime.db_path,
            operation_timeout=cfg.database.operation_timeout,
            max_retries=cfg.database.max_retries,
        )
        db.migrate()

    if client_factory is None:
        client_factory = linkding_client_factory(cfg)

    bookmarks = SqliteBookmarkRepositoryAdapter(db)
    assets = SqliteAssetRepositoryAdapter(db)
    state = SqliteSyncStateRepositoryAdapter(db)
    leases = SqliteSyncLeaseRepositoryAdapter(db)

    capabilities = HostCapabilities.from_config(cfg.host)
    lock = create_lock_coordinator(
        capabilities, leases, owner_id=owner_id, lease_seconds=cfg.sync.lock_lease_sec
    )
    reporter = ProgressReporter(observers)
    reconciler = LocalStoreReconciler(bookmarks, assets, state, engine_id=cfg.sync.engine_id)

    scheduler_kwargs: dict[str, Any] = {}
    if sleep is not None:
        scheduler_kwargs["sleep"] = sleep

    scheduler = PhaseScheduler(
        engine_id=cfg.sync.engine_id,
        client_factory=client_factory,
        lock=lock,
        reconciler=reconciler,
        bookmarks=bookmarks,
        state=state,
        asset_downloader=AssetDownloader(
            reconciler, bookmarks, assets, concurrency=cfg.sync.asset_concurrency
        ),
        read_uploader=ReadStatusUploader(reconciler),
        reporter=reporter,
        retry_policy=RetryPolicy(
            max_attempts=cfg.sync.max_retries,
            base_delay=cfg.sync.retry_base_delay_sec,
            max_delay=cfg.sync.retry_max_delay_sec,
        ),
        keepalive_interval=cfg.sync.keepalive_interval_sec,
        keepalive_enabled=capabilities.background_execution,
        lock_name=cfg.sync.lock_name,
        page_size=cfg.sync.page_size,
        **scheduler_kwargs,
    )

    logger.info(
        "sync_engine_built",
        extra={
            "engine_id": cfg.sync.engine_id,
            "page_size": cfg.sync.page_size,
            "asset_concurrency": cfg.sync.asset_concurrency,
            "cross_context_lock": lock.supports_cross_context,
            "keepalive_enabled": capabilities.background_execution,
        },
    )

    return SyncEngine(
        cfg=cfg,
        db=db,
        scheduler=scheduler,
        reporter=reporter,
        lock=lock,
        capabilities=capabilities,
        bookmarks=bookmarks,
        assets=assets,
        state=state,
    )

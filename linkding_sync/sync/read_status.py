"""Read-status uploader: pushes local "mark as read" changes to Linkding."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import peewee

from linkding_sync.adapters.linkding.client import LinkdingAPIError
from linkding_sync.sync.retry import describe_error, is_auth_error

if TYPE_CHECKING:
    from linkding_sync.sync.protocols import RemoteBookmarkClient
    from linkding_sync.sync.reconciler import LocalStoreReconciler

logger = logging.getLogger(__name__)


class ReadStatusUploader:
    def __init__(self, reconciler: LocalStoreReconciler) -> None:
        self._reconciler = reconciler

    async def upload(
        self,
        client: RemoteBookmarkClient,
        bookmark_id: int,
        *,
        correlation_id: str | None = None,
    ) -> bool:
        """Upload one bookmark's read state.

        The pending flag is cleared only after the server acknowledged the
        change. A bookmark the server no longer has is cleared as well, since
        the next full sync removes it locally.

        Returns:
            True if the flag was cleared
        """
        try:
            remote = await client.mark_read(bookmark_id)
        except LinkdingAPIError as exc:
            if is_auth_error(exc):
                raise
            if exc.status_code == 404:
                logger.info(
                    "read_status_bookmark_gone",
                    extra={"bookmark_id": bookmark_id, "correlation_id": correlation_id},
                )
                return await self._reconciler.confirm_read(bookmark_id, None)
            self._log_failure(bookmark_id, exc, correlation_id)
            return False
        except peewee.DatabaseError:
            raise
        except Exception as exc:
            self._log_failure(bookmark_id, exc, correlation_id)
            return False

        return await self._reconciler.confirm_read(bookmark_id, remote)

    @staticmethod
    def _log_failure(bookmark_id: int, exc: BaseException, correlation_id: str | None) -> None:
        logger.warning(
            "read_status_upload_failed",
            extra={
                "bookmark_id": bookmark_id,
                "error": describe_error(exc),
                "correlation_id": correlation_id,
            },
        )

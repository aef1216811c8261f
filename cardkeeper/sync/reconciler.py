"""
Background reconciliation against the backend.

Reloads the full collection snapshot on a fixed interval, on request
(after a conflict), and when the client regains focus. A snapshot never
overwrites a key that has a mutation in flight or that was committed after
the snapshot was requested.
"""

import asyncio
import logging
from collections.abc import Callable, Collection
from datetime import UTC, datetime

from cardkeeper.models.collection import CardKey
from cardkeeper.models.failure import RemoteCallFailedError
from cardkeeper.remote.client import RemoteStoreClient
from cardkeeper.sync.cache import EntityCache, LoadStats

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Keeps the entity cache close to server truth.

    Args:
        remote: Backend client
        cache: Cache to merge snapshots into
        pending_keys: Returns the keys with a mutation in flight
        interval_seconds: Poll interval. 0 disables polling.
    """

    def __init__(
        self,
        remote: RemoteStoreClient,
        cache: EntityCache,
        pending_keys: Callable[[], Collection[CardKey]],
        interval_seconds: float = 30.0,
    ) -> None:
        self._remote = remote
        self._cache = cache
        self._pending_keys = pending_keys
        self._interval = interval_seconds
        self._lock = asyncio.Lock()
        self._poller: asyncio.Task[None] | None = None
        self._requested: asyncio.Task[LoadStats | None] | None = None

        self.last_refreshed_at: datetime | None = None
        self.last_error: RemoteCallFailedError | None = None

    @property
    def running(self) -> bool:
        return self._poller is not None and not self._poller.done()

    @property
    def healthy(self) -> bool:
        """True once a refresh succeeded and the latest one did not fail."""
        return self.last_refreshed_at is not None and self.last_error is None

    async def refresh(self) -> LoadStats | None:
        """
        Fetch a snapshot and merge it into the cache.

        Returns the merge stats, or None if the fetch failed. Failures are
        recorded on `last_error` rather than raised.
        """
        async with self._lock:
            as_of = self._cache.commit_seq
            try:
                collections, cards = await asyncio.gather(
                    self._remote.list_collections(),
                    self._remote.list_collection_cards(),
                )
            except RemoteCallFailedError as e:
                self.last_error = e
                logger.warning(
                    "RECONCILE_FAILED",
                    extra={"error": e.message, "retryable": e.retryable},
                )
                return None

            stats = self._cache.load(
                collections, cards, as_of=as_of, protected=self._pending_keys()
            )
            self.last_error = None
            self.last_refreshed_at = datetime.now(UTC)

        logger.info(
            "CACHE_RECONCILED",
            extra={
                "added": stats.added,
                "updated": stats.updated,
                "removed": stats.removed,
                "skipped": stats.skipped,
            },
        )
        return stats

    def request_refresh(self) -> "asyncio.Task[LoadStats | None]":
        """Schedule a refresh. Requests made while one is scheduled share it."""
        if self._requested is None or self._requested.done():
            self._requested = asyncio.get_running_loop().create_task(self.refresh())
        return self._requested

    async def on_focus(self) -> LoadStats | None:
        """The client became visible again."""
        return await self.refresh()

    def start(self) -> None:
        if self.running or self._interval <= 0:
            return
        self._poller = asyncio.get_running_loop().create_task(self._poll())

    async def stop(self) -> None:
        tasks = [t for t in (self._poller, self._requested) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._poller = None
        self._requested = None

    async def _poll(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.exception("RECONCILE_CRASHED")
            await asyncio.sleep(self._interval)

"""
Collection store: the per-session object UI consumers talk to.

Wires the entity cache, the optimistic overlay, the mutation coordinator
and the reconciler together, and tracks which collection is active. Create
one per signed-in session and close it on logout.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from cardkeeper.config import Settings
from cardkeeper.models.collection import CardKey, Collection, CollectionAttrs
from cardkeeper.models.failure import (
    CollectionNotFoundError,
    KnownError,
    NoActiveCollectionError,
    RefusalError,
)
from cardkeeper.remote.client import RemoteStoreClient
from cardkeeper.sync import notifications
from cardkeeper.sync.cache import EntityCache, LoadStats
from cardkeeper.sync.coordinator import MutationCoordinator, MutationResult
from cardkeeper.sync.notifications import LoggingNotificationSink, NotificationSink
from cardkeeper.sync.overlay import EffectiveCardState, OptimisticOverlay
from cardkeeper.sync.reconciler import Reconciler

logger = logging.getLogger(__name__)


@dataclass
class CardTotal:
    """Copies of one card across every collection of the session."""

    card_id: str
    quantity: int = 0
    collection_ids: list[int] = field(default_factory=list)


class CollectionStore:
    """
    Session-scoped collection state.

    Args:
        remote: Backend client. The store does not close it.
        sink: Receives user-facing notifications
        cooldown_seconds: Per-key debounce after a mutation settles
        poll_interval_seconds: Reconciliation interval; 0 disables polling
        strict: Raise on internal invariant violations
    """

    def __init__(
        self,
        remote: RemoteStoreClient,
        sink: NotificationSink | None = None,
        *,
        cooldown_seconds: float = 1.0,
        poll_interval_seconds: float = 30.0,
        strict: bool = False,
    ) -> None:
        self.remote = remote
        self.sink = sink or LoggingNotificationSink()
        self.cache = EntityCache()
        self.overlay = OptimisticOverlay(self.cache)
        self.reconciler = Reconciler(
            remote,
            self.cache,
            pending_keys=self._pending_keys,
            interval_seconds=poll_interval_seconds,
        )
        self.coordinator = MutationCoordinator(
            remote,
            self.cache,
            self.overlay,
            self.sink,
            cooldown_seconds=cooldown_seconds,
            strict=strict,
            on_conflict=self.reconciler.request_refresh,
        )
        self.active_collection_id: int | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        remote: RemoteStoreClient,
        sink: NotificationSink | None = None,
    ) -> "CollectionStore":
        return cls(
            remote,
            sink,
            cooldown_seconds=settings.mutation_cooldown_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            strict=settings.debug,
        )

    def _pending_keys(self) -> set[CardKey]:
        return self.coordinator.pending_keys()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> LoadStats | None:
        """Load the first snapshot and begin polling."""
        stats = await self.reconciler.refresh()
        self.reconciler.start()
        return stats

    async def close(self) -> None:
        await self.reconciler.stop()
        await self.coordinator.close()
        self.overlay.clear()
        self.cache.clear()
        self.active_collection_id = None

    async def __aenter__(self) -> "CollectionStore":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def refresh(self) -> LoadStats | None:
        return await self.reconciler.on_focus()

    # =========================================================================
    # COLLECTION SELECTION
    # =========================================================================

    def get_collections(self) -> list[Collection]:
        return self.cache.collections()

    def get_active_collection(self) -> Collection | None:
        if self.active_collection_id is None:
            return None
        return self.cache.get_collection(self.active_collection_id)

    def set_active_collection(self, collection_id: int | None) -> Collection | None:
        """
        Select the collection card intents apply to. None clears the selection.

        Raises:
            CollectionNotFoundError: The collection is not cached
        """
        if collection_id is None:
            self.active_collection_id = None
            return None
        collection = self.cache.get_collection(collection_id)
        if collection is None:
            raise CollectionNotFoundError(collection_id)
        self.active_collection_id = collection_id
        logger.info("ACTIVE_COLLECTION_CHANGED", extra={"collection_id": collection_id})
        return collection

    def _resolve(self, collection_id: int | None) -> int:
        resolved = collection_id if collection_id is not None else self.active_collection_id
        if resolved is None:
            raise NoActiveCollectionError()
        return resolved

    # =========================================================================
    # CARD READS
    # =========================================================================

    def get_effective_card_state(
        self, card_id: str, collection_id: int | None = None
    ) -> EffectiveCardState:
        """
        What the UI should show for a card.

        Without an explicit or active collection the card reads as absent.
        """
        resolved = collection_id if collection_id is not None else self.active_collection_id
        if resolved is None:
            return EffectiveCardState(is_in_collection=False, quantity=0)
        return self.coordinator.effective_state(resolved, card_id)

    def get_card_quantity(self, card_id: str, collection_id: int | None = None) -> int:
        return self.get_effective_card_state(card_id, collection_id).quantity

    def get_collection_card_ids(self, collection_id: int | None = None) -> list[str]:
        resolved = collection_id if collection_id is not None else self.active_collection_id
        if resolved is None:
            return []
        return self.cache.card_ids(resolved)

    def get_all_collection_cards(self) -> dict[str, CardTotal]:
        """Settled totals per card across all collections."""
        totals: dict[str, CardTotal] = {}
        for card in self.cache.cards():
            total = totals.setdefault(card.card_id, CardTotal(card_id=card.card_id))
            total.quantity += card.quantity
            total.collection_ids.append(card.collection_id)
        for total in totals.values():
            total.collection_ids.sort()
        return totals

    # =========================================================================
    # CARD INTENTS
    # =========================================================================

    def request_add_card(
        self, card_id: str, collection_id: int | None = None
    ) -> "asyncio.Future[MutationResult]":
        try:
            return self.coordinator.add_card(self._resolve(collection_id), card_id)
        except RefusalError as e:
            self._refuse(e)
            raise

    def request_remove_card(
        self, card_id: str, collection_id: int | None = None
    ) -> "asyncio.Future[MutationResult]":
        try:
            return self.coordinator.remove_card(self._resolve(collection_id), card_id)
        except RefusalError as e:
            self._refuse(e)
            raise

    def request_set_quantity(
        self, card_id: str, quantity: int, collection_id: int | None = None
    ) -> "asyncio.Future[MutationResult]":
        try:
            return self.coordinator.set_quantity(self._resolve(collection_id), card_id, quantity)
        except RefusalError as e:
            self._refuse(e)
            raise

    def clear_error(self, card_id: str, collection_id: int | None = None) -> None:
        resolved = collection_id if collection_id is not None else self.active_collection_id
        if resolved is not None:
            self.coordinator.clear_error(resolved, card_id)

    def _refuse(self, error: RefusalError) -> None:
        logger.info(
            "INTENT_REFUSED",
            extra={"failure_kind": error.kind.value, "error": error.message},
        )
        self.sink.notify(notifications.refused(error))

    # =========================================================================
    # COLLECTION CRUD (not optimistic)
    # =========================================================================

    async def create_collection(self, attrs: CollectionAttrs) -> Collection:
        """Create a collection on the backend and make it active."""
        try:
            collection = await self.remote.create_collection(attrs)
        except KnownError as e:
            self.sink.notify(notifications.collection_failed("creating", e))
            raise
        self.cache.upsert_collection(collection)
        self.cache.mark_collection_committed(collection.id)
        self.active_collection_id = collection.id
        logger.info("COLLECTION_CREATED", extra={"collection_id": collection.id})
        self.sink.notify(notifications.collection_created(collection))
        return collection

    async def update_collection(self, collection_id: int, attrs: CollectionAttrs) -> Collection:
        if self.cache.get_collection(collection_id) is None:
            raise CollectionNotFoundError(collection_id)
        try:
            collection = await self.remote.update_collection(collection_id, attrs)
        except KnownError as e:
            self.sink.notify(notifications.collection_failed("updating", e))
            raise
        self.cache.upsert_collection(collection)
        self.cache.mark_collection_committed(collection.id)
        logger.info("COLLECTION_UPDATED", extra={"collection_id": collection.id})
        self.sink.notify(notifications.collection_updated(collection))
        return collection

    async def delete_collection(self, collection_id: int) -> int:
        """
        Delete a collection and its cards.

        Returns the number of cached card rows removed.
        """
        collection = self.cache.get_collection(collection_id)
        if collection is None:
            raise CollectionNotFoundError(collection_id)
        try:
            await self.remote.delete_collection(collection_id)
        except KnownError as e:
            self.sink.notify(notifications.collection_failed("deleting", e))
            raise
        removed = self.cache.remove_collection(collection_id)
        self.cache.mark_collection_committed(collection_id)
        for key, entry in list(self.overlay.entries.items()):
            if key.collection_id == collection_id and not entry.is_loading:
                self.overlay.discard(key)
        if self.active_collection_id == collection_id:
            self.active_collection_id = None
        logger.info(
            "COLLECTION_DELETED",
            extra={"collection_id": collection_id, "cards_removed": removed},
        )
        self.sink.notify(notifications.collection_deleted(collection))
        return removed

"""
Mutation coordinator: per-key optimistic state machine.

Every (collection_id, card_id) key moves through

    IDLE -> PENDING -> COOLDOWN -> IDLE

PENDING: intents were accepted and a drain task owns the key. Exactly one
backend call per key is in flight at any time. Add/remove intents accepted
while PENDING are merged into the key's pending delta and sent together
once the current call settles; set-quantity intents are refused with
`AlreadyPendingError`.

COOLDOWN: the key settled recently. New intents are answered with a
`suppressed` result without touching any state, which absorbs double
clicks and re-fired UI events. The cooldown release is a timer handle on
the same per-key slot as the in-flight lock.

Acceptance is synchronous: the overlay is updated before `add_card`,
`remove_card` or `set_quantity` return. The returned future resolves to a
`MutationResult` once the intent's batch settles. Remote failures never
surface as exceptions from that future; they come back as `rolled_back`
results after the key has been reverted and one failure notification has
been emitted.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from cardkeeper.models.collection import CardKey, CollectionCard
from cardkeeper.models.failure import (
    AlreadyPendingError,
    FailureKind,
    InvalidQuantityError,
    InvariantViolationError,
    KnownError,
    NoActiveCollectionError,
    QuantityUnderflowError,
    RefusalError,
    RemoteCallFailedError,
    RemoteConflictError,
)
from cardkeeper.remote.client import RemoteStoreClient
from cardkeeper.sync import notifications
from cardkeeper.sync.cache import EntityCache
from cardkeeper.sync.notifications import Notification, NotificationSink
from cardkeeper.sync.overlay import EffectiveCardState, OptimisticOverlay

logger = logging.getLogger(__name__)


class KeyPhase(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COOLDOWN = "cooldown"


class MutationKind(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    SET_QUANTITY = "set_quantity"


class MutationOutcome(str, Enum):
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    SUPPRESSED = "suppressed"


@dataclass
class MutationResult:
    """How an accepted intent settled."""

    key: CardKey
    outcome: MutationOutcome
    card: CollectionCard | None = None
    error: KnownError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is MutationOutcome.COMMITTED


@dataclass
class _Batch:
    """Intents sent to the backend as a single call."""

    delta: int = 0
    absolute: int | None = None
    kinds: list[MutationKind] = field(default_factory=list)
    waiters: list["asyncio.Future[MutationResult]"] = field(default_factory=list)


@dataclass
class _KeySlot:
    phase: KeyPhase = KeyPhase.IDLE
    queued: _Batch = field(default_factory=_Batch)
    in_flight: _Batch | None = None
    task: "asyncio.Task[None] | None" = None
    release: asyncio.TimerHandle | None = None


def _log_fields(key: CardKey, **fields: object) -> dict[str, object]:
    return {"collection_id": key.collection_id, "card_id": key.card_id, **fields}


class MutationCoordinator:
    """
    Accepts card intents and serializes them per key.

    Args:
        remote: Backend client
        cache: Settled state; written on commit and rollback
        overlay: Speculative state; owned by this coordinator
        sink: Receives one notification per settled batch
        cooldown_seconds: Debounce after a key settles. 0 disables it.
        strict: Raise on invariant violations instead of self-healing
        on_conflict: Called after a rollback caused by a conflict error
    """

    def __init__(
        self,
        remote: RemoteStoreClient,
        cache: EntityCache,
        overlay: OptimisticOverlay,
        sink: NotificationSink,
        *,
        cooldown_seconds: float = 1.0,
        strict: bool = False,
        on_conflict: Callable[[], object] | None = None,
    ) -> None:
        self._remote = remote
        self._cache = cache
        self._overlay = overlay
        self._sink = sink
        self._cooldown = cooldown_seconds
        self._strict = strict
        self._on_conflict = on_conflict
        self._slots: dict[CardKey, _KeySlot] = {}

    # =========================================================================
    # READS
    # =========================================================================

    def phase(self, collection_id: int, card_id: str) -> KeyPhase:
        slot = self._slots.get(CardKey(collection_id, card_id))
        return slot.phase if slot is not None else KeyPhase.IDLE

    def pending_keys(self) -> set[CardKey]:
        """Keys with a call in flight or about to be sent."""
        return {key for key, slot in self._slots.items() if slot.phase is KeyPhase.PENDING}

    def effective_state(self, collection_id: int, card_id: str) -> EffectiveCardState:
        key = CardKey(collection_id, card_id)
        entry = self._overlay.get(key)
        if entry is not None and entry.is_loading:
            slot = self._slots.get(key)
            if slot is None or slot.phase is not KeyPhase.PENDING:
                self._heal(key)
        return self._overlay.effective_state(collection_id, card_id)

    # =========================================================================
    # INTENTS
    # =========================================================================

    def add_card(
        self, collection_id: int | None, card_id: str
    ) -> "asyncio.Future[MutationResult]":
        """
        Add one copy of a card.

        Raises:
            NoActiveCollectionError: `collection_id` is None
        """
        key = self._key(collection_id, card_id)
        if self._cooling_down(key):
            return self._suppressed(key, MutationKind.ADD)
        return self._enqueue(key, MutationKind.ADD, delta=1)

    def remove_card(
        self, collection_id: int | None, card_id: str
    ) -> "asyncio.Future[MutationResult]":
        """
        Remove one copy of a card.

        Raises:
            NoActiveCollectionError: `collection_id` is None
            QuantityUnderflowError: The visible quantity is already 0
        """
        key = self._key(collection_id, card_id)
        if self._cooling_down(key):
            return self._suppressed(key, MutationKind.REMOVE)
        if self.effective_state(*key).quantity <= 0:
            raise QuantityUnderflowError(*key)
        return self._enqueue(key, MutationKind.REMOVE, delta=-1)

    def set_quantity(
        self, collection_id: int | None, card_id: str, quantity: int
    ) -> "asyncio.Future[MutationResult]":
        """
        Set an absolute quantity. 0 removes the card.

        Raises:
            NoActiveCollectionError: `collection_id` is None
            InvalidQuantityError: `quantity` is negative or not an integer
            AlreadyPendingError: The key has a change in flight
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise InvalidQuantityError(quantity)
        key = self._key(collection_id, card_id)
        if self.phase(*key) is KeyPhase.PENDING:
            raise AlreadyPendingError(*key)
        if self._cooling_down(key):
            return self._suppressed(key, MutationKind.SET_QUANTITY)
        if self.effective_state(*key).quantity == quantity:
            return self._resolved(
                MutationResult(key, MutationOutcome.COMMITTED, card=self._cache.get_card(*key))
            )
        return self._enqueue(key, MutationKind.SET_QUANTITY, absolute=quantity)

    def clear_error(self, collection_id: int, card_id: str) -> None:
        """Forget a surfaced error flag for a settled key."""
        key = CardKey(collection_id, card_id)
        entry = self._overlay.get(key)
        if entry is not None and not entry.is_loading:
            self._overlay.discard(key)

    async def close(self) -> None:
        """Cancel in-flight drains and cooldown timers."""
        tasks = [slot.task for slot in self._slots.values() if slot.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        cancelled = RemoteCallFailedError(message="Request cancelled")
        for key, slot in self._slots.items():
            if slot.release is not None:
                slot.release.cancel()
            # A drain cancelled before its first step never rolled back
            waiters = slot.queued.waiters + (slot.in_flight.waiters if slot.in_flight else [])
            unresolved = [waiter for waiter in waiters if not waiter.done()]
            if not unresolved:
                continue
            self._overlay.discard(key)
            result = MutationResult(
                key, MutationOutcome.ROLLED_BACK, card=self._cache.get_card(*key), error=cancelled
            )
            for waiter in unresolved:
                waiter.set_result(result)
        self._slots.clear()

    # =========================================================================
    # ACCEPTANCE
    # =========================================================================

    def _key(self, collection_id: int | None, card_id: str) -> CardKey:
        if collection_id is None:
            raise NoActiveCollectionError()
        if not card_id or not card_id.strip():
            raise RefusalError(
                kind=FailureKind.INVALID_INPUT,
                message="Card id cannot be empty",
                status_code=422,
            )
        return CardKey(collection_id, card_id)

    def _cooling_down(self, key: CardKey) -> bool:
        slot = self._slots.get(key)
        return slot is not None and slot.phase is KeyPhase.COOLDOWN

    def _resolved(self, result: MutationResult) -> "asyncio.Future[MutationResult]":
        future: asyncio.Future[MutationResult] = asyncio.get_running_loop().create_future()
        future.set_result(result)
        return future

    def _suppressed(self, key: CardKey, kind: MutationKind) -> "asyncio.Future[MutationResult]":
        logger.debug("INTENT_SUPPRESSED", extra=_log_fields(key, kind=kind.value))
        return self._resolved(
            MutationResult(key, MutationOutcome.SUPPRESSED, card=self._cache.get_card(*key))
        )

    def _enqueue(
        self,
        key: CardKey,
        kind: MutationKind,
        *,
        delta: int = 0,
        absolute: int | None = None,
    ) -> "asyncio.Future[MutationResult]":
        loop = asyncio.get_running_loop()
        slot = self._slots.setdefault(key, _KeySlot())
        entry = self._overlay.begin(key)

        if absolute is not None:
            slot.queued.absolute = absolute
            entry.absolute_quantity = absolute
        slot.queued.delta += delta
        entry.pending_quantity_delta += delta
        entry.is_loading = True
        entry.has_error = False

        future: asyncio.Future[MutationResult] = loop.create_future()
        slot.queued.kinds.append(kind)
        slot.queued.waiters.append(future)

        if slot.phase is KeyPhase.IDLE:
            slot.phase = KeyPhase.PENDING
            slot.task = loop.create_task(self._drain(key, slot))
            logger.info("MUTATION_ACCEPTED", extra=_log_fields(key, kind=kind.value))
        else:
            logger.debug(
                "MUTATION_COALESCED",
                extra=_log_fields(key, kind=kind.value, queued_delta=slot.queued.delta),
            )
        return future

    # =========================================================================
    # DRAIN
    # =========================================================================

    async def _drain(self, key: CardKey, slot: _KeySlot) -> None:
        """Send queued batches for one key, one call at a time."""
        try:
            while slot.queued.waiters:
                batch = slot.queued
                slot.queued = _Batch()
                slot.in_flight = batch
                entry = self._overlay.begin(key)
                entry.is_loading = True
                entry.previous_snapshot = self._cache.get_card(*key)

                try:
                    card = await self._dispatch(key, batch)
                except asyncio.CancelledError:
                    cancelled = RemoteCallFailedError(message="Request cancelled")
                    self._rollback(key, slot, batch, cancelled, notify=False)
                    raise
                except RemoteCallFailedError as e:
                    self._rollback(key, slot, batch, e)
                    break
                except Exception as e:
                    logger.exception("REMOTE_CALL_CRASHED", extra=_log_fields(key))
                    self._rollback(key, slot, batch, RemoteCallFailedError.from_exception(e))
                    break
                else:
                    self._commit(key, slot, batch, card)
        finally:
            slot.in_flight = None
            slot.task = None
            self._settle(key, slot)

    async def _dispatch(self, key: CardKey, batch: _Batch) -> CollectionCard | None:
        """Issue the one backend call for `batch`; None means the row is gone."""
        collection_id, card_id = key
        cached = self._cache.get_card(*key)

        if batch.absolute is not None:
            target = batch.absolute + batch.delta
            if target <= 0:
                await self._remote.delete_collection_card(collection_id, card_id)
                return None
            if cached is None:
                return await self._remote.create_collection_card(collection_id, card_id, target)
            return await self._remote.update_collection_card_quantity(
                collection_id, card_id, target
            )

        if batch.delta > 0:
            return await self._remote.create_collection_card(collection_id, card_id, batch.delta)
        if batch.delta < 0:
            target = (cached.quantity if cached is not None else 0) + batch.delta
            if target <= 0:
                await self._remote.delete_collection_card(collection_id, card_id)
                return None
            return await self._remote.update_collection_card_quantity(
                collection_id, card_id, target
            )

        # Intents cancelled each other out
        return cached

    def _commit(
        self, key: CardKey, slot: _KeySlot, batch: _Batch, card: CollectionCard | None
    ) -> None:
        if card is None:
            self._cache.remove_card(*key)
        else:
            card = self._cache.put_card(card)
        self._cache.mark_committed(key)

        entry = self._overlay.get(key)
        if entry is not None:
            if batch.absolute is not None:
                entry.absolute_quantity = None
            entry.pending_quantity_delta -= batch.delta
            if not slot.queued.waiters:
                self._overlay.discard(key)

        result = MutationResult(key, MutationOutcome.COMMITTED, card=card)
        for waiter in batch.waiters:
            if not waiter.done():
                waiter.set_result(result)

        logger.info(
            "MUTATION_COMMITTED",
            extra=_log_fields(
                key,
                delta=batch.delta,
                absolute=batch.absolute,
                quantity=card.quantity if card is not None else 0,
                intents=len(batch.waiters),
            ),
        )
        notification = self._success_notification(key, batch, card)
        if notification is not None:
            self._sink.notify(notification)

    def _rollback(
        self,
        key: CardKey,
        slot: _KeySlot,
        batch: _Batch,
        error: RemoteCallFailedError,
        notify: bool = True,
    ) -> None:
        """Revert the key to its pre-batch state. Queued intents are dropped too."""
        entry = self._overlay.get(key)
        snapshot = entry.previous_snapshot if entry is not None else self._cache.get_card(*key)
        self._cache.restore_card(key, snapshot)
        self._overlay.fail(key, snapshot)

        queued = slot.queued
        slot.queued = _Batch()
        result = MutationResult(key, MutationOutcome.ROLLED_BACK, card=snapshot, error=error)
        for waiter in batch.waiters + queued.waiters:
            if not waiter.done():
                waiter.set_result(result)

        logger.warning(
            "MUTATION_ROLLED_BACK",
            extra=_log_fields(
                key,
                error=error.message,
                failure_kind=error.kind.value,
                retryable=error.retryable,
                dropped_intents=len(queued.waiters),
            ),
        )
        if notify:
            self._sink.notify(self._failure_notification(batch, error))
        if isinstance(error, RemoteConflictError) and self._on_conflict is not None:
            self._on_conflict()

    # =========================================================================
    # LOCK LIFECYCLE
    # =========================================================================

    def _settle(self, key: CardKey, slot: _KeySlot) -> None:
        if self._slots.get(key) is not slot:
            return
        if self._cooldown > 0:
            slot.phase = KeyPhase.COOLDOWN
            slot.release = asyncio.get_running_loop().call_later(
                self._cooldown, self._release, key
            )
        else:
            self._release(key)

    def _release(self, key: CardKey) -> None:
        self._slots.pop(key, None)
        entry = self._overlay.get(key)
        if entry is not None and not entry.is_loading:
            # A surfaced error flag lives until the key is released
            self._overlay.discard(key)

    def _heal(self, key: CardKey) -> None:
        detail = (
            f"overlay entry for {key.card_id} in collection {key.collection_id} "
            "is loading without a pending mutation"
        )
        if self._strict:
            raise InvariantViolationError(detail)
        logger.error("OVERLAY_WITHOUT_LOCK", extra=_log_fields(key))
        self._overlay.discard(key)

    # =========================================================================
    # FEEDBACK
    # =========================================================================

    def _success_notification(
        self, key: CardKey, batch: _Batch, card: CollectionCard | None
    ) -> Notification | None:
        collection = self._cache.get_collection(key.collection_id)
        quantity = card.quantity if card is not None else 0
        if batch.absolute is not None:
            return notifications.quantity_set(quantity)
        if batch.delta > 0:
            return notifications.card_added(collection, batch.delta)
        if batch.delta < 0:
            return notifications.card_removed(collection, quantity)
        return None

    def _failure_notification(self, batch: _Batch, error: KnownError) -> Notification:
        if batch.absolute is not None:
            return notifications.set_quantity_failed(error)
        if batch.delta > 0 or (batch.delta == 0 and MutationKind.ADD in batch.kinds):
            return notifications.add_failed(error)
        return notifications.remove_failed(error)

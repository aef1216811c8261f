"""
Optimistic overlay: speculative per-key deltas layered over the cache.

The value a UI shows for a card is `effective_state(cached_row, delta)`.
Entries are written only by the mutation coordinator; readers get the
read-only `entries` view or the computed state.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from cardkeeper.models.collection import CardKey, CollectionCard
from cardkeeper.sync.cache import EntityCache


@dataclass
class OptimisticDelta:
    """
    Speculative change for one key.

    `absolute_quantity` is set while a set-quantity call is pending; relative
    intents accepted on top of it accumulate in `pending_quantity_delta`.
    `previous_snapshot` is the cached row before the batch now in flight.
    """

    pending_quantity_delta: int = 0
    absolute_quantity: int | None = None
    is_loading: bool = False
    has_error: bool = False
    previous_snapshot: CollectionCard | None = None


@dataclass(frozen=True)
class EffectiveCardState:
    """What the UI shows for one card in one collection."""

    is_in_collection: bool
    quantity: int
    is_loading: bool = False
    has_error: bool = False


ABSENT = EffectiveCardState(is_in_collection=False, quantity=0)


def effective_state(
    cached: CollectionCard | None, delta: OptimisticDelta | None
) -> EffectiveCardState:
    """Combine a cached row with its pending delta. Quantity never drops below 0."""
    base = cached.quantity if cached is not None else 0
    if delta is None:
        if base <= 0:
            return ABSENT
        return EffectiveCardState(is_in_collection=True, quantity=base)

    if delta.absolute_quantity is not None:
        base = delta.absolute_quantity
    quantity = max(0, base + delta.pending_quantity_delta)
    return EffectiveCardState(
        is_in_collection=quantity > 0,
        quantity=quantity,
        is_loading=delta.is_loading,
        has_error=delta.has_error,
    )


class OptimisticOverlay:
    """Map from mutation key to its speculative delta."""

    def __init__(self, cache: EntityCache) -> None:
        self._cache = cache
        self._entries: dict[CardKey, OptimisticDelta] = {}
        self.entries: Mapping[CardKey, OptimisticDelta] = MappingProxyType(self._entries)

    def get(self, key: CardKey) -> OptimisticDelta | None:
        return self._entries.get(key)

    def effective_state(self, collection_id: int, card_id: str) -> EffectiveCardState:
        key = CardKey(collection_id, card_id)
        return effective_state(self._cache.get_card(*key), self._entries.get(key))

    # --- coordinator-only writes ---

    def begin(self, key: CardKey) -> OptimisticDelta:
        """Return the key's live entry, replacing any settled one with a fresh entry."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_loading:
            entry = OptimisticDelta(previous_snapshot=self._cache.get_card(*key))
            self._entries[key] = entry
        return entry

    def fail(self, key: CardKey, snapshot: CollectionCard | None) -> OptimisticDelta:
        """Drop every speculative change for `key` and flag the error."""
        entry = OptimisticDelta(has_error=True, previous_snapshot=snapshot)
        self._entries[key] = entry
        return entry

    def discard(self, key: CardKey) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

"""Tests for optimistic overlay state."""

from cardkeeper.models.collection import CardKey, CollectionCard
from cardkeeper.sync.cache import EntityCache
from cardkeeper.sync.overlay import (
    ABSENT,
    EffectiveCardState,
    OptimisticDelta,
    OptimisticOverlay,
    effective_state,
)

ROW = CollectionCard(collection_id=5, card_id="card-1", quantity=2)


class TestEffectiveState:
    def test_cached_row_without_delta(self) -> None:
        assert effective_state(ROW, None) == EffectiveCardState(is_in_collection=True, quantity=2)

    def test_nothing_cached_is_absent(self) -> None:
        assert effective_state(None, None) == ABSENT

    def test_relative_delta_applies_to_cached_quantity(self) -> None:
        state = effective_state(ROW, OptimisticDelta(pending_quantity_delta=1, is_loading=True))

        assert state == EffectiveCardState(is_in_collection=True, quantity=3, is_loading=True)

    def test_quantity_never_negative(self) -> None:
        """Deltas larger than the cached quantity clamp at zero."""
        state = effective_state(ROW, OptimisticDelta(pending_quantity_delta=-7))

        assert state.quantity == 0
        assert state.is_in_collection is False

    def test_absolute_quantity_replaces_base(self) -> None:
        delta = OptimisticDelta(absolute_quantity=6, pending_quantity_delta=-1, is_loading=True)

        assert effective_state(ROW, delta).quantity == 5

    def test_error_flag_is_reported(self) -> None:
        state = effective_state(ROW, OptimisticDelta(has_error=True))

        assert state == EffectiveCardState(is_in_collection=True, quantity=2, has_error=True)


class TestOptimisticOverlay:
    def test_begin_snapshots_cached_row(self) -> None:
        cache = EntityCache()
        row = cache.put_card(ROW)
        overlay = OptimisticOverlay(cache)

        entry = overlay.begin(CardKey(5, "card-1"))

        assert entry.previous_snapshot is row

    def test_begin_reuses_loading_entry(self) -> None:
        overlay = OptimisticOverlay(EntityCache())
        entry = overlay.begin(CardKey(5, "card-1"))
        entry.is_loading = True

        assert overlay.begin(CardKey(5, "card-1")) is entry

    def test_begin_replaces_settled_entry(self) -> None:
        """A failed entry is replaced when a new intent starts."""
        overlay = OptimisticOverlay(EntityCache())
        failed = overlay.fail(CardKey(5, "card-1"), None)

        fresh = overlay.begin(CardKey(5, "card-1"))

        assert fresh is not failed
        assert fresh.has_error is False

    def test_keys_are_independent(self) -> None:
        cache = EntityCache()
        cache.put_card(CollectionCard(collection_id=1, card_id="card-9", quantity=1))
        cache.put_card(CollectionCard(collection_id=2, card_id="card-9", quantity=1))
        overlay = OptimisticOverlay(cache)

        overlay.begin(CardKey(1, "card-9")).pending_quantity_delta = 2

        assert overlay.effective_state(1, "card-9").quantity == 3
        assert overlay.effective_state(2, "card-9").quantity == 1

    def test_entries_view_is_read_only(self) -> None:
        overlay = OptimisticOverlay(EntityCache())
        overlay.begin(CardKey(5, "card-1"))

        assert CardKey(5, "card-1") in overlay.entries
        assert not hasattr(overlay.entries, "pop")

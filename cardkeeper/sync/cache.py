"""
Entity cache: the settled, last-known server truth for one session.

Holds Collections and CollectionCards keyed by stable identifiers. Only the
mutation coordinator and the reconciler write here; everyone else reads.

INVARIANTS:
- At most one CollectionCard row per (collection_id, card_id)
- No row with quantity 0 is ever stored (quantity 0 means deleted)
- Deleting an absent row is a no-op
- Unchanged rows keep their identity across `load` calls
- A snapshot never overwrites a key committed after the snapshot was requested

The cache never touches the network and never raises for data reasons.
"""

from collections.abc import Collection as SizedContainer
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from cardkeeper.models.collection import CardKey, Collection, CollectionCard, is_older


@dataclass
class LoadStats:
    """What a `load` call changed."""

    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    skipped: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


def _newest_per_key(cards: Iterable[CollectionCard]) -> dict[CardKey, CollectionCard]:
    """
    Collapse duplicate keys within one snapshot.

    Last write wins on `updated_at`/`added_at` when both rows carry one,
    otherwise the row received later wins.
    """
    newest: dict[CardKey, CollectionCard] = {}
    for card in cards:
        current = newest.get(card.key)
        if current is not None and is_older(card.version, current.version):
            continue
        newest[card.key] = card
    return newest


class EntityCache:
    """In-memory normalized mirror of collections and their cards."""

    def __init__(self) -> None:
        self._collections: dict[int, Collection] = {}
        self._cards: dict[CardKey, CollectionCard] = {}

        # Commit bookkeeping for stale-snapshot rejection
        self._commit_seq = 0
        self._card_commits: dict[CardKey, int] = {}
        self._collection_commits: dict[int, int] = {}

        # Bumped on every visible change
        self.revision = 0

    # =========================================================================
    # READS
    # =========================================================================

    @property
    def commit_seq(self) -> int:
        """Sequence number of the most recent commit."""
        return self._commit_seq

    def get_collection(self, collection_id: int) -> Collection | None:
        return self._collections.get(collection_id)

    def collections(self) -> list[Collection]:
        return sorted(self._collections.values(), key=lambda c: c.id)

    def get_card(self, collection_id: int, card_id: str) -> CollectionCard | None:
        return self._cards.get(CardKey(collection_id, card_id))

    def cards(self, collection_id: int | None = None) -> list[CollectionCard]:
        """All cached rows, or only those of one collection."""
        if collection_id is None:
            return list(self._cards.values())
        return [card for card in self._cards.values() if card.collection_id == collection_id]

    def card_ids(self, collection_id: int) -> list[str]:
        return [card.card_id for card in self.cards(collection_id)]

    def total_quantity(self, card_id: str) -> int:
        """Copies of one card across every collection."""
        return sum(card.quantity for card in self._cards.values() if card.card_id == card_id)

    def committed_since(self, key: CardKey, as_of: int) -> bool:
        """True if `key` was committed after sequence number `as_of`."""
        return self._card_commits.get(key, 0) > as_of

    # =========================================================================
    # WRITES
    # =========================================================================

    def mark_committed(self, key: CardKey) -> int:
        """Record a settled mutation for `key`; returns its sequence number."""
        self._commit_seq += 1
        self._card_commits[key] = self._commit_seq
        return self._commit_seq

    def mark_collection_committed(self, collection_id: int) -> int:
        self._commit_seq += 1
        self._collection_commits[collection_id] = self._commit_seq
        return self._commit_seq

    def load(
        self,
        collections: Iterable[Collection],
        collection_cards: Iterable[CollectionCard],
        *,
        as_of: int | None = None,
        protected: SizedContainer[CardKey] = (),
    ) -> LoadStats:
        """
        Merge a full snapshot from the backend.

        Args:
            collections: Every collection of the session
            collection_cards: Every card row of those collections
            as_of: `commit_seq` captured when the snapshot was requested.
                Keys committed later keep their cached value.
            protected: Keys with a mutation in flight. Left untouched.

        Returns:
            LoadStats describing the merge
        """
        stats = LoadStats()

        incoming_collections = {c.id: c for c in collections}
        for collection in incoming_collections.values():
            self._merge_collection(collection, as_of, stats)
        for collection_id in list(self._collections):
            if collection_id in incoming_collections:
                continue
            if self._collection_is_fresh(collection_id, as_of):
                stats.skipped += 1
                continue
            self._drop_collection(collection_id)
            stats.removed += 1

        incoming_cards = _newest_per_key(collection_cards)
        for key, card in incoming_cards.items():
            if (
                key in protected
                or self._card_is_fresh(key, as_of)
                or self._collection_deleted_since(key.collection_id, as_of)
            ):
                stats.skipped += 1
                continue
            self._merge_card(card, stats)
        for key in list(self._cards):
            if key in incoming_cards:
                continue
            if key in protected or self._card_is_fresh(key, as_of):
                stats.skipped += 1
                continue
            del self._cards[key]
            stats.removed += 1

        if stats.changed:
            self.revision += 1
        return stats

    def upsert_collection(self, collection: Collection) -> Collection:
        current = self._collections.get(collection.id)
        if current == collection:
            return current
        self._collections[collection.id] = collection
        self.revision += 1
        return collection

    def upsert_card(
        self, collection_id: int, card_id: str, patch: Mapping[str, Any]
    ) -> CollectionCard | None:
        """
        Apply a partial update to one row, creating it if absent.

        A resulting quantity of 0 or less deletes the row; returns None then.
        """
        current = self.get_card(collection_id, card_id)
        if current is None:
            if patch.get("quantity", 1) <= 0:
                return None
            card = CollectionCard(collection_id=collection_id, card_id=card_id, **patch)
        else:
            card = current.model_copy(update=dict(patch))
        if card.quantity <= 0:
            self.remove_card(collection_id, card_id)
            return None
        if card == current:
            return current
        self._cards[card.key] = card
        self.revision += 1
        return card

    def put_card(self, card: CollectionCard) -> CollectionCard | None:
        """
        Merge an authoritative row returned by a mutation call.

        A row older than the cached one is discarded and the cached row is
        returned instead.
        """
        current = self._cards.get(card.key)
        if current is not None and is_older(card.version, current.version):
            return current
        if card.quantity <= 0:
            self.remove_card(card.collection_id, card.card_id)
            return None
        if card == current:
            return current
        self._cards[card.key] = card
        self.revision += 1
        return card

    def restore_card(self, key: CardKey, snapshot: CollectionCard | None) -> None:
        """Put back a pre-mutation row exactly, bypassing version checks."""
        if snapshot is None:
            self.remove_card(*key)
            return
        if self._cards.get(key) is not snapshot:
            self._cards[key] = snapshot
            self.revision += 1

    def remove_card(self, collection_id: int, card_id: str) -> bool:
        """Delete one row. Returns False (and changes nothing) if it was absent."""
        removed = self._cards.pop(CardKey(collection_id, card_id), None)
        if removed is None:
            return False
        self.revision += 1
        return True

    def remove_collection(self, collection_id: int) -> int:
        """
        Delete a collection and every card row it holds.

        Returns the number of card rows removed.
        """
        had_collection = collection_id in self._collections
        removed = self._drop_collection(collection_id)
        if had_collection or removed:
            self.revision += 1
        return removed

    def clear(self) -> None:
        self._collections.clear()
        self._cards.clear()
        self._card_commits.clear()
        self._collection_commits.clear()
        self.revision += 1

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _card_is_fresh(self, key: CardKey, as_of: int | None) -> bool:
        return as_of is not None and self.committed_since(key, as_of)

    def _collection_is_fresh(self, collection_id: int, as_of: int | None) -> bool:
        return as_of is not None and self._collection_commits.get(collection_id, 0) > as_of

    def _collection_deleted_since(self, collection_id: int, as_of: int | None) -> bool:
        return collection_id not in self._collections and self._collection_is_fresh(
            collection_id, as_of
        )

    def _merge_collection(self, collection: Collection, as_of: int | None, stats: LoadStats) -> None:
        current = self._collections.get(collection.id)
        if current == collection:
            stats.unchanged += 1
        elif self._collection_is_fresh(collection.id, as_of):
            stats.skipped += 1
        elif current is None:
            self._collections[collection.id] = collection
            stats.added += 1
        elif is_older(collection.updated_at, current.updated_at):
            stats.skipped += 1
        else:
            self._collections[collection.id] = collection
            stats.updated += 1

    def _merge_card(self, card: CollectionCard, stats: LoadStats) -> None:
        current = self._cards.get(card.key)
        if card.quantity <= 0:
            if current is not None:
                del self._cards[card.key]
                stats.removed += 1
            return
        if current is None:
            self._cards[card.key] = card
            stats.added += 1
        elif current == card:
            stats.unchanged += 1
        elif is_older(card.version, current.version):
            stats.skipped += 1
        else:
            self._cards[card.key] = card
            stats.updated += 1

    def _drop_collection(self, collection_id: int) -> int:
        # Commit marks survive as tombstones against older snapshots
        self._collections.pop(collection_id, None)
        doomed = [key for key in self._cards if key.collection_id == collection_id]
        for key in doomed:
            del self._cards[key]
        return len(doomed)

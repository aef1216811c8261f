from collections.abc import Callable

import pytest

from cardkeeper.models.collection import CollectionCard
from cardkeeper.sync.cache import EntityCache
from cardkeeper.sync.coordinator import MutationCoordinator
from cardkeeper.sync.notifications import NotificationFeed
from cardkeeper.sync.overlay import OptimisticOverlay
from tests.fakes import FakeRemoteStore


@pytest.fixture
def remote() -> FakeRemoteStore:
    """Backend holding one empty collection with id 1."""
    fake = FakeRemoteStore()
    fake.seed_collection(1, "Main Binder")
    return fake


@pytest.fixture
def cache(remote: FakeRemoteStore) -> EntityCache:
    """Cache primed with the backend's state at fixture time."""
    cache = EntityCache()
    cache.load(list(remote.collections.values()), list(remote.cards.values()))
    return cache


@pytest.fixture
def seed_card(
    remote: FakeRemoteStore, cache: EntityCache
) -> Callable[[int, str, int], CollectionCard]:
    """Put a card row on the backend and in the cache."""

    def seed(collection_id: int, card_id: str, quantity: int) -> CollectionCard:
        if collection_id not in remote.collections:
            cache.upsert_collection(remote.seed_collection(collection_id, f"Binder {collection_id}"))
        card = remote.seed_card(collection_id, card_id, quantity)
        cache.put_card(card)
        return card

    return seed


@pytest.fixture
def overlay(cache: EntityCache) -> OptimisticOverlay:
    return OptimisticOverlay(cache)


@pytest.fixture
def feed() -> NotificationFeed:
    return NotificationFeed()


@pytest.fixture
async def coordinator(
    remote: FakeRemoteStore,
    cache: EntityCache,
    overlay: OptimisticOverlay,
    feed: NotificationFeed,
):
    """Coordinator without cooldown."""
    coordinator = MutationCoordinator(remote, cache, overlay, feed, cooldown_seconds=0)
    yield coordinator
    remote.gate.set()
    await coordinator.close()

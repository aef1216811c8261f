"""Tests for collection and notification API endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient

from cardkeeper.api.dependencies import get_feed, get_store
from cardkeeper.main import app
from cardkeeper.sync.notifications import NotificationFeed
from cardkeeper.sync.store import CollectionStore
from tests.fakes import FakeRemoteStore


@pytest.fixture
async def store(remote: FakeRemoteStore, feed: NotificationFeed):
    remote.seed_collection(2, "Trade Binder")
    remote.seed_card(2, "card-1", 1)
    remote.seed_card(2, "card-2", 4)
    store = CollectionStore(remote, feed, cooldown_seconds=0, poll_interval_seconds=0)
    await store.start()
    yield store
    await store.close()


@pytest.fixture
async def client(store: CollectionStore, feed: NotificationFeed):
    """Provide an async test client bound to the test store."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_feed] = lambda: feed

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


class TestListCollections:
    async def test_lists_collections(self, client: AsyncClient) -> None:
        response = await client.get("/collections")

        assert response.status_code == 200
        data = response.json()
        assert [c["name"] for c in data["collections"]] == ["Main Binder", "Trade Binder"]
        assert data["active_collection_id"] is None

    async def test_collection_cards(self, client: AsyncClient) -> None:
        response = await client.get("/collections/2/cards")

        data = response.json()
        assert data["total_cards"] == 5
        assert data["unique_cards"] == 2

    async def test_unknown_collection_cards(self, client: AsyncClient) -> None:
        response = await client.get("/collections/999/cards")

        assert response.status_code == 404
        assert response.json()["failure"]["kind"] == "not_found"


class TestActiveCollection:
    async def test_select_and_read_active(self, client: AsyncClient) -> None:
        response = await client.put("/collections/active", json={"collection_id": 2})

        assert response.status_code == 200
        assert response.json()["collection"]["name"] == "Trade Binder"

        response = await client.get("/collections/active")
        assert response.json()["collection"]["id"] == 2

    async def test_select_unknown(self, client: AsyncClient) -> None:
        response = await client.put("/collections/active", json={"collection_id": 999})

        assert response.status_code == 404


class TestCollectionCrud:
    async def test_create_collection(self, client: AsyncClient, store: CollectionStore) -> None:
        response = await client.post("/collections", json={"name": "Commander"})

        assert response.status_code == 201
        created = response.json()
        assert created["name"] == "Commander"
        assert store.active_collection_id == created["id"]

    async def test_create_rejects_blank_name(self, client: AsyncClient) -> None:
        response = await client.post("/collections", json={"name": "  "})

        assert response.status_code == 422

    async def test_update_collection(self, client: AsyncClient) -> None:
        response = await client.put("/collections/2", json={"name": "Trades"})

        assert response.status_code == 200
        assert response.json()["name"] == "Trades"

    async def test_delete_collection(self, client: AsyncClient, store: CollectionStore) -> None:
        response = await client.delete("/collections/2")

        assert response.status_code == 200
        assert response.json() == {"deleted": True, "collection_id": 2, "cards_removed": 2}
        assert store.cache.get_collection(2) is None

    async def test_refresh(self, client: AsyncClient, remote: FakeRemoteStore) -> None:
        remote.seed_card(1, "card-3", 1)

        response = await client.post("/collections/refresh")

        assert response.json()["refreshed"] is True
        assert response.json()["added"] == 1


class TestNotifications:
    async def test_feed_lists_and_dismisses(self, client: AsyncClient) -> None:
        await client.post("/collections", json={"name": "Commander"})

        response = await client.get("/notifications")
        items = response.json()
        assert [n["title"] for n in items] == ["Collection created"]

        response = await client.delete(f"/notifications/{items[0]['id']}")
        assert response.status_code == 204
        assert (await client.get("/notifications")).json() == []

    async def test_dismiss_unknown(self, client: AsyncClient) -> None:
        response = await client.delete("/notifications/nope")

        assert response.status_code == 404

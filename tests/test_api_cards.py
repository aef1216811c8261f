"""Tests for card API endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient

from cardkeeper.api.dependencies import get_feed, get_store
from cardkeeper.main import app
from cardkeeper.models.failure import RemoteCallFailedError
from cardkeeper.sync.notifications import NotificationFeed
from cardkeeper.sync.store import CollectionStore
from tests.fakes import FakeRemoteStore


@pytest.fixture
async def store(remote: FakeRemoteStore, feed: NotificationFeed):
    remote.seed_card(1, "card-1", 2)
    store = CollectionStore(remote, feed, cooldown_seconds=0, poll_interval_seconds=0)
    await store.start()
    yield store
    remote.gate.set()
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


class TestCardState:
    async def test_state_for_explicit_collection(self, client: AsyncClient) -> None:
        response = await client.get("/cards/card-1/state", params={"collection_id": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["is_in_collection"] is True
        assert data["quantity"] == 2
        assert data["is_loading"] is False

    async def test_state_without_collection_is_absent(self, client: AsyncClient) -> None:
        response = await client.get("/cards/card-1/state")

        data = response.json()
        assert data["collection_id"] is None
        assert data["is_in_collection"] is False


class TestCardIntents:
    async def test_add_is_accepted_optimistically(
        self, client: AsyncClient, remote: FakeRemoteStore
    ) -> None:
        """Without wait the response reflects the speculative state."""
        remote.gate.clear()

        response = await client.post("/cards/card-1/add", params={"collection_id": 1})

        assert response.status_code == 202
        data = response.json()
        assert data["outcome"] == "accepted"
        assert data["state"]["quantity"] == 3
        assert data["state"]["is_loading"] is True

    async def test_add_and_wait(self, client: AsyncClient, remote: FakeRemoteStore) -> None:
        response = await client.post(
            "/cards/card-1/add", params={"collection_id": 1, "wait": True}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "committed"
        assert data["state"] == {
            "card_id": "card-1",
            "collection_id": 1,
            "is_in_collection": True,
            "quantity": 3,
            "is_loading": False,
            "has_error": False,
        }

    async def test_add_uses_active_collection(
        self, client: AsyncClient, store: CollectionStore
    ) -> None:
        store.set_active_collection(1)

        response = await client.post("/cards/card-7/add", params={"wait": True})

        assert response.json()["state"]["collection_id"] == 1
        assert store.get_card_quantity("card-7") == 1

    async def test_rolled_back_add_reports_failure(
        self, client: AsyncClient, remote: FakeRemoteStore
    ) -> None:
        remote.failures.append(RemoteCallFailedError(message="Server returned 503"))

        response = await client.post(
            "/cards/card-1/add", params={"collection_id": 1, "wait": True}
        )

        data = response.json()
        assert data["outcome"] == "rolled_back"
        assert data["failure"]["retryable"] is True
        assert data["state"]["quantity"] == 2

    async def test_remove_and_wait(self, client: AsyncClient, remote: FakeRemoteStore) -> None:
        response = await client.post(
            "/cards/card-1/remove", params={"collection_id": 1, "wait": True}
        )

        assert response.json()["state"]["quantity"] == 1
        assert ("update_collection_card_quantity", 1, "card-1", 1) in remote.calls

    async def test_set_quantity(self, client: AsyncClient) -> None:
        response = await client.put(
            "/cards/card-1/quantity",
            params={"collection_id": 1, "wait": True},
            json={"quantity": 0},
        )

        data = response.json()
        assert data["outcome"] == "committed"
        assert data["state"]["is_in_collection"] is False


class TestRefusals:
    async def test_add_without_collection(self, client: AsyncClient) -> None:
        """No active collection is a 409 refusal."""
        response = await client.post("/cards/card-1/add")

        assert response.status_code == 409
        data = response.json()
        assert data["outcome"] == "refusal"
        assert data["failure"]["kind"] == "no_active_collection"

    async def test_remove_absent_card(self, client: AsyncClient) -> None:
        response = await client.post("/cards/card-9/remove", params={"collection_id": 1})

        assert response.status_code == 409
        assert response.json()["failure"]["kind"] == "quantity_underflow"

    async def test_negative_quantity(self, client: AsyncClient) -> None:
        response = await client.put(
            "/cards/card-1/quantity", params={"collection_id": 1}, json={"quantity": -2}
        )

        assert response.status_code == 422
        assert response.json()["failure"]["kind"] == "invalid_input"


class TestTotals:
    async def test_totals(self, client: AsyncClient, remote: FakeRemoteStore) -> None:
        response = await client.get("/cards/totals")

        assert response.json() == [{"card_id": "card-1", "quantity": 2, "collection_ids": [1]}]


class TestUnexpectedErrors:
    async def test_unexpected_error_is_unknown_failure(
        self, store: CollectionStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Unclassified exceptions render the fixed unknown-failure envelope."""

        def explode() -> None:
            raise RuntimeError("boom")

        monkeypatch.setattr(store, "get_all_collection_cards", explode)
        app.dependency_overrides[get_store] = lambda: store
        transport = ASGITransport(app=app, raise_app_exceptions=False)

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/cards/totals")
        app.dependency_overrides.clear()

        assert response.status_code == 500
        data = response.json()
        assert data["outcome"] == "unknown_failure"
        assert data["failure"]["kind"] == "unknown"
        assert data["failure"]["detail"] == "RuntimeError"

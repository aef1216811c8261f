"""Tests for the HTTP remote store client."""

import json

import httpx
import pytest
import respx

from cardkeeper.config import Settings
from cardkeeper.models.collection import CollectionAttrs
from cardkeeper.models.failure import RemoteCallFailedError, RemoteConflictError
from cardkeeper.remote.client import HttpRemoteStore

BASE_URL = "http://backend.test"


@pytest.fixture
def card_payload() -> dict:
    return {
        "id": 11,
        "collectionId": 5,
        "cardId": "card-1",
        "quantity": 2,
        "addedAt": "2024-03-01T12:00:00Z",
        "updatedAt": None,
        "cardDataSnapshot": None,
    }


class TestReads:
    @respx.mock
    async def test_list_collections(self) -> None:
        """Collections are parsed from camelCase JSON."""
        respx.get(f"{BASE_URL}/api/collections").mock(
            return_value=httpx.Response(
                200,
                json=[{"id": 5, "name": "Main Binder", "userId": 1, "language": "english"}],
            )
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            collections = await remote.list_collections()

        assert [c.name for c in collections] == ["Main Binder"]
        assert collections[0].user_id == 1

    @respx.mock
    async def test_list_collection_cards(self, card_payload: dict) -> None:
        respx.get(f"{BASE_URL}/api/collection-cards").mock(
            return_value=httpx.Response(200, json=[card_payload])
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            cards = await remote.list_collection_cards()

        assert cards[0].collection_id == 5
        assert cards[0].quantity == 2

    @respx.mock
    async def test_malformed_payload_is_not_retryable(self) -> None:
        respx.get(f"{BASE_URL}/api/collections").mock(
            return_value=httpx.Response(200, json=[{"name": "missing id"}])
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            with pytest.raises(RemoteCallFailedError) as exc_info:
                await remote.list_collections()

        assert exc_info.value.retryable is False

    @respx.mock
    async def test_session_cookie_is_forwarded(self) -> None:
        route = respx.get(f"{BASE_URL}/api/collections").mock(
            return_value=httpx.Response(200, json=[])
        )

        async with HttpRemoteStore(BASE_URL, session_cookie="s%3Aabc") as remote:
            await remote.list_collections()

        assert "connect.sid=s%3Aabc" in route.calls.last.request.headers["cookie"]


class TestCardMutations:
    @respx.mock
    async def test_create_sends_camel_case_body(self, card_payload: dict) -> None:
        route = respx.post(f"{BASE_URL}/api/collection-cards").mock(
            return_value=httpx.Response(201, json=card_payload)
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            card = await remote.create_collection_card(5, "card-1", 2)

        assert json.loads(route.calls.last.request.content) == {
            "collectionId": 5,
            "cardId": "card-1",
            "quantity": 2,
        }
        assert card.quantity == 2

    @respx.mock
    async def test_update_quantity(self, card_payload: dict) -> None:
        route = respx.put(f"{BASE_URL}/api/collection-cards/card-1").mock(
            return_value=httpx.Response(200, json={**card_payload, "quantity": 4})
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            card = await remote.update_collection_card_quantity(5, "card-1", 4)

        assert json.loads(route.calls.last.request.content) == {"collectionId": 5, "quantity": 4}
        assert card.quantity == 4

    @respx.mock
    async def test_update_missing_row_is_conflict(self) -> None:
        respx.put(f"{BASE_URL}/api/collection-cards/card-1").mock(
            return_value=httpx.Response(404, json={"message": "Card not found in collection"})
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            with pytest.raises(RemoteConflictError, match="Card not found"):
                await remote.update_collection_card_quantity(5, "card-1", 4)

    @respx.mock
    async def test_deleting_absent_row_succeeds(self) -> None:
        """Delete is idempotent when only the row is gone."""
        respx.delete(f"{BASE_URL}/api/collection-cards/5/card-1").mock(
            return_value=httpx.Response(404, json={"message": "Card not found in collection"})
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            assert await remote.delete_collection_card(5, "card-1") is None

    @respx.mock
    async def test_deleting_from_missing_collection_is_conflict(self) -> None:
        respx.delete(f"{BASE_URL}/api/collection-cards/5/card-1").mock(
            return_value=httpx.Response(404, json={"message": "Collection not found"})
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            with pytest.raises(RemoteConflictError):
                await remote.delete_collection_card(5, "card-1")


class TestFailureMapping:
    @respx.mock
    async def test_server_error_is_retryable(self) -> None:
        respx.post(f"{BASE_URL}/api/collection-cards").mock(
            return_value=httpx.Response(500, json={"message": "Failed to add card to collection"})
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            with pytest.raises(RemoteCallFailedError) as exc_info:
                await remote.create_collection_card(5, "card-1")

        assert exc_info.value.retryable is True
        assert exc_info.value.message == "Failed to add card to collection"
        assert not isinstance(exc_info.value, RemoteConflictError)

    @respx.mock
    async def test_client_error_is_not_retryable(self) -> None:
        respx.post(f"{BASE_URL}/api/collections").mock(
            return_value=httpx.Response(400, json={"message": "Invalid collection data"})
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            with pytest.raises(RemoteCallFailedError) as exc_info:
                await remote.create_collection(CollectionAttrs(name="Binder"))

        assert exc_info.value.retryable is False

    @respx.mock
    async def test_timeout_is_retryable(self) -> None:
        respx.get(f"{BASE_URL}/api/collections").mock(side_effect=httpx.ReadTimeout("slow"))

        async with HttpRemoteStore(BASE_URL) as remote:
            with pytest.raises(RemoteCallFailedError) as exc_info:
                await remote.list_collections()

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.cause, httpx.TimeoutException)

    @respx.mock
    async def test_connection_error_is_retryable(self) -> None:
        respx.get(f"{BASE_URL}/api/collection-cards").mock(
            side_effect=httpx.ConnectError("refused")
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            with pytest.raises(RemoteCallFailedError, match="Could not reach"):
                await remote.list_collection_cards()


class TestCollectionMutations:
    @respx.mock
    async def test_create_collection(self) -> None:
        route = respx.post(f"{BASE_URL}/api/collections").mock(
            return_value=httpx.Response(201, json={"id": 9, "name": "Commander"})
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            collection = await remote.create_collection(CollectionAttrs(name="Commander"))

        assert json.loads(route.calls.last.request.content) == {"name": "Commander"}
        assert collection.id == 9

    @respx.mock
    async def test_delete_missing_collection_succeeds(self) -> None:
        respx.delete(f"{BASE_URL}/api/collections/9").mock(
            return_value=httpx.Response(404, json={"message": "Collection not found"})
        )

        async with HttpRemoteStore(BASE_URL) as remote:
            assert await remote.delete_collection(9) is None

    async def test_from_settings(self) -> None:
        settings = Settings(api_base_url=BASE_URL, request_timeout_seconds=2.5)

        async with HttpRemoteStore.from_settings(settings) as remote:
            assert remote._client.base_url.host == "backend.test"
            assert remote._client.timeout.read == 2.5

"""
Remote store client for the authoritative collection backend.

The sync engine only depends on the `RemoteStoreClient` protocol.
`HttpRemoteStore` implements it against the backend's REST routes with
httpx. Every failure leaves this module as a `RemoteCallFailedError`; a
backend answer meaning "that entity is gone" becomes `RemoteConflictError`.

Timeouts are enforced here, not by the coordinator.
"""

import logging
from typing import Any, Protocol

import httpx
from pydantic import TypeAdapter, ValidationError

from cardkeeper.config import SESSION_COOKIE_NAME, Settings
from cardkeeper.models.collection import Collection, CollectionAttrs, CollectionCard
from cardkeeper.models.failure import RemoteCallFailedError, RemoteConflictError

logger = logging.getLogger(__name__)

_COLLECTION_LIST = TypeAdapter(list[Collection])
_CARD_LIST = TypeAdapter(list[CollectionCard])

# Status codes meaning the addressed entity no longer exists
_GONE_STATUSES = frozenset({404, 410})


class RemoteStoreClient(Protocol):
    """Calls the collection engine makes against the authoritative store."""

    async def list_collections(self) -> list[Collection]: ...

    async def list_collection_cards(self) -> list[CollectionCard]: ...

    async def create_collection_card(
        self, collection_id: int, card_id: str, quantity: int = 1
    ) -> CollectionCard:
        """Create the row, or increment an existing row by `quantity`."""
        ...

    async def update_collection_card_quantity(
        self, collection_id: int, card_id: str, quantity: int
    ) -> CollectionCard: ...

    async def delete_collection_card(self, collection_id: int, card_id: str) -> None:
        """Delete the row. Deleting an absent row is not an error."""
        ...

    async def create_collection(self, attrs: CollectionAttrs) -> Collection: ...

    async def update_collection(self, collection_id: int, attrs: CollectionAttrs) -> Collection: ...

    async def delete_collection(self, collection_id: int) -> None: ...


def _error_message(response: httpx.Response) -> str:
    """Extract the backend's `{"message": ...}` text, if any."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return response.text


class HttpRemoteStore:
    """
    `RemoteStoreClient` over the backend's REST API.

    Args:
        base_url: Backend origin, e.g. "https://cards.example.com"
        timeout: Per-request timeout in seconds
        session_cookie: Value of the backend's login session cookie
        client: Optional preconfigured httpx client (tests, connection reuse)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session_cookie: str = "",
        client: httpx.AsyncClient | None = None,
    ):
        cookies = {SESSION_COOKIE_NAME: session_cookie} if session_cookie else None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            cookies=cookies,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpRemoteStore":
        return cls(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
            session_cookie=settings.session_cookie,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpRemoteStore":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        *,
        missing_ok: bool = False,
        conflict_marker: str | None = None,
    ) -> httpx.Response | None:
        """
        Send one request and classify its failure.

        Returns None when the target is gone and `missing_ok` is set, unless the
        error message contains `conflict_marker`.

        Raises:
            RemoteConflictError: The target entity no longer exists
            RemoteCallFailedError: Any other failure
        """
        try:
            response = await self._client.request(method, path, json=json)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise RemoteCallFailedError(
                message="The collection server did not respond in time", cause=e
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = _error_message(e.response)
            if status in _GONE_STATUSES:
                gone_parent = conflict_marker is not None and conflict_marker in message.lower()
                if missing_ok and not gone_parent:
                    logger.debug("Already gone: %s %s", method, path)
                    return None
                raise RemoteConflictError(message=message or "Not found", cause=e) from e
            raise RemoteCallFailedError(
                message=message or f"Server returned {status}",
                cause=e,
                retryable=status >= 500 or status == 429,
            ) from e
        except httpx.HTTPError as e:
            raise RemoteCallFailedError(
                message="Could not reach the collection server", cause=e
            ) from e
        return response

    def _parse(self, adapter_or_model: Any, response: httpx.Response | None) -> Any:
        if response is None:
            raise RemoteCallFailedError(message="Empty response from the collection server")
        try:
            payload = response.json()
            if isinstance(adapter_or_model, TypeAdapter):
                return adapter_or_model.validate_python(payload)
            return adapter_or_model.model_validate(payload)
        except (ValueError, ValidationError) as e:
            raise RemoteCallFailedError(
                message="Unexpected response from the collection server",
                cause=e,
                retryable=False,
            ) from e

    # --- Collections ---

    async def list_collections(self) -> list[Collection]:
        response = await self._request("GET", "/api/collections")
        result: list[Collection] = self._parse(_COLLECTION_LIST, response)
        return result

    async def create_collection(self, attrs: CollectionAttrs) -> Collection:
        response = await self._request(
            "POST", "/api/collections", json=attrs.model_dump(by_alias=True, exclude_none=True)
        )
        result: Collection = self._parse(Collection, response)
        return result

    async def update_collection(self, collection_id: int, attrs: CollectionAttrs) -> Collection:
        response = await self._request(
            "PUT",
            f"/api/collections/{collection_id}",
            json=attrs.model_dump(by_alias=True, exclude_none=True),
        )
        result: Collection = self._parse(Collection, response)
        return result

    async def delete_collection(self, collection_id: int) -> None:
        await self._request("DELETE", f"/api/collections/{collection_id}", missing_ok=True)

    # --- Collection cards ---

    async def list_collection_cards(self) -> list[CollectionCard]:
        response = await self._request("GET", "/api/collection-cards")
        result: list[CollectionCard] = self._parse(_CARD_LIST, response)
        return result

    async def create_collection_card(
        self, collection_id: int, card_id: str, quantity: int = 1
    ) -> CollectionCard:
        response = await self._request(
            "POST",
            "/api/collection-cards",
            json={"collectionId": collection_id, "cardId": card_id, "quantity": quantity},
        )
        result: CollectionCard = self._parse(CollectionCard, response)
        return result

    async def update_collection_card_quantity(
        self, collection_id: int, card_id: str, quantity: int
    ) -> CollectionCard:
        response = await self._request(
            "PUT",
            f"/api/collection-cards/{card_id}",
            json={"collectionId": collection_id, "quantity": quantity},
        )
        result: CollectionCard = self._parse(CollectionCard, response)
        return result

    async def delete_collection_card(self, collection_id: int, card_id: str) -> None:
        await self._request(
            "DELETE",
            f"/api/collection-cards/{collection_id}/{card_id}",
            missing_ok=True,
            conflict_marker="collection not found",
        )

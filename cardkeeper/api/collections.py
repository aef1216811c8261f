"""
Collection API endpoints.

Collection CRUD is not optimistic: each call waits for the backend.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from cardkeeper.api.dependencies import get_store
from cardkeeper.models.collection import Collection, CollectionAttrs, CollectionCard
from cardkeeper.models.failure import CollectionNotFoundError
from cardkeeper.sync.store import CollectionStore

router = APIRouter(prefix="/collections", tags=["collections"])


class CollectionListResponse(BaseModel):
    """Response model for the session's collections."""

    collections: list[Collection] = Field(default_factory=list)
    active_collection_id: int | None = None


class ActiveCollectionRequest(BaseModel):
    collection_id: int | None = Field(
        ...,
        description="Collection to make active; null clears the selection",
    )


class ActiveCollectionResponse(BaseModel):
    collection: Collection | None = None


class CollectionCardsResponse(BaseModel):
    """Settled card rows of one collection."""

    collection_id: int
    cards: list[CollectionCard] = Field(default_factory=list)
    total_cards: int = 0
    unique_cards: int = 0


class RefreshResponse(BaseModel):
    refreshed: bool = Field(..., description="False if the backend could not be reached")
    added: int = 0
    updated: int = 0
    removed: int = 0


class DeleteResponse(BaseModel):
    """Response model for delete operations."""

    deleted: bool
    collection_id: int
    cards_removed: int = 0


@router.get("", response_model=CollectionListResponse)
async def list_collections(
    store: Annotated[CollectionStore, Depends(get_store)],
) -> CollectionListResponse:
    return CollectionListResponse(
        collections=store.get_collections(),
        active_collection_id=store.active_collection_id,
    )


@router.post("", response_model=Collection, status_code=status.HTTP_201_CREATED)
async def create_collection(
    attrs: CollectionAttrs,
    store: Annotated[CollectionStore, Depends(get_store)],
) -> Collection:
    """Create a collection and make it the active one."""
    return await store.create_collection(attrs)


@router.get("/active", response_model=ActiveCollectionResponse)
async def get_active_collection(
    store: Annotated[CollectionStore, Depends(get_store)],
) -> ActiveCollectionResponse:
    return ActiveCollectionResponse(collection=store.get_active_collection())


@router.put("/active", response_model=ActiveCollectionResponse)
async def set_active_collection(
    request: ActiveCollectionRequest,
    store: Annotated[CollectionStore, Depends(get_store)],
) -> ActiveCollectionResponse:
    return ActiveCollectionResponse(collection=store.set_active_collection(request.collection_id))


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_collections(
    store: Annotated[CollectionStore, Depends(get_store)],
) -> RefreshResponse:
    """Refetch everything from the backend, e.g. when the client regains focus."""
    stats = await store.refresh()
    if stats is None:
        return RefreshResponse(refreshed=False)
    return RefreshResponse(
        refreshed=True,
        added=stats.added,
        updated=stats.updated,
        removed=stats.removed,
    )


@router.put("/{collection_id}", response_model=Collection)
async def update_collection(
    collection_id: int,
    attrs: CollectionAttrs,
    store: Annotated[CollectionStore, Depends(get_store)],
) -> Collection:
    return await store.update_collection(collection_id, attrs)


@router.delete("/{collection_id}", response_model=DeleteResponse)
async def delete_collection(
    collection_id: int,
    store: Annotated[CollectionStore, Depends(get_store)],
) -> DeleteResponse:
    """Delete a collection and every card in it."""
    removed = await store.delete_collection(collection_id)
    return DeleteResponse(deleted=True, collection_id=collection_id, cards_removed=removed)


@router.get("/{collection_id}/cards", response_model=CollectionCardsResponse)
async def get_collection_cards(
    collection_id: int,
    store: Annotated[CollectionStore, Depends(get_store)],
) -> CollectionCardsResponse:
    if store.cache.get_collection(collection_id) is None:
        raise CollectionNotFoundError(collection_id)
    cards = sorted(store.cache.cards(collection_id), key=lambda c: c.card_id)
    return CollectionCardsResponse(
        collection_id=collection_id,
        cards=cards,
        total_cards=sum(card.quantity for card in cards),
        unique_cards=len(cards),
    )

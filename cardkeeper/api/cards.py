"""
Card API endpoints.

Card intents answer immediately with the optimistic state (202). Pass
`wait=true` to get the settled outcome instead.
"""

import asyncio
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from cardkeeper.api.dependencies import get_store
from cardkeeper.models.failure import FailureDetail
from cardkeeper.sync.coordinator import MutationResult
from cardkeeper.sync.store import CollectionStore

router = APIRouter(prefix="/cards", tags=["cards"])

MutationOutcomeName = Literal["accepted", "committed", "rolled_back", "suppressed"]


class CardStateResponse(BaseModel):
    """Effective state of one card in one collection."""

    card_id: str
    collection_id: int | None = None
    is_in_collection: bool
    quantity: int
    is_loading: bool = False
    has_error: bool = False


class MutationResponse(BaseModel):
    """Response model for card intents."""

    outcome: MutationOutcomeName = Field(
        ...,
        description="accepted: still in flight; otherwise how the intent settled",
    )
    state: CardStateResponse
    failure: FailureDetail | None = Field(
        default=None,
        description="Why the change was rolled back",
    )


class SetQuantityRequest(BaseModel):
    """Request model for setting an absolute quantity."""

    quantity: int = Field(..., description="New quantity; 0 removes the card", examples=[4])


class CardTotalResponse(BaseModel):
    card_id: str
    quantity: int
    collection_ids: list[int] = Field(default_factory=list)


def _state(store: CollectionStore, card_id: str, collection_id: int | None) -> CardStateResponse:
    resolved = collection_id if collection_id is not None else store.active_collection_id
    state = store.get_effective_card_state(card_id, resolved)
    return CardStateResponse(
        card_id=card_id,
        collection_id=resolved,
        is_in_collection=state.is_in_collection,
        quantity=state.quantity,
        is_loading=state.is_loading,
        has_error=state.has_error,
    )


async def _respond(
    store: CollectionStore,
    response: Response,
    card_id: str,
    collection_id: int | None,
    future: "asyncio.Future[MutationResult]",
    wait: bool,
) -> MutationResponse:
    if not wait and not future.done():
        response.status_code = status.HTTP_202_ACCEPTED
        return MutationResponse(outcome="accepted", state=_state(store, card_id, collection_id))

    result = await future
    failure = result.error.to_response().failure if result.error is not None else None
    return MutationResponse(
        outcome=result.outcome.value,
        state=_state(store, card_id, collection_id),
        failure=failure,
    )


@router.get("/totals", response_model=list[CardTotalResponse])
async def get_card_totals(
    store: Annotated[CollectionStore, Depends(get_store)],
) -> list[CardTotalResponse]:
    """Settled copies of every card across all collections."""
    totals = store.get_all_collection_cards()
    return [
        CardTotalResponse(
            card_id=total.card_id,
            quantity=total.quantity,
            collection_ids=total.collection_ids,
        )
        for total in sorted(totals.values(), key=lambda t: t.card_id)
    ]


@router.get("/{card_id}/state", response_model=CardStateResponse)
async def get_card_state(
    card_id: str,
    store: Annotated[CollectionStore, Depends(get_store)],
    collection_id: Annotated[int | None, Query()] = None,
) -> CardStateResponse:
    """What the UI should show for a card in the given or active collection."""
    return _state(store, card_id, collection_id)


@router.post("/{card_id}/add", response_model=MutationResponse)
async def add_card(
    card_id: str,
    response: Response,
    store: Annotated[CollectionStore, Depends(get_store)],
    collection_id: Annotated[int | None, Query()] = None,
    wait: bool = False,
) -> MutationResponse:
    future = store.request_add_card(card_id, collection_id)
    return await _respond(store, response, card_id, collection_id, future, wait)


@router.post("/{card_id}/remove", response_model=MutationResponse)
async def remove_card(
    card_id: str,
    response: Response,
    store: Annotated[CollectionStore, Depends(get_store)],
    collection_id: Annotated[int | None, Query()] = None,
    wait: bool = False,
) -> MutationResponse:
    future = store.request_remove_card(card_id, collection_id)
    return await _respond(store, response, card_id, collection_id, future, wait)


@router.put("/{card_id}/quantity", response_model=MutationResponse)
async def set_quantity(
    card_id: str,
    request: SetQuantityRequest,
    response: Response,
    store: Annotated[CollectionStore, Depends(get_store)],
    collection_id: Annotated[int | None, Query()] = None,
    wait: bool = False,
) -> MutationResponse:
    future = store.request_set_quantity(card_id, request.quantity, collection_id)
    return await _respond(store, response, card_id, collection_id, future, wait)


@router.delete("/{card_id}/error", status_code=status.HTTP_204_NO_CONTENT)
async def clear_card_error(
    card_id: str,
    store: Annotated[CollectionStore, Depends(get_store)],
    collection_id: Annotated[int | None, Query()] = None,
) -> None:
    """Dismiss the error flag left by a rolled-back change."""
    store.clear_error(card_id, collection_id)

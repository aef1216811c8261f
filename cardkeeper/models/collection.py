"""
Collection entities mirrored from the authoritative backend.

Rows are immutable. The cache replaces a row wholesale on every change, so an
unchanged row keeps its identity across reconciliations.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, NamedTuple

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CardKey(NamedTuple):
    """Mutation key: one card inside one collection."""

    collection_id: int
    card_id: str


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# Backend timestamps arrive without an offset; they are UTC
UtcDatetime = Annotated[datetime | None, AfterValidator(_as_utc)]


class _WireModel(BaseModel):
    """Accepts the backend's camelCase JSON as well as snake_case kwargs."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class Collection(_WireModel):
    """A named grouping of cards owned by one user."""

    id: int
    name: str = Field(..., min_length=1)
    description: str | None = None
    language: str = "english"
    user_id: int | None = None
    created_at: UtcDatetime = None
    updated_at: UtcDatetime = None


class CollectionAttrs(_WireModel):
    """Client-editable collection fields for create and update calls."""

    name: str = Field(..., min_length=1)
    description: str | None = None
    language: str | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Collection name cannot be empty")
        return value


class CollectionCard(_WireModel):
    """
    Membership of one catalog card in one collection.

    `card_data_snapshot` is display data captured when the card was added.
    It is never treated as authoritative.
    """

    collection_id: int
    card_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=0)
    id: int | None = None
    added_at: UtcDatetime = None
    updated_at: UtcDatetime = None
    card_data_snapshot: dict[str, Any] | None = None

    @property
    def key(self) -> CardKey:
        return CardKey(self.collection_id, self.card_id)

    @property
    def version(self) -> datetime | None:
        """Server timestamp used for last-write-wins comparisons."""
        return self.updated_at or self.added_at


def is_older(incoming: datetime | None, current: datetime | None) -> bool:
    """True only when both timestamps are known and `incoming` predates `current`."""
    if incoming is None or current is None:
        return False
    return incoming < current

"""
Failure classification for the collection sync engine.

Every failure the engine can report falls into one of these classes:

- Refusal: the user asked for something invalid (no active collection,
  removing a card that is not there, a negative quantity). Raised
  synchronously, before any optimistic state is touched, and never sent to
  the backend.
- KnownFailure: the backend call failed (transport error, 5xx) or reported
  that the entity is gone (conflict). The key's optimistic change is rolled
  back.
- Invariant violation: the engine's own bookkeeping is inconsistent. Fatal
  in debug mode, self-healed otherwise.

The `ApiResponse` envelope renders any of these for the HTTP surface.
"""

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"
    NO_ACTIVE_COLLECTION = "no_active_collection"
    QUANTITY_UNDERFLOW = "quantity_underflow"
    ALREADY_PENDING = "already_pending"

    # Resource failures
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"

    # Service failures
    SERVICE_UNAVAILABLE = "service_unavailable"
    EXTERNAL_API_ERROR = "external_api_error"

    # Internal errors
    INVARIANT_VIOLATION = "invariant_violation"

    # Unknown
    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    REFUSAL = "refusal"
    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


T = TypeVar("T")


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )
    retryable: bool = Field(
        default=False,
        description="True when repeating the same request may succeed",
    )


class ApiResponse(BaseModel, Generic[T]):
    """Response envelope for error responses of the HTTP surface."""

    outcome: OutcomeType
    data: T | None = None
    failure: FailureDetail | None = None

    @classmethod
    def refusal(
        cls,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        retryable: bool = False,
    ) -> "ApiResponse[Any]":
        """Create a refusal response for rejected user input."""
        return cls(
            outcome=OutcomeType.REFUSAL,
            failure=FailureDetail(
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
                retryable=retryable,
            ),
        )

    @classmethod
    def known_failure(
        cls,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        retryable: bool = False,
    ) -> "ApiResponse[Any]":
        """Create a known failure response."""
        return cls(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
                retryable=retryable,
            ),
        )

    @classmethod
    def unknown_failure(cls, detail: str | None = None) -> "ApiResponse[Any]":
        """Create an unknown failure response. The message is fixed."""
        return cls(
            outcome=OutcomeType.UNKNOWN_FAILURE,
            failure=FailureDetail(
                kind=FailureKind.UNKNOWN,
                message="Something went wrong and the cause is unknown. Please try again.",
                detail=detail,
                suggestion="If this persists, please report the issue.",
            ),
        )


# =============================================================================
# EXCEPTION ROOTS
# =============================================================================


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    retryable = False

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ApiResponse[Any]:
        """Convert to an ApiResponse."""
        return ApiResponse.known_failure(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
            retryable=self.retryable,
        )


class RefusalError(Exception):
    """
    Exception for rejected user input.

    Raised before any optimistic state is applied; never reaches the network.
    """

    retryable = False

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ApiResponse[Any]:
        """Convert to an ApiResponse."""
        return ApiResponse.refusal(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
            retryable=self.retryable,
        )


# =============================================================================
# USER-INPUT REFUSALS
# =============================================================================


class NoActiveCollectionError(RefusalError):
    """No collection was given and none is selected."""

    def __init__(self) -> None:
        super().__init__(
            kind=FailureKind.NO_ACTIVE_COLLECTION,
            message="No active collection",
            suggestion="Please select a collection first.",
            status_code=409,
        )


class CollectionNotFoundError(RefusalError):
    """The requested collection is not known to this session."""

    def __init__(self, collection_id: int):
        self.collection_id = collection_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message="Collection not found",
            detail=f"collection_id={collection_id}",
            status_code=404,
        )


class InvalidQuantityError(RefusalError):
    """Quantities must be whole numbers of zero or more."""

    def __init__(self, quantity: object):
        self.quantity = quantity
        super().__init__(
            kind=FailureKind.INVALID_INPUT,
            message="Quantity must be zero or more",
            detail=f"quantity={quantity!r}",
            status_code=422,
        )


class QuantityUnderflowError(RefusalError):
    """Removing a card whose visible quantity is already zero."""

    def __init__(self, collection_id: int, card_id: str):
        self.collection_id = collection_id
        self.card_id = card_id
        super().__init__(
            kind=FailureKind.QUANTITY_UNDERFLOW,
            message="Card not found",
            detail=f"{card_id} is not in collection {collection_id}",
            suggestion="This card was not found in your collection.",
            status_code=409,
        )


class AlreadyPendingError(RefusalError):
    """An absolute quantity change cannot be merged with one in flight."""

    retryable = True

    def __init__(self, collection_id: int, card_id: str):
        self.collection_id = collection_id
        self.card_id = card_id
        super().__init__(
            kind=FailureKind.ALREADY_PENDING,
            message="This card is still being updated",
            detail=f"{card_id} in collection {collection_id} has a change in flight",
            suggestion="Please try again in a moment.",
            status_code=409,
        )


# =============================================================================
# REMOTE AND INTERNAL FAILURES
# =============================================================================


class RemoteCallFailedError(KnownError):
    """
    A backend call failed.

    Timeouts, transport errors and 5xx responses are retryable. The original
    exception is kept on `cause`.
    """

    def __init__(
        self,
        message: str = "The collection server could not complete the request",
        cause: BaseException | None = None,
        retryable: bool = True,
        status_code: int = 502,
        kind: FailureKind = FailureKind.EXTERNAL_API_ERROR,
    ):
        self.cause = cause
        self.retryable = retryable
        super().__init__(
            kind=kind,
            message=message,
            detail=type(cause).__name__ if cause is not None else None,
            suggestion="Please try again." if retryable else None,
            status_code=status_code,
        )

    @classmethod
    def from_exception(cls, exc: BaseException) -> "RemoteCallFailedError":
        """Wrap an unexpected exception raised by a remote store client."""
        return cls(message=str(exc) or cls.__name__, cause=exc)


class RemoteConflictError(RemoteCallFailedError):
    """The backend reports the target no longer exists (e.g. collection deleted)."""

    def __init__(self, message: str = "Collection not found", cause: BaseException | None = None):
        super().__init__(
            message=message,
            cause=cause,
            retryable=False,
            status_code=409,
            kind=FailureKind.CONFLICT,
        )


class InvariantViolationError(KnownError):
    """The optimistic overlay and the per-key lock disagree."""

    def __init__(self, detail: str):
        super().__init__(
            kind=FailureKind.INVARIANT_VIOLATION,
            message="Internal state for this card is inconsistent",
            detail=detail,
            status_code=500,
        )

from cardkeeper.models.collection import (
    CardKey,
    Collection,
    CollectionAttrs,
    CollectionCard,
    is_older,
)
from cardkeeper.models.failure import (
    AlreadyPendingError,
    ApiResponse,
    CollectionNotFoundError,
    FailureDetail,
    FailureKind,
    InvalidQuantityError,
    InvariantViolationError,
    KnownError,
    NoActiveCollectionError,
    OutcomeType,
    QuantityUnderflowError,
    RefusalError,
    RemoteCallFailedError,
    RemoteConflictError,
)

__all__ = [
    "AlreadyPendingError",
    "ApiResponse",
    "CardKey",
    "Collection",
    "CollectionAttrs",
    "CollectionCard",
    "CollectionNotFoundError",
    "FailureDetail",
    "FailureKind",
    "InvalidQuantityError",
    "InvariantViolationError",
    "KnownError",
    "NoActiveCollectionError",
    "OutcomeType",
    "QuantityUnderflowError",
    "RefusalError",
    "RemoteCallFailedError",
    "RemoteConflictError",
    "is_older",
]

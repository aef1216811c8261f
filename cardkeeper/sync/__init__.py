from cardkeeper.sync.cache import EntityCache, LoadStats
from cardkeeper.sync.coordinator import (
    KeyPhase,
    MutationCoordinator,
    MutationKind,
    MutationOutcome,
    MutationResult,
)
from cardkeeper.sync.notifications import (
    LoggingNotificationSink,
    Notification,
    NotificationFeed,
    NotificationLevel,
    NotificationSink,
)
from cardkeeper.sync.overlay import (
    EffectiveCardState,
    OptimisticDelta,
    OptimisticOverlay,
    effective_state,
)
from cardkeeper.sync.reconciler import Reconciler
from cardkeeper.sync.store import CardTotal, CollectionStore

__all__ = [
    "CardTotal",
    "CollectionStore",
    "EffectiveCardState",
    "EntityCache",
    "KeyPhase",
    "LoadStats",
    "LoggingNotificationSink",
    "MutationCoordinator",
    "MutationKind",
    "MutationOutcome",
    "MutationResult",
    "Notification",
    "NotificationFeed",
    "NotificationLevel",
    "NotificationSink",
    "OptimisticDelta",
    "OptimisticOverlay",
    "Reconciler",
    "effective_state",
]

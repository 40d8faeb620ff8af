"""Core data models for the patronage ledger."""

from patronage.models.collection import (
    Collection,
    ExternalKind,
    NO_TOKEN,
    SupplyConfig,
    WrappedCollection,
)
from patronage.models.flow import (
    CreatorFee,
    FlowEvent,
    FlowEventKind,
    FlowOutcome,
    FlowPlan,
    FlowPlanKind,
    FlowRecord,
    Subscription,
    ZERO_ADDRESS,
)
from patronage.models.replication import (
    DistributionResult,
    ReplicationAction,
    ReplicationIntent,
)

__all__ = [
    "Collection",
    "ExternalKind",
    "NO_TOKEN",
    "SupplyConfig",
    "WrappedCollection",
    "CreatorFee",
    "FlowEvent",
    "FlowEventKind",
    "FlowOutcome",
    "FlowPlan",
    "FlowPlanKind",
    "FlowRecord",
    "Subscription",
    "ZERO_ADDRESS",
    "DistributionResult",
    "ReplicationAction",
    "ReplicationIntent",
]

"""Subscription coordination on top of the flow ledger."""

from patronage.subscriptions.coordinator import SubscriptionCoordinator
from patronage.subscriptions.payload import SubscriptionPayload
from patronage.subscriptions.strategy import (
    Activation,
    ActivationStrategy,
    LocalActivation,
    RemoteReplication,
)

__all__ = [
    "SubscriptionCoordinator",
    "SubscriptionPayload",
    "Activation",
    "ActivationStrategy",
    "LocalActivation",
    "RemoteReplication",
]

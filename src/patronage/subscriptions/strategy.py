"""Activation strategies — what a subscription does to credentials and rewards.

The coordinator is the same whether the collection registry and reward
ledger live on this domain or on another one. The difference is isolated
behind ActivationStrategy, chosen once at construction:

- LocalActivation: mint/burn against the local CollectionRegistry. Reward
  effects of a mint are deferred and settled only after the flow change
  has been applied.
- RemoteReplication: dispatch replicated Mint/Burn intents through the
  ReplicationSender and keep the relay sequence number for correlation.

Each strategy splits its work the same way the flow ledger does:
validate() runs in the decide phase and may raise; activate(),
settle() and deactivate() run in the apply phase.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from patronage.credentials.registry import CollectionRegistry
from patronage.errors import InvariantViolation
from patronage.models.collection import NO_TOKEN
from patronage.models.flow import CreatorFee, Subscription
from patronage.models.replication import ReplicationAction, ReplicationIntent
from patronage.replication.replicator import ReplicationSender
from patronage.rewards.ledger import RewardLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Activation:
    """Result of activating a new subscription."""
    credential_id: Optional[int] = None
    replication_seq: Optional[int] = None
    newly_minted: bool = False


@runtime_checkable
class ActivationStrategy(Protocol):
    """Contract between the coordinator and the credential side."""

    def validate(self, sender: str, receiver: str, collection_id: int) -> None:
        ...

    def activate(self, sender: str, collection_id: int) -> Activation:
        ...

    def settle(self, sender: str, collection_id: int, activation: Activation) -> None:
        ...

    def deactivate(self, subscription: Subscription, policy: CreatorFee) -> Optional[int]:
        ...


class LocalActivation:
    """Credentials and rewards on this domain.

    `address` is the coordinator principal; it must hold the COORDINATOR
    capability in the registry's capability table.
    """

    def __init__(
        self, address: str, registry: CollectionRegistry, rewards: RewardLedger
    ) -> None:
        self._address = address
        self._registry = registry
        self._rewards = rewards

    def validate(self, sender: str, receiver: str, collection_id: int) -> None:
        collection = self._registry.get_collection(collection_id)
        if collection.creator_address != receiver:
            raise InvariantViolation(
                f"Collection {collection_id} does not belong to receiver {receiver}"
            )
        if collection.is_wrapped:
            raise InvariantViolation(
                f"Collection {collection_id} is wrapped and cannot be subscribed to"
            )

    def activate(self, sender: str, collection_id: int) -> Activation:
        token_id = self._registry.mint(self._address, sender, collection_id)
        if token_id != NO_TOKEN:
            return Activation(credential_id=token_id, newly_minted=True)
        existing = self._registry.token_of(sender, collection_id)
        return Activation(credential_id=existing)

    def settle(self, sender: str, collection_id: int, activation: Activation) -> None:
        if activation.newly_minted:
            self._registry.settle_mint_reward(sender, collection_id)

    def deactivate(self, subscription: Subscription, policy: CreatorFee) -> Optional[int]:
        """Burn per policy. Returns the burned token id, if any."""
        if not policy.burn_on_unsubscribe:
            return None
        sender, collection_id = subscription.sender, subscription.collection_id
        if self._registry.token_of(sender, collection_id) is None:
            return None
        token_id = self._registry.burn(self._address, sender, collection_id)
        self._rewards.clear_holder(sender, self._registry.get_collection(collection_id))
        return token_id


class RemoteReplication:
    """Credentials and rewards on another domain, reached via the relay."""

    def __init__(self, sender: ReplicationSender) -> None:
        self._sender = sender

    def validate(self, sender: str, receiver: str, collection_id: int) -> None:
        # The remote registry is not observable from here; only the route is.
        if collection_id <= 0:
            raise InvariantViolation(f"Invalid collection id: {collection_id}")
        self._sender.quote(
            ReplicationIntent(ReplicationAction.MINT, sender, collection_id)
        )

    def activate(self, sender: str, collection_id: int) -> Activation:
        seq = self._sender.dispatch(ReplicationAction.MINT, sender, collection_id)
        return Activation(replication_seq=seq)

    def settle(self, sender: str, collection_id: int, activation: Activation) -> None:
        return None

    def deactivate(self, subscription: Subscription, policy: CreatorFee) -> Optional[int]:
        """Dispatch a replicated burn. Returns its sequence number."""
        if not subscription.is_remote:
            return None
        seq = self._sender.dispatch(
            ReplicationAction.BURN, subscription.sender, subscription.collection_id
        )
        logger.info(
            "Replicated burn for %s/%d (mint seq %d, burn seq %d)",
            subscription.sender, subscription.collection_id,
            subscription.replication_seq, seq,
        )
        return seq

"""Cross-domain replicator — mirrors credential mints and burns.

Sender side: serialize a {Mint | Burn, account, collection_id} intent,
quote the delivery cost, dispatch through the message relay with a
refund destination, and return the relay sequence number. Dispatch is
fire-and-forget; there is no confirmation round trip.

Receiver side: accept deliveries only from the trusted relay and only
from registered (domain, address) senders; reject any delivery id seen
before with zero state change; then apply:
- Mint: normal local mint path, remember the local token id standing in
  for the remote holder, and credit the full first-activation reward
  directly (remote mints have no local interim history).
- Burn: burn the remembered token if the remote holder still owns it,
  then zero the holder's live reward entry unconditionally. Ownership
  problems are no-ops, never aborts: there is no party to receive an
  abort inside an asynchronous delivery.

Delivery is at-most-once per delivery id and unordered. Mint is a no-op
when the holder already has a credential; Burn is a no-op when nothing
is remembered. Both are therefore safe to repeat and to reorder.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

from patronage.config import LedgerSettings
from patronage.credentials.registry import CollectionRegistry
from patronage.errors import AuthorizationFailure, ReplayRejected
from patronage.models.collection import NO_TOKEN
from patronage.models.replication import ReplicationAction, ReplicationIntent
from patronage.replication.codec import decode_intent, encode_intent
from patronage.rewards.ledger import RewardLedger
from patronage.substrate.interfaces import MessageRelay

logger = logging.getLogger(__name__)


class ReplicationSender:
    """Dispatches mint/burn intents to the reward domain.

    Usage:
        sender = ReplicationSender(1, ledger_addr, relay, dest_domain=2,
                                   refund_to=treasury, gas_limit=300_000)
        seq = sender.dispatch(ReplicationAction.MINT, account, collection_id)
    """

    def __init__(
        self,
        domain_id: int,
        address: str,
        relay: MessageRelay,
        dest_domain: int,
        refund_to: str,
        gas_limit: int,
    ) -> None:
        self._domain_id = domain_id
        self._address = address
        self._relay = relay
        self._dest_domain = dest_domain
        self._refund_to = refund_to
        self._gas_limit = gas_limit
        self.fees_paid = 0

    @property
    def dest_domain(self) -> int:
        return self._dest_domain

    def quote(self, intent: ReplicationIntent) -> int:
        return self._relay.quote(self._dest_domain, encode_intent(intent), self._gas_limit)

    def dispatch(
        self, action: ReplicationAction, account: str, collection_id: int
    ) -> int:
        """Send an intent; returns the relay sequence number."""
        intent = ReplicationIntent(action=action, account=account, collection_id=collection_id)
        payload = encode_intent(intent)
        fee = self._relay.quote(self._dest_domain, payload, self._gas_limit)
        sequence = self._relay.dispatch(
            self._domain_id,
            self._address,
            self._dest_domain,
            payload,
            fee=fee,
            refund_to=self._refund_to,
            gas_limit=self._gas_limit,
        )
        self.fees_paid += fee
        logger.info(
            "Dispatched %s for %s/%d to domain %d (seq %d, fee %d)",
            action.name, account, collection_id, self._dest_domain, sequence, fee,
        )
        return sequence


@dataclass(frozen=True)
class AppliedIntent:
    """What the receiver did with one delivery."""
    intent: ReplicationIntent
    delivery_id: str
    source_domain: int
    token_id: int
    units_credited: int = 0
    burned: bool = False


class ReplicationReceiver:
    """Applies replicated intents against the local registry and rewards.

    The receiver's own address must hold the REPLICATOR capability in the
    capability table the registry was built with.
    """

    def __init__(
        self,
        address: str,
        relay_address: str,
        registry: CollectionRegistry,
        rewards: RewardLedger,
        settings: LedgerSettings,
    ) -> None:
        self._address = address
        self._relay_address = relay_address
        self._registry = registry
        self._rewards = rewards
        self._settings = settings
        self._senders: Dict[int, str] = {}
        self._seen: Set[str] = set()
        self._remote_tokens: Dict[Tuple[str, int], int] = {}

    @property
    def address(self) -> str:
        return self._address

    def register_sender(self, domain_id: int, address: str) -> None:
        self._senders[domain_id] = address

    def is_registered(self, domain_id: int, address: str) -> bool:
        return self._senders.get(domain_id) == address

    def has_seen(self, delivery_id: str) -> bool:
        return delivery_id in self._seen

    def remote_token(self, account: str, collection_id: int) -> Optional[int]:
        return self._remote_tokens.get((account, collection_id))

    def receive(
        self,
        caller: str,
        source_domain: int,
        source_address: str,
        payload: bytes,
        delivery_id: str,
    ) -> AppliedIntent:
        """Relay callback. Raises on untrusted caller, unknown sender or replay."""
        if caller != self._relay_address:
            raise AuthorizationFailure(f"Untrusted relay caller: {caller}")
        if not self.is_registered(source_domain, source_address):
            raise AuthorizationFailure(
                f"Unregistered sender {source_address} on domain {source_domain}"
            )
        if delivery_id in self._seen:
            logger.warning("Rejected replayed delivery %s", delivery_id)
            raise ReplayRejected(f"Delivery already applied: {delivery_id}")

        intent = decode_intent(payload)
        if intent.action == ReplicationAction.MINT:
            applied = self._apply_mint(intent, delivery_id, source_domain)
        else:
            applied = self._apply_burn(intent, delivery_id, source_domain)
        self._seen.add(delivery_id)
        return applied

    def _apply_mint(
        self, intent: ReplicationIntent, delivery_id: str, source_domain: int
    ) -> AppliedIntent:
        token_id = self._registry.mint(self._address, intent.account, intent.collection_id)
        if token_id == NO_TOKEN:
            logger.warning(
                "Replicated mint for %s/%d was a no-op",
                intent.account, intent.collection_id,
            )
            return AppliedIntent(intent, delivery_id, source_domain, NO_TOKEN)

        key = (intent.account, intent.collection_id)
        self._remote_tokens[key] = token_id
        collection = self._registry.get_collection(intent.collection_id)
        reward = self._settings.mint_reward
        current = self._rewards.get_units(collection.creator_id, intent.account)
        self._rewards.update_units(collection.creator_id, intent.account, current + reward)
        logger.info(
            "Applied replicated mint: token %d for %s (+%d units)",
            token_id, intent.account, reward,
        )
        return AppliedIntent(
            intent, delivery_id, source_domain, token_id, units_credited=reward
        )

    def _apply_burn(
        self, intent: ReplicationIntent, delivery_id: str, source_domain: int
    ) -> AppliedIntent:
        if not self._registry.collection_exists(intent.collection_id):
            logger.warning(
                "Replicated burn for unknown collection %d ignored", intent.collection_id
            )
            return AppliedIntent(intent, delivery_id, source_domain, NO_TOKEN)

        key = (intent.account, intent.collection_id)
        token_id = self._remote_tokens.pop(key, None)
        burned = False
        if token_id is not None and self._registry.owner_of(token_id) == intent.account:
            self._registry.burn(self._address, intent.account, intent.collection_id)
            burned = True
        else:
            logger.warning(
                "Replicated burn for %s/%d found no remembered token",
                intent.account, intent.collection_id,
            )

        collection = self._registry.get_collection(intent.collection_id)
        self._rewards.clear_holder(intent.account, collection)
        return AppliedIntent(
            intent, delivery_id, source_domain, token_id or NO_TOKEN, burned=burned
        )

"""Patronage service — unified facade over the ledger engines.

This is the primary interface for programmatic access. It wires:
- Flow ledger and subscription coordinator (stream substrate app hook)
- Collection registry and reward ledger (when rewards are local)
- Replication sender (when rewards live on another domain)
- Replication receiver (on the reward domain)
- Administrative surface
- Audit event log

Two error regimes:
- Stream substrate callbacks (on_flow_event) and relay deliveries
  (on_replication_delivery) propagate LedgerError, so the triggering
  operation aborts with zero mutation.
- Collection, reward and admin operations return ServiceResult and never
  raise for ledger rejections.

Every applied change is appended to the event log after the engines have
committed it. Rejected operations leave no audit record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from patronage.admin import LedgerAdmin
from patronage.auth import Capability, CapabilityTable
from patronage.config import LedgerConfig, LedgerSettings
from patronage.credentials.registry import CollectionRegistry
from patronage.errors import InvariantViolation, LedgerError
from patronage.flows.ledger import FlowLedger
from patronage.models.collection import ExternalKind, NO_TOKEN, SupplyConfig
from patronage.models.flow import (
    CreatorFee,
    FlowEvent,
    FlowOutcome,
    FlowPlanKind,
    Subscription,
)
from patronage.persistence.event_log import EventKind, EventLog
from patronage.replication.replicator import (
    AppliedIntent,
    ReplicationReceiver,
    ReplicationSender,
)
from patronage.rewards.ledger import RewardLedger
from patronage.subscriptions.coordinator import SubscriptionCoordinator
from patronage.subscriptions.strategy import (
    ActivationStrategy,
    LocalActivation,
    RemoteReplication,
)
from patronage.substrate.clock import ManualClock
from patronage.substrate.distribution import InMemoryDistributionSubstrate
from patronage.substrate.identity import InMemoryIdentityRegistry
from patronage.substrate.interfaces import (
    DistributionSubstrate,
    IdentityRegistry,
    MessageRelay,
    StreamSubstrate,
    TaskScheduler,
)
from patronage.substrate.scheduler import InMemoryTaskScheduler
from patronage.substrate.streams import InMemoryStreamSubstrate

logger = logging.getLogger(__name__)

_FLOW_EVENT_KINDS = {
    FlowPlanKind.CREATE: EventKind.FLOW_CREATED,
    FlowPlanKind.MERGE: EventKind.FLOW_MERGED,
    FlowPlanKind.CANCEL: EventKind.FLOW_CANCELLED,
}


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Collaborators:
    """External systems one ledger instance runs against."""
    streams: StreamSubstrate
    scheduler: TaskScheduler
    identity: IdentityRegistry
    distribution: DistributionSubstrate
    relay: Optional[MessageRelay] = None
    now: Optional[Callable[[], int]] = None

    @classmethod
    def in_memory(
        cls,
        asset: str,
        clock: Optional[ManualClock] = None,
        relay: Optional[MessageRelay] = None,
    ) -> Collaborators:
        """Reference backends sharing one manual clock."""
        clock = clock or ManualClock()
        streams = InMemoryStreamSubstrate(asset, clock)
        return cls(
            streams=streams,
            scheduler=InMemoryTaskScheduler(clock),
            identity=InMemoryIdentityRegistry(),
            distribution=InMemoryDistributionSubstrate(streams),
            relay=relay,
            now=clock.now,
        )


class PatronageService:
    """Subscription-and-rewards ledger facade.

    Usage:
        config = LedgerConfig.from_config_dir()
        service = PatronageService.build(
            config, Collaborators.in_memory(config.settlement_asset),
            ledger_address=ledger, admin_address=admin,
        )
        service.create_collection(creator, "creator-1")
        streams.create_flow(sender, ledger, 1000, by=sender, payload=...)

    Remote rewards:
        # domain 1 dispatches, domain 2 applies
        receiver = reward_service.attach_replication_receiver(replicator, relay.address)
        relay.register_domain(2, reward_service.on_replication_delivery)
        reward_service.register_replication_sender(admin, 1, ledger)
    """

    def __init__(
        self,
        config: LedgerConfig,
        settings: LedgerSettings,
        capabilities: CapabilityTable,
        collaborators: Collaborators,
        flows: FlowLedger,
        admin: LedgerAdmin,
        registry: Optional[CollectionRegistry] = None,
        rewards: Optional[RewardLedger] = None,
        sender: Optional[ReplicationSender] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._config = config
        self._settings = settings
        self._capabilities = capabilities
        self._collaborators = collaborators
        self._flows = flows
        self._admin = admin
        self._registry = registry
        self._rewards = rewards
        self._sender = sender
        self._event_log = event_log or EventLog()
        self._receiver: Optional[ReplicationReceiver] = None

        activation: ActivationStrategy
        if sender is not None:
            activation = RemoteReplication(sender)
        elif registry is not None and rewards is not None:
            activation = LocalActivation(flows.address, registry, rewards)
        else:
            raise InvariantViolation(
                "A ledger needs either a local registry and reward ledger "
                "or a replication sender"
            )
        self._coordinator = SubscriptionCoordinator(
            flows,
            collaborators.streams,
            collaborators.scheduler,
            settings,
            activation,
            now=collaborators.now,
            on_expired=self._record_expiry,
        )
        collaborators.streams.register_app(flows.address, self.on_flow_event)

    @classmethod
    def build(
        cls,
        config: LedgerConfig,
        collaborators: Collaborators,
        *,
        ledger_address: str,
        admin_address: str,
        event_log: Optional[EventLog] = None,
    ) -> PatronageService:
        """Assemble a ledger instance from static config and backends."""
        settings = LedgerSettings.from_config(config)
        capabilities = CapabilityTable({
            admin_address: [Capability.ADMIN],
            ledger_address: [Capability.COORDINATOR],
        })
        streams = collaborators.streams
        flows = FlowLedger(ledger_address, streams, settings)
        admin = LedgerAdmin(settings, capabilities, streams, ledger_address)

        if config.rewards_are_remote:
            if collaborators.relay is None:
                raise InvariantViolation(
                    f"Rewards live on domain {config.reward_domain} but no relay is configured"
                )
            sender = ReplicationSender(
                domain_id=config.domain_id,
                address=ledger_address,
                relay=collaborators.relay,
                dest_domain=config.reward_domain,
                refund_to=admin_address,
                gas_limit=config.relay_gas_limit,
            )
            return cls(
                config, settings, capabilities, collaborators, flows, admin,
                sender=sender, event_log=event_log,
            )

        rewards = RewardLedger(ledger_address, collaborators.distribution)
        registry = CollectionRegistry(
            settings, capabilities, collaborators.identity, rewards
        )
        return cls(
            config, settings, capabilities, collaborators, flows, admin,
            registry=registry, rewards=rewards, event_log=event_log,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._flows.address

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    @property
    def capabilities(self) -> CapabilityTable:
        return self._capabilities

    @property
    def flows(self) -> FlowLedger:
        return self._flows

    @property
    def coordinator(self) -> SubscriptionCoordinator:
        return self._coordinator

    @property
    def registry(self) -> Optional[CollectionRegistry]:
        return self._registry

    @property
    def rewards(self) -> Optional[RewardLedger]:
        return self._rewards

    @property
    def admin(self) -> LedgerAdmin:
        return self._admin

    @property
    def receiver(self) -> Optional[ReplicationReceiver]:
        return self._receiver

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    # ------------------------------------------------------------------
    # Substrate callbacks (errors propagate)
    # ------------------------------------------------------------------

    def on_flow_event(self, event: FlowEvent) -> None:
        """Stream substrate app hook."""
        outcome = self._coordinator.handle(event)
        self._record_outcome(outcome)

    def on_replication_delivery(
        self,
        caller: str,
        source_domain: int,
        source_address: str,
        payload: bytes,
        delivery_id: str,
    ) -> AppliedIntent:
        """Message relay receiver callback."""
        if self._receiver is None:
            raise InvariantViolation("No replication receiver attached")
        applied = self._receiver.receive(
            caller, source_domain, source_address, payload, delivery_id
        )
        self._event_log.record(EventKind.REPLICATION_APPLIED, caller, {
            "delivery_id": delivery_id,
            "source_domain": source_domain,
            "action": applied.intent.action.name,
            "account": applied.intent.account,
            "collection_id": applied.intent.collection_id,
            "token_id": applied.token_id,
            "units_credited": applied.units_credited,
            "burned": applied.burned,
        })
        return applied

    def run_scheduled(self) -> List[str]:
        """Run due expiry tasks on the in-memory scheduler."""
        scheduler = self._collaborators.scheduler
        if not isinstance(scheduler, InMemoryTaskScheduler):
            raise InvariantViolation("Scheduled tasks are run by the external scheduler")
        return scheduler.run_due()

    # ------------------------------------------------------------------
    # Replication setup
    # ------------------------------------------------------------------

    def attach_replication_receiver(
        self, address: str, relay_address: str
    ) -> ReplicationReceiver:
        """Accept replicated intents on this (reward) domain."""
        if self._registry is None or self._rewards is None:
            raise InvariantViolation("Replication receivers need a local registry")
        self._capabilities.grant(address, Capability.REPLICATOR)
        self._receiver = ReplicationReceiver(
            address, relay_address, self._registry, self._rewards, self._settings
        )
        return self._receiver

    def register_replication_sender(
        self, caller: str, domain_id: int, address: str
    ) -> ServiceResult:
        def action() -> Dict[str, Any]:
            self._capabilities.require(caller, Capability.ADMIN)
            if self._receiver is None:
                raise InvariantViolation("No replication receiver attached")
            self._receiver.register_sender(domain_id, address)
            return {"domain_id": domain_id, "sender": address}
        return self._run(EventKind.CONFIG_CHANGED, caller, action)

    # ------------------------------------------------------------------
    # Collections and credentials
    # ------------------------------------------------------------------

    def create_collection(
        self,
        caller: str,
        creator_id: str,
        available_supply: Optional[int] = None,
        metadata_uri: str = "",
    ) -> ServiceResult:
        def action() -> Dict[str, Any]:
            supply = SupplyConfig(available_supply) if available_supply is not None else None
            collection = self._local_registry().create_collection(
                caller, creator_id, supply, metadata_uri
            )
            return {
                "collection_id": collection.collection_id,
                "creator_id": creator_id,
                "start_id": collection.start_id,
                "available_supply": collection.available_supply,
            }
        return self._run(EventKind.COLLECTION_CREATED, caller, action)

    def create_wrapped_collection(
        self,
        caller: str,
        creator_id: str,
        external_source: str,
        external_kind: ExternalKind,
        pointed_id: int,
        metadata_uri: str = "",
    ) -> ServiceResult:
        def action() -> Dict[str, Any]:
            collection, wrapped = self._local_registry().create_wrapped_collection(
                caller, creator_id, external_source, external_kind, pointed_id, metadata_uri
            )
            return {
                "collection_id": collection.collection_id,
                "creator_id": creator_id,
                "external_source": wrapped.external_source,
                "external_kind": wrapped.external_kind.value,
                "pointed_id": wrapped.pointed_id,
            }
        return self._run(EventKind.WRAPPED_COLLECTION_CREATED, caller, action)

    def set_metadata_uri(
        self, caller: str, collection_id: int, metadata_uri: str
    ) -> ServiceResult:
        def action() -> Dict[str, Any]:
            self._local_registry().set_metadata_uri(caller, collection_id, metadata_uri)
            return {"collection_id": collection_id, "metadata_uri": metadata_uri}
        return self._run(EventKind.COLLECTION_UPDATED, caller, action)

    def set_active_collection(
        self, caller: str, creator_id: str, collection_id: int
    ) -> ServiceResult:
        def action() -> Dict[str, Any]:
            self._local_registry().set_active_collection(caller, creator_id, collection_id)
            return {"creator_id": creator_id, "active_collection": collection_id}
        return self._run(EventKind.COLLECTION_UPDATED, caller, action)

    def mint(self, caller: str, account: str, collection_id: int) -> ServiceResult:
        """Direct mint by a verified minter. NO_TOKEN is a successful no-op."""
        try:
            token_id = self._local_registry().mint(caller, account, collection_id)
        except LedgerError as exc:
            return ServiceResult(success=False, errors=[str(exc)])
        data = {
            "account": account,
            "collection_id": collection_id,
            "token_id": token_id,
            "minted": token_id != NO_TOKEN,
        }
        if token_id != NO_TOKEN:
            self._event_log.record(EventKind.CREDENTIAL_MINTED, caller, data)
        return ServiceResult(success=True, data=data)

    def credit_action(
        self, caller: str, holder: str, collection_id: int, action_name: str
    ) -> ServiceResult:
        def action() -> Dict[str, Any]:
            target = self._local_registry().credit_action(
                caller, holder, collection_id, action_name
            )
            return {
                "holder": holder,
                "collection_id": collection_id,
                "action": action_name,
                "units": self._settings.reward_for(action_name),
                "target": target,
            }
        return self._run(EventKind.REWARD_CREDITED, caller, action)

    def distribute(self, caller: str, creator_id: str, amount: int) -> ServiceResult:
        """Distribute amount from the ledger balance over a creator's index."""
        def action() -> Dict[str, Any]:
            self._capabilities.require(caller, Capability.ADMIN)
            if self._rewards is None:
                raise InvariantViolation(
                    f"Reward ledger lives on domain {self._config.reward_domain}"
                )
            result = self._rewards.distribute(creator_id, amount)
            return {
                "creator_id": creator_id,
                "requested": result.requested,
                "distributed": result.distributed,
                "remainder": result.remainder,
                "total_units": result.total_units,
                "allocations": dict(result.allocations),
            }
        return self._run(EventKind.REWARD_DISTRIBUTED, caller, action)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def set_protocol_fee_percent(self, caller: str, percent: int) -> ServiceResult:
        return self._admin_change(
            caller, {"protocol_fee_percent": percent},
            lambda: self._admin.set_protocol_fee_percent(caller, percent),
        )

    def set_settlement_asset(self, caller: str, asset: str) -> ServiceResult:
        return self._admin_change(
            caller, {"settlement_asset": asset},
            lambda: self._admin.set_settlement_asset(caller, asset),
        )

    def set_creator_fee(
        self, caller: str, receiver: str, fee: CreatorFee
    ) -> ServiceResult:
        return self._admin_change(
            caller,
            {
                "receiver": receiver,
                "rate": fee.rate,
                "min_duration": fee.min_duration,
                "burn_on_unsubscribe": fee.burn_on_unsubscribe,
            },
            lambda: self._admin.set_creator_fee(caller, receiver, fee),
        )

    def set_verified_minter(self, caller: str, account: str, enabled: bool) -> ServiceResult:
        return self._admin_change(
            caller, {"verified_minter": account, "enabled": enabled},
            lambda: self._admin.set_verified_minter(caller, account, enabled),
        )

    def set_action_reward(
        self, caller: str, action_name: str, units: Optional[int]
    ) -> ServiceResult:
        return self._admin_change(
            caller, {"action": action_name, "units": units},
            lambda: self._admin.set_action_reward(caller, action_name, units),
        )

    def pause(self, caller: str) -> ServiceResult:
        return self._admin_change(
            caller, {"paused": True}, lambda: self._admin.pause(caller)
        )

    def unpause(self, caller: str) -> ServiceResult:
        return self._admin_change(
            caller, {"paused": False}, lambda: self._admin.unpause(caller)
        )

    def withdraw_fees(self, caller: str, to: str, amount: int) -> ServiceResult:
        def action() -> Dict[str, Any]:
            remaining = self._admin.withdraw_fees(caller, to, amount)
            return {"to": to, "amount": amount, "remaining_balance": remaining}
        return self._run(EventKind.FEES_WITHDRAWN, caller, action)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """Summary of ledger state for operators and the CLI."""
        streams = self._collaborators.streams
        summary: Dict[str, Any] = {
            "address": self.address,
            "domain_id": self._config.domain_id,
            "rewards_remote": self._config.rewards_are_remote,
            "paused": self._settings.paused,
            "protocol_fee_percent": self._settings.protocol_fee_percent,
            "settlement_asset": self._settings.settlement_asset,
            "flow_records": self._flows.record_count(),
            "subscriptions": len(self._coordinator.subscriptions()),
            "fees_taken_rate": self._flows.fees_taken_total,
            "ledger_balance": streams.balance_of(self.address),
            "drift": {r: list(v) for r, v in self._flows.reconcile().items()},
            "events": self._event_log.count,
        }
        if self._registry is not None:
            summary["collections"] = [
                {
                    "collection_id": c.collection_id,
                    "creator_id": c.creator_id,
                    "total_supply": c.total_supply,
                    "total_redeemed": c.total_redeemed,
                    "available_supply": c.available_supply,
                    "interim_units_total": c.interim_units_total,
                    "wrapped": c.is_wrapped,
                }
                for c in self._registry.collections()
            ]
        if self._sender is not None:
            summary["replication_fees_paid"] = self._sender.fees_paid
        return summary

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _local_registry(self) -> CollectionRegistry:
        if self._registry is None:
            raise InvariantViolation(
                f"Collection registry lives on domain {self._config.reward_domain}"
            )
        return self._registry

    def _run(
        self,
        kind: EventKind,
        caller: str,
        action: Callable[[], Dict[str, Any]],
    ) -> ServiceResult:
        try:
            data = action()
        except LedgerError as exc:
            logger.info("Rejected %s by %s: %s", kind.value, caller, exc)
            return ServiceResult(success=False, errors=[str(exc)])
        self._event_log.record(kind, caller, data)
        return ServiceResult(success=True, data=data)

    def _admin_change(
        self, caller: str, change: Dict[str, Any], apply: Callable[[], None]
    ) -> ServiceResult:
        def action() -> Dict[str, Any]:
            apply()
            return change
        return self._run(EventKind.CONFIG_CHANGED, caller, action)

    def _record_outcome(self, outcome: FlowOutcome) -> None:
        event = outcome.event
        actor = event.initiator or event.sender
        for plan in outcome.plans:
            self._event_log.record(_FLOW_EVENT_KINDS[plan.kind], actor, {
                "sender": plan.sender,
                "receiver": plan.receiver,
                "delta_total": plan.delta_total,
                "delta_net": plan.delta_net,
                "delta_fee": plan.delta_fee,
            })
        for subscription in outcome.subscriptions_started:
            self._event_log.record(
                EventKind.SUBSCRIPTION_STARTED, actor, _subscription_payload(subscription)
            )
            if subscription.replication_seq is not None:
                self._event_log.record(EventKind.REPLICATION_DISPATCHED, self.address, {
                    "action": "MINT",
                    "account": subscription.sender,
                    "collection_id": subscription.collection_id,
                    "sequence": subscription.replication_seq,
                })
        for subscription in outcome.subscriptions_ended:
            self._event_log.record(
                EventKind.SUBSCRIPTION_ENDED, actor, _subscription_payload(subscription)
            )

    def _record_expiry(self, subscription: Subscription) -> None:
        self._event_log.record(
            EventKind.SUBSCRIPTION_EXPIRED, self.address, _subscription_payload(subscription)
        )


def _subscription_payload(subscription: Subscription) -> Dict[str, Any]:
    return {
        "sender": subscription.sender,
        "receiver": subscription.receiver,
        "collection_id": subscription.collection_id,
        "duration": subscription.duration,
        "credential_id": subscription.credential_id,
        "replication_seq": subscription.replication_seq,
    }

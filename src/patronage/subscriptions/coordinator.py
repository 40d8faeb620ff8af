"""Subscription coordinator — turns stream events into subscriptions.

The coordinator is the ledger's app hook on the stream substrate. Every
mutation of a sender → ledger stream arrives here as a FlowEvent and is
handled as one atomic step:

Decide (read-only, may raise):
- settlement asset must match and the ledger must not be paused for any
  rate increase; decreases and terminations always proceed
- decode the payload (receiver, collection_id, duration)
- plan the flow change through the FlowLedger
- for a new pair, check the receiver's policy:
    rate >= policy.rate
    duration == 0 or duration >= policy.min_duration
    balance(sender) >= policy.rate * policy.min_duration
- the activation strategy validates the target collection

Apply (no further rejections expected):
- flow plan applied (records, receiver aggregate)
- credential minted locally or a replicated mint dispatched
- deferred mint reward settled
- auto-expiry scheduled when duration > 0
- Subscription recorded

Any rejection raised from the decide phase propagates to the substrate,
which restores its own state, so the whole triggering stream operation
is aborted.

Termination (voluntary cancel, full stream close, or forced expiry):
cancel the scheduled task, delete the Subscription, then burn locally or
dispatch a replicated burn according to the activation strategy.

Auto-expiry runs only while the coordinator holds operator authority
over the sender's stream. It applies local state first and then shrinks
or closes the sender's inbound stream; the resulting substrate callback
is recognised as self-initiated and ignored.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from patronage.config import LedgerSettings
from patronage.errors import AuthorizationFailure, InvariantViolation, PolicyViolation
from patronage.flows.ledger import FlowLedger
from patronage.models.flow import (
    CreatorFee,
    FlowEvent,
    FlowEventKind,
    FlowOutcome,
    FlowPlanKind,
    Subscription,
)
from patronage.subscriptions.payload import SubscriptionPayload
from patronage.subscriptions.strategy import ActivationStrategy
from patronage.substrate.interfaces import StreamSubstrate, TaskScheduler

logger = logging.getLogger(__name__)

SubscriptionKey = Tuple[str, str]


class SubscriptionCoordinator:
    """Policy, credential activation and expiry on top of the FlowLedger.

    Usage:
        coordinator = SubscriptionCoordinator(
            flows, streams, scheduler, settings, LocalActivation(...), now=clock.now,
        )
        streams.register_app(flows.address, coordinator.handle)
    """

    def __init__(
        self,
        flows: FlowLedger,
        streams: StreamSubstrate,
        scheduler: TaskScheduler,
        settings: LedgerSettings,
        activation: ActivationStrategy,
        now: Optional[Callable[[], int]] = None,
        on_expired: Optional[Callable[[Subscription], None]] = None,
    ) -> None:
        self._flows = flows
        self._streams = streams
        self._scheduler = scheduler
        self._settings = settings
        self._activation = activation
        self._subscriptions: Dict[SubscriptionKey, Subscription] = {}
        self._now = now or (lambda: 0)
        self._on_expired = on_expired

    @property
    def address(self) -> str:
        return self._flows.address

    @property
    def activation(self) -> ActivationStrategy:
        return self._activation

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle(self, event: FlowEvent) -> FlowOutcome:
        """Stream substrate callback for sender → ledger flows."""
        if self._flows.is_self_initiated:
            return FlowOutcome(event=event)
        # Exits are never blocked by asset or pause.
        if event.kind == FlowEventKind.TERMINATED:
            return self._on_terminated(event)
        if event.delta > 0 and event.asset != self._settings.settlement_asset:
            raise InvariantViolation(
                f"Unsupported asset {event.asset}; "
                f"ledger settles in {self._settings.settlement_asset}"
            )
        if self._settings.paused and event.delta > 0:
            raise PolicyViolation("Ledger is paused: stream increases are not accepted")
        if event.kind == FlowEventKind.CREATED:
            return self._on_increase(event, event.new_rate)
        if event.delta > 0:
            return self._on_increase(event, event.delta)
        if event.delta < 0:
            return self._on_cancel(event)
        return FlowOutcome(event=event)

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def policy_for(self, receiver: str) -> CreatorFee:
        return self._settings.creator_fee(receiver)

    def check_policy(self, sender: str, receiver: str, rate: int, duration: int) -> CreatorFee:
        """Raise PolicyViolation unless a new subscription satisfies policy."""
        policy = self.policy_for(receiver)
        if rate < policy.rate:
            raise PolicyViolation(
                f"Rate {rate} is below the minimum {policy.rate} for {receiver}"
            )
        if duration and duration < policy.min_duration:
            raise PolicyViolation(
                f"Duration {duration}s is below the minimum "
                f"{policy.min_duration}s for {receiver}"
            )
        required = policy.sustaining_balance()
        available = self._streams.balance_of(sender)
        if available < required:
            raise PolicyViolation(
                f"Balance {available} cannot sustain {policy.rate}/s for "
                f"{policy.min_duration}s (needs {required})"
            )
        return policy

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_increase(self, event: FlowEvent, rate: int) -> FlowOutcome:
        payload = SubscriptionPayload.decode(event.payload)
        sender, receiver = event.sender, payload.receiver
        existing = self._subscriptions.get((sender, receiver))

        # Decide.
        if event.kind == FlowEventKind.CREATED:
            plan = self._flows.plan_create(sender, receiver, rate)
        else:
            plan = self._flows.plan_update(sender, receiver, event.old_rate, event.new_rate)
        if existing is None:
            if plan.kind != FlowPlanKind.CREATE:
                raise InvariantViolation(
                    f"Flow record for {sender} → {receiver} has no subscription"
                )
            self.check_policy(sender, receiver, rate, payload.duration)
            self._activation.validate(sender, receiver, payload.collection_id)

        # Apply.
        self._flows.apply(plan)
        if existing is not None:
            logger.info("Merged +%d/s into subscription %s → %s", rate, sender, receiver)
            return FlowOutcome(event=event, plans=(plan,))

        activation = self._activation.activate(sender, payload.collection_id)
        self._activation.settle(sender, payload.collection_id, activation)
        subscription = Subscription(
            sender=sender,
            receiver=receiver,
            collection_id=payload.collection_id,
            duration=payload.duration,
            credential_id=activation.credential_id,
            replication_seq=activation.replication_seq,
            started_at=self._now(),
        )
        if payload.duration > 0:
            subscription.scheduled_task_id = self._schedule_expiry(
                sender, receiver, payload.duration
            )
        self._subscriptions[(sender, receiver)] = subscription
        logger.info(
            "Subscription %s → %s started: collection %d, duration %ds",
            sender, receiver, payload.collection_id, payload.duration,
        )
        return FlowOutcome(event=event, plans=(plan,), subscriptions_started=(subscription,))

    def _on_cancel(self, event: FlowEvent) -> FlowOutcome:
        payload = SubscriptionPayload.decode(event.payload)
        sender, receiver = event.sender, payload.receiver
        plan = self._flows.plan_update(sender, receiver, event.old_rate, event.new_rate)

        self._flows.apply(plan)
        ended = self._end_subscription(sender, receiver)
        return FlowOutcome(
            event=event,
            plans=(plan,),
            subscriptions_ended=(ended,) if ended is not None else (),
        )

    def _on_terminated(self, event: FlowEvent) -> FlowOutcome:
        sender = event.sender
        plans = self._flows.plan_terminate(sender)

        ended: List[Subscription] = []
        for plan in plans:
            self._flows.apply(plan)
            subscription = self._end_subscription(plan.sender, plan.receiver)
            if subscription is not None:
                ended.append(subscription)
        logger.info("Sender %s terminated: %d subscriptions ended", sender, len(ended))
        return FlowOutcome(event=event, plans=tuple(plans), subscriptions_ended=tuple(ended))

    def _end_subscription(self, sender: str, receiver: str) -> Optional[Subscription]:
        subscription = self._subscriptions.pop((sender, receiver), None)
        if subscription is None:
            logger.warning("No subscription for terminated flow %s → %s", sender, receiver)
            return None
        if subscription.scheduled_task_id is not None:
            self._scheduler.cancel_task(subscription.scheduled_task_id)
        subscription.active = False
        self._activation.deactivate(subscription, self.policy_for(receiver))
        logger.info("Subscription %s → %s ended", sender, receiver)
        return subscription

    # ------------------------------------------------------------------
    # Auto-expiry
    # ------------------------------------------------------------------

    def _schedule_expiry(self, sender: str, receiver: str, duration: int) -> str:
        return self._scheduler.create_task(
            check=lambda: self.can_expire(sender, receiver),
            execute=lambda: self.execute_expiry(sender, receiver),
            delay=duration,
        )

    def can_expire(self, sender: str, receiver: str) -> bool:
        """True while the subscription exists and authority is delegated."""
        return (
            (sender, receiver) in self._subscriptions
            and self._streams.is_operator(sender, self.address)
        )

    def execute_expiry(self, sender: str, receiver: str) -> Subscription:
        """Force-end a subscription whose duration has elapsed."""
        subscription = self._subscriptions.get((sender, receiver))
        if subscription is None:
            raise InvariantViolation(f"No subscription {sender} → {receiver} to expire")
        if not self._streams.is_operator(sender, self.address):
            raise AuthorizationFailure(
                f"Ledger holds no operator authority over {sender}'s stream"
            )
        record = self._flows.get_record(sender, receiver)
        if record is None:
            raise InvariantViolation(f"No flow record for {sender} → {receiver}")

        # Decide: the inbound shrinks by exactly this record's total.
        inbound = self._streams.get_flow_rate(sender, self.address)
        remaining = inbound - record.total_rate_incl_fee
        if remaining < 0:
            raise InvariantViolation(
                f"Inbound rate {inbound} from {sender} is below record total "
                f"{record.total_rate_incl_fee}"
            )
        plan = self._flows.plan_update(sender, receiver, inbound, remaining)

        # Apply local state, then the sender's side of the stream.
        self._flows.apply(plan)
        if remaining > 0:
            with self._flows.self_initiated():
                self._streams.update_flow(sender, self.address, remaining, by=self.address)
        elif self._streams.get_flow_rate(sender, self.address) > 0:
            with self._flows.self_initiated():
                self._streams.delete_flow(sender, self.address, by=self.address)

        self._end_subscription(sender, receiver)
        logger.info("Subscription %s → %s expired", sender, receiver)
        if self._on_expired is not None:
            self._on_expired(subscription)
        return subscription

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def subscription(self, sender: str, receiver: str) -> Optional[Subscription]:
        return self._subscriptions.get((sender, receiver))

    def subscriptions_for(self, sender: str) -> List[Subscription]:
        return [s for (snd, _), s in self._subscriptions.items() if snd == sender]

    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

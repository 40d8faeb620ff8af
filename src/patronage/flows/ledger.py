"""Flow ledger — splits inbound streams into protocol fee and creator net.

Every sender streams one aggregate inbound flow to the ledger. Each
sender → receiver agreement routed through that flow is a FlowRecord.
The ledger forwards the net part of every record to its receiver through
one aggregate outbound flow per receiver, shared by all senders routed to
that receiver.

Split rule (per incremental change, never recomputed from a cumulative
total):
    fee = delta * protocol_fee_percent // 100
    net = delta - fee

Event handling:
- create: new record for (sender, receiver); duplicate pairs rejected.
- update, increase: incremental merge into the existing record for the
  pair, or a new record if the pair has none.
- update, decrease (canceling): the decrease must equal the record's
  stored total exactly; the record is removed whole. Partial unsubscribe
  from a merged stream is not allowed.
- termination: every record of the sender is removed in strict reverse
  insertion order.

Index structure: each sender has a dense list of record keys; every
record stores its own slot. Removal swaps the last key into the freed
slot, rewrites that record's slot, and pops the tail. The termination
sweep walks from the tail so the swap never moves an unvisited entry.

Canonical remaining-rate derivation: the amount to subtract from a
receiver's aggregate outflow is always the stored record net. The
observed aggregate on the substrate must equal the sum of stored nets for
that receiver; reconcile() reports any drift.

Two-phase discipline: plan_*() validates against unmodified state and
returns a FlowPlan; apply() mutates the local store completely and only
then calls the stream substrate.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from patronage.config import LedgerSettings, MAX_PROTOCOL_FEE_PERCENT
from patronage.errors import InvariantViolation
from patronage.models.flow import (
    FlowPlan,
    FlowPlanKind,
    FlowRecord,
    ZERO_ADDRESS,
)
from patronage.substrate.interfaces import StreamSubstrate

logger = logging.getLogger(__name__)

RecordKey = Tuple[str, str]


class FlowLedger:
    """Per-(sender, receiver) split records and receiver aggregates.

    Usage:
        flows = FlowLedger(ledger_address, streams, settings)
        plan = flows.plan_create(sender, receiver, rate)
        record = flows.apply(plan)
    """

    def __init__(
        self,
        address: str,
        streams: StreamSubstrate,
        settings: LedgerSettings,
    ) -> None:
        self._address = address
        self._streams = streams
        self._settings = settings
        self._records: Dict[RecordKey, FlowRecord] = {}
        self._sender_index: Dict[str, List[RecordKey]] = {}
        self._receiver_locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._known_receivers: set = set()
        self._self_initiated = 0
        self._fees_taken_total = 0

    @property
    def address(self) -> str:
        return self._address

    # ------------------------------------------------------------------
    # Split arithmetic
    # ------------------------------------------------------------------

    def split(self, rate: int) -> Tuple[int, int]:
        """Return (net, fee) for a gross rate. net + fee == rate exactly."""
        if rate < 0:
            raise InvariantViolation(f"Cannot split a negative rate: {rate}")
        percent = self._settings.protocol_fee_percent
        if not 0 <= percent <= MAX_PROTOCOL_FEE_PERCENT:
            raise InvariantViolation(
                f"Protocol fee {percent}% outside [0, {MAX_PROTOCOL_FEE_PERCENT}]"
            )
        fee = rate * percent // 100
        return rate - fee, fee

    # ------------------------------------------------------------------
    # Decide
    # ------------------------------------------------------------------

    def plan_create(
        self, sender: str, receiver: Optional[str], rate: int
    ) -> FlowPlan:
        """Validate a new record for (sender, receiver) at rate."""
        self._check_receiver(sender, receiver)
        if rate <= 0:
            raise InvariantViolation(f"Flow rate must be positive, got {rate}")
        if (sender, receiver) in self._records:
            raise InvariantViolation(
                f"Flow record already exists for {sender} → {receiver}; "
                f"use an update to change its rate"
            )
        net, fee = self.split(rate)
        return FlowPlan(
            kind=FlowPlanKind.CREATE,
            sender=sender,
            receiver=receiver,
            delta_total=rate,
            delta_net=net,
            delta_fee=fee,
        )

    def plan_update(
        self,
        sender: str,
        receiver: Optional[str],
        old_rate: int,
        new_rate: int,
    ) -> FlowPlan:
        """Validate an inbound rate change attributed to receiver.

        Increases merge into the pair's record (or create one); decreases
        must cancel the pair's record exactly.
        """
        self._check_receiver(sender, receiver)
        delta = new_rate - old_rate
        if delta == 0:
            return FlowPlan(kind=FlowPlanKind.NOOP, sender=sender, receiver=receiver)

        record = self._records.get((sender, receiver))
        if delta > 0:
            if record is None:
                return self.plan_create(sender, receiver, delta)
            net, fee = self.split(delta)
            return FlowPlan(
                kind=FlowPlanKind.MERGE,
                sender=sender,
                receiver=receiver,
                delta_total=delta,
                delta_net=net,
                delta_fee=fee,
            )

        if record is None:
            raise InvariantViolation(
                f"No flow record for {sender} → {receiver} to cancel"
            )
        decrease = -delta
        if decrease != record.total_rate_incl_fee:
            raise InvariantViolation(
                f"Canceling decrease {decrease} does not match stored total "
                f"{record.total_rate_incl_fee} for {sender} → {receiver}; "
                f"partial unsubscribe is not allowed"
            )
        return self._cancel_plan(record, remaining_records=len(self._sender_index[sender]) - 1)

    def plan_terminate(self, sender: str) -> List[FlowPlan]:
        """Cancel plans for every record of sender, newest first."""
        index = self._sender_index.get(sender, [])
        plans: List[FlowPlan] = []
        for position in range(len(index) - 1, -1, -1):
            record = self._records[index[position]]
            plans.append(self._cancel_plan(record, remaining_records=position))
        return plans

    def _cancel_plan(self, record: FlowRecord, remaining_records: int) -> FlowPlan:
        observed = self._streams.get_flow_rate(self._address, record.receiver)
        if observed < record.net_rate:
            raise InvariantViolation(
                f"Aggregate outflow to {record.receiver} ({observed}) is below "
                f"stored net {record.net_rate}"
            )
        return FlowPlan(
            kind=FlowPlanKind.CANCEL,
            sender=record.sender,
            receiver=record.receiver,
            delta_total=-record.total_rate_incl_fee,
            delta_net=-record.net_rate,
            delta_fee=-record.fee_rate,
            terminates_sender=remaining_records == 0,
        )

    def _check_receiver(self, sender: str, receiver: Optional[str]) -> None:
        if not receiver:
            raise InvariantViolation("Missing receiver payload")
        # Addresses compare case-insensitively; payload receivers are checksummed.
        account = receiver.lower()
        if account == ZERO_ADDRESS:
            raise InvariantViolation("Receiver is the zero address")
        if account in (sender.lower(), self._address.lower()):
            raise InvariantViolation(f"Self-referential stream to {receiver}")

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(self, plan: FlowPlan) -> Optional[FlowRecord]:
        """Apply a validated plan. Returns the surviving record, if any."""
        if plan.kind == FlowPlanKind.NOOP:
            return None

        key = (plan.sender, plan.receiver)
        with self._lock_for(plan.receiver):
            if plan.kind == FlowPlanKind.CREATE:
                index = self._sender_index.setdefault(plan.sender, [])
                record = FlowRecord(
                    sender=plan.sender,
                    receiver=plan.receiver,
                    net_rate=plan.delta_net,
                    total_rate_incl_fee=plan.delta_total,
                    position_index=len(index),
                )
                self._records[key] = record
                index.append(key)
                self._known_receivers.add(plan.receiver)
                self._fees_taken_total += plan.delta_fee
            elif plan.kind == FlowPlanKind.MERGE:
                record = self._records[key]
                record.net_rate += plan.delta_net
                record.total_rate_incl_fee += plan.delta_total
                self._fees_taken_total += plan.delta_fee
            else:
                self._remove(key)
                record = None

            self._adjust_outflow(plan.receiver, plan.delta_net)

        logger.info(
            "Flow %s %s → %s: total %+d, net %+d, fee %+d",
            plan.kind.value, plan.sender, plan.receiver,
            plan.delta_total, plan.delta_net, plan.delta_fee,
        )
        if plan.kind == FlowPlanKind.CANCEL and plan.terminates_sender:
            self._close_inbound(plan.sender)
        return record

    def create(self, sender: str, receiver: Optional[str], rate: int) -> FlowRecord:
        self.apply(self.plan_create(sender, receiver, rate))
        return self._records[(sender, receiver)]

    def update(
        self, sender: str, receiver: Optional[str], old_rate: int, new_rate: int
    ) -> Optional[FlowRecord]:
        return self.apply(self.plan_update(sender, receiver, old_rate, new_rate))

    def terminate_sender(self, sender: str) -> List[FlowRecord]:
        """Remove every record of sender (newest first). Returns them."""
        removed: List[FlowRecord] = []
        for plan in self.plan_terminate(sender):
            removed.append(self._records[(plan.sender, plan.receiver)])
            self.apply(plan)
        return removed

    def _remove(self, key: RecordKey) -> FlowRecord:
        """Swap-pop removal from the sender index."""
        record = self._records.pop(key)
        index = self._sender_index[record.sender]
        slot = record.position_index
        last_key = index[-1]
        if last_key != key:
            index[slot] = last_key
            self._records[last_key].position_index = slot
        index.pop()
        if not index:
            del self._sender_index[record.sender]
        return record

    def _adjust_outflow(self, receiver: str, delta_net: int) -> None:
        """Read-modify-write the receiver's aggregate outbound flow."""
        with self._lock_for(receiver):
            current = self._streams.get_flow_rate(self._address, receiver)
            target = current + delta_net
            if target < 0:
                raise InvariantViolation(
                    f"Aggregate outflow to {receiver} would go negative: "
                    f"{current} {delta_net:+d}"
                )
            if target == current:
                return
            if current == 0:
                self._streams.create_flow(self._address, receiver, target, by=self._address)
            elif target == 0:
                self._streams.delete_flow(self._address, receiver, by=self._address)
            else:
                self._streams.update_flow(self._address, receiver, target, by=self._address)

    def _close_inbound(self, sender: str) -> None:
        """Fully terminate a sender's inbound stream once no records remain."""
        if self._streams.get_flow_rate(sender, self._address) == 0:
            return
        with self.self_initiated():
            self._streams.delete_flow(sender, self._address, by=self._address)
        logger.info("Closed inbound stream from %s: no records remain", sender)

    # ------------------------------------------------------------------
    # Reentrancy guard
    # ------------------------------------------------------------------

    @contextmanager
    def self_initiated(self) -> Iterator[None]:
        """Mark inbound-stream mutations made by the ledger itself.

        Substrate callbacks arriving while this is active are echoes of
        the ledger's own changes and must be ignored by the caller.
        """
        self._self_initiated += 1
        try:
            yield
        finally:
            self._self_initiated -= 1

    @property
    def is_self_initiated(self) -> bool:
        return self._self_initiated > 0

    def _lock_for(self, receiver: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._receiver_locks.get(receiver)
            if lock is None:
                lock = threading.RLock()
                self._receiver_locks[receiver] = lock
            return lock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(self, sender: str, receiver: str) -> Optional[FlowRecord]:
        return self._records.get((sender, receiver))

    def has_record(self, sender: str, receiver: str) -> bool:
        return (sender, receiver) in self._records

    def records_for_sender(self, sender: str) -> List[FlowRecord]:
        """Records in current index order (slot 0 first)."""
        return [self._records[k] for k in self._sender_index.get(sender, [])]

    def record_count(self) -> int:
        return len(self._records)

    def sender_gross_total(self, sender: str) -> int:
        return sum(r.total_rate_incl_fee for r in self.records_for_sender(sender))

    def sender_net_total(self, sender: str) -> int:
        return sum(r.net_rate for r in self.records_for_sender(sender))

    def sender_fee_total(self, sender: str) -> int:
        return sum(r.fee_rate for r in self.records_for_sender(sender))

    def receiver_net_total(self, receiver: str) -> int:
        """Sum of stored nets routed to receiver (canonical derivation)."""
        return sum(r.net_rate for r in self._records.values() if r.receiver == receiver)

    def receivers(self) -> List[str]:
        return sorted({r.receiver for r in self._records.values()})

    @property
    def fees_taken_total(self) -> int:
        """Cumulative fee rate ever taken. Monotonic; never decremented."""
        return self._fees_taken_total

    def reconcile(self) -> Dict[str, Tuple[int, int]]:
        """Receivers whose observed aggregate differs from stored nets.

        Returns {receiver: (stored_net_total, observed_rate)}; empty when
        the two derivations agree everywhere.
        """
        drift: Dict[str, Tuple[int, int]] = {}
        for receiver in sorted(self._known_receivers):
            stored = self.receiver_net_total(receiver)
            observed = self._streams.get_flow_rate(self._address, receiver)
            if stored != observed:
                drift[receiver] = (stored, observed)
        return drift

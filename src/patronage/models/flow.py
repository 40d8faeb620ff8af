"""Flow and subscription models — split records, creator policy, subscriptions.

All rates are integer base units per second. Integer arithmetic keeps the
split exact:

    net_rate + protocol fee == total_rate_incl_fee

A FlowRecord exists iff a live stream from sender to receiver is routed
through the ledger. Records are mutated on rate increases (incremental
merge) and removed on cancellation or termination — never partially
decreased.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Tuple


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass
class FlowRecord:
    """One active sender → receiver split agreement.

    position_index is the record's current slot in its sender's dense
    index list. It is rewritten whenever swap-pop removal moves the
    record into a freed slot.
    """
    sender: str
    receiver: str
    net_rate: int
    total_rate_incl_fee: int
    position_index: int

    @property
    def key(self) -> Tuple[str, str]:
        return (self.sender, self.receiver)

    @property
    def fee_rate(self) -> int:
        return self.total_rate_incl_fee - self.net_rate


class FlowPlanKind(str, enum.Enum):
    """What applying a FlowPlan does to the record set."""
    CREATE = "create"
    MERGE = "merge"
    CANCEL = "cancel"
    NOOP = "noop"


@dataclass(frozen=True)
class FlowPlan:
    """A validated, not-yet-applied change to the flow ledger.

    Computed against a read-only view of the ledger; applying it is
    infallible apart from collaborator failures.

    delta_total / delta_net / delta_fee are signed: positive for creates
    and merges, negative for cancellations.
    """
    kind: FlowPlanKind
    sender: str
    receiver: str
    delta_total: int = 0
    delta_net: int = 0
    delta_fee: int = 0
    terminates_sender: bool = False


@dataclass(frozen=True)
class CreatorFee:
    """Per-receiver subscription policy.

    rate: minimum gross rate a subscriber must stream.
    min_duration: minimum subscription length in seconds when a
        duration is requested, and the horizon the sender's balance must
        sustain at `rate`.
    burn_on_unsubscribe: burn the credential when the subscription ends.
    """
    rate: int
    min_duration: int
    burn_on_unsubscribe: bool = False

    def sustaining_balance(self) -> int:
        return self.rate * self.min_duration


@dataclass
class Subscription:
    """A live subscription keyed by (sender, receiver).

    credential_id is the local token id when the credential was minted on
    this domain; replication_seq is the relay sequence number when the
    mint was replicated to another domain instead. At most one of them is
    set.
    """
    sender: str
    receiver: str
    collection_id: int
    duration: int = 0
    credential_id: Optional[int] = None
    scheduled_task_id: Optional[str] = None
    replication_seq: Optional[int] = None
    active: bool = True
    started_at: int = 0

    @property
    def is_remote(self) -> bool:
        return self.replication_seq is not None

    @property
    def expires_at(self) -> Optional[int]:
        if self.duration <= 0:
            return None
        return self.started_at + self.duration


class FlowEventKind(str, enum.Enum):
    """Stream substrate callback classification."""
    CREATED = "created"
    UPDATED = "updated"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class FlowEvent:
    """A stream substrate callback delivered to the ledger app.

    old_rate / new_rate describe the sender → ledger inbound stream
    before and after the change. payload carries the out-of-band
    subscription data the sender attached to the call.
    """
    kind: FlowEventKind
    sender: str
    asset: str
    old_rate: int = 0
    new_rate: int = 0
    payload: Optional[bytes] = None
    initiator: Optional[str] = None

    @property
    def delta(self) -> int:
        return self.new_rate - self.old_rate


@dataclass(frozen=True)
class FlowOutcome:
    """What a flow event did, for audit and for the caller."""
    event: FlowEvent
    plans: Tuple[FlowPlan, ...] = field(default_factory=tuple)
    subscriptions_started: Tuple[Subscription, ...] = field(default_factory=tuple)
    subscriptions_ended: Tuple[Subscription, ...] = field(default_factory=tuple)

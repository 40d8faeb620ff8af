"""Append-only audit log — every ledger state change, hash-chained.

The service layer appends one EventRecord per applied change: flows,
subscriptions, credentials, rewards, collections, replication and admin
actions. Engines never write here; a rejected operation therefore
leaves no audit trace.

Each record carries the SHA-256 of its canonical JSON and the hash of
the record before it, so any edit, deletion or reordering of a
persisted log breaks the chain. Loading a JSONL file re-verifies every
hash and rejects duplicate event ids.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from patronage.errors import InvariantViolation, ReplayRejected

EMPTY_CHAIN_HASH = "sha256:" + "0" * 64


class EventKind(str, enum.Enum):
    """Classification of audited ledger events."""
    # Flows
    FLOW_CREATED = "flow_created"
    FLOW_MERGED = "flow_merged"
    FLOW_CANCELLED = "flow_cancelled"
    # Subscriptions
    SUBSCRIPTION_STARTED = "subscription_started"
    SUBSCRIPTION_ENDED = "subscription_ended"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    # Collections and credentials
    COLLECTION_CREATED = "collection_created"
    WRAPPED_COLLECTION_CREATED = "wrapped_collection_created"
    COLLECTION_UPDATED = "collection_updated"
    CREDENTIAL_MINTED = "credential_minted"
    CREDENTIAL_BURNED = "credential_burned"
    # Rewards
    REWARD_CREDITED = "reward_credited"
    REWARD_DISTRIBUTED = "reward_distributed"
    # Replication
    REPLICATION_DISPATCHED = "replication_dispatched"
    REPLICATION_APPLIED = "replication_applied"
    # Administration
    CONFIG_CHANGED = "config_changed"
    FEES_WITHDRAWN = "fees_withdrawn"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: Dict[str, Any],
    prev_hash: str,
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
            "prev_hash": prev_hash,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable audit event."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: Dict[str, Any]
    prev_hash: str
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: Dict[str, Any],
        prev_hash: str = EMPTY_CHAIN_HASH,
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            prev_hash=prev_hash,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload, prev_hash
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "prev_hash": self.prev_hash,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only, hash-chained event log with optional JSONL persistence.

    Usage:
        log = EventLog(Path("audit.jsonl"))
        log.record(EventKind.CREDENTIAL_MINTED, actor, {"token_id": 1})
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: List[EventRecord] = []
        self._event_ids: set = set()
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    @property
    def head_hash(self) -> str:
        return self._events[-1].event_hash if self._events else EMPTY_CHAIN_HASH

    def record(
        self, kind: EventKind, actor_id: str, payload: Dict[str, Any]
    ) -> EventRecord:
        """Build the next chained record and append it."""
        event = EventRecord.create(
            event_id=f"evt_{len(self._events) + 1:08d}",
            event_kind=kind,
            actor_id=actor_id,
            payload=payload,
            prev_hash=self.head_hash,
        )
        self.append(event)
        return event

    def append(self, event: EventRecord) -> None:
        """Append an event. Duplicate ids and broken chains are rejected."""
        if event.event_id in self._event_ids:
            raise ReplayRejected(f"Duplicate event ID: {event.event_id}")
        if event.prev_hash != self.head_hash:
            raise InvariantViolation(
                f"Event {event.event_id} does not extend the log head "
                f"({event.prev_hash} != {self.head_hash})"
            )

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def events(self, kind: Optional[EventKind] = None) -> List[EventRecord]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def verify(self) -> bool:
        """Recompute every hash and link. True if the chain is intact."""
        prev = EMPTY_CHAIN_HASH
        for event in self._events:
            expected = _canonical_hash(
                event.event_id, event.event_kind.value, event.timestamp_utc,
                event.actor_id, event.payload, event.prev_hash,
            )
            if event.prev_hash != prev or event.event_hash != expected:
                return False
            prev = event.event_hash
        return True

    def _load_from_file(self, path: Path) -> None:
        """Fail-closed recovery: tampered, reordered or duplicate lines raise."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ReplayRejected(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )
                expected = _canonical_hash(
                    event_id, data["event_kind"], data["timestamp_utc"],
                    data["actor_id"], data["payload"], data["prev_hash"],
                )
                if data["event_hash"] != expected:
                    raise InvariantViolation(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected}"
                    )
                if data["prev_hash"] != self.head_hash:
                    raise InvariantViolation(
                        f"Chain broken at line {line_num}: event {event_id}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    prev_hash=data["prev_hash"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event_id)

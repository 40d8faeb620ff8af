"""Audit persistence for the patronage ledger."""

from patronage.persistence.event_log import EventKind, EventLog, EventRecord

__all__ = ["EventKind", "EventLog", "EventRecord"]

"""Flow splitting — per-pair split records and receiver aggregates."""

from patronage.flows.ledger import FlowLedger

__all__ = ["FlowLedger"]

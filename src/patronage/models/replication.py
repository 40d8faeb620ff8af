"""Replication models — cross-domain mint/burn intents and distribution results."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict


class ReplicationAction(int, enum.Enum):
    """Wire values are part of the message format; never renumber."""
    MINT = 0
    BURN = 1


@dataclass(frozen=True)
class ReplicationIntent:
    """A mint or burn to be mirrored on another domain."""
    action: ReplicationAction
    account: str
    collection_id: int


@dataclass(frozen=True)
class DistributionResult:
    """Outcome of an instant pro-rata distribution.

    Invariant: distributed + remainder == requested, and every
    allocation is floor(requested * units_i / total_units).
    """
    index_id: str
    requested: int
    distributed: int
    remainder: int
    total_units: int
    allocations: Dict[str, int] = field(default_factory=dict)

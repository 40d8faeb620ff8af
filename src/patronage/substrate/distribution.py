"""In-memory distribution substrate — named pro-rata indexes.

Each (publisher, index_id) pair is an index holding subscriber unit
shares. A subscription is "pending" until the subscriber approves it;
approved subscribers receive distributions immediately, pending ones
accrue a claimable balance.

Distribution math:
    allocation_i = floor(amount * units_i / total_units)

The truncation remainder stays with the publisher. Value is never
fabricated: the publisher is debited only the sum of allocations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Set, Tuple

from patronage.substrate.streams import InMemoryStreamSubstrate

logger = logging.getLogger(__name__)


@dataclass
class _Index:
    units: Dict[str, int] = field(default_factory=dict)
    approved: Set[str] = field(default_factory=set)
    claimable: Dict[str, int] = field(default_factory=dict)


class InMemoryDistributionSubstrate:
    """Distribution indexes settled through an in-memory stream substrate."""

    def __init__(self, token: InMemoryStreamSubstrate) -> None:
        self._token = token
        self._indexes: Dict[Tuple[str, str], _Index] = {}

    def create_index(self, publisher: str, index_id: str) -> None:
        key = (publisher, index_id)
        if key in self._indexes:
            raise ValueError(f"Index already exists: {publisher}/{index_id}")
        self._indexes[key] = _Index()

    def index_exists(self, publisher: str, index_id: str) -> bool:
        return (publisher, index_id) in self._indexes

    def update_subscription_units(
        self, publisher: str, index_id: str, subscriber: str, units: int
    ) -> None:
        if units < 0:
            raise ValueError(f"Units must be non-negative, got {units}")
        index = self._get(publisher, index_id)
        if units == 0:
            index.units.pop(subscriber, None)
        else:
            index.units[subscriber] = units

    def get_subscription_units(
        self, publisher: str, index_id: str, subscriber: str
    ) -> int:
        return self._get(publisher, index_id).units.get(subscriber, 0)

    def approve_subscription(
        self, publisher: str, index_id: str, subscriber: str
    ) -> None:
        index = self._get(publisher, index_id)
        index.approved.add(subscriber)
        owed = index.claimable.pop(subscriber, 0)
        if owed:
            self._token.transfer(publisher, subscriber, owed)

    def get_index(self, publisher: str, index_id: str) -> Tuple[int, int]:
        index = self._get(publisher, index_id)
        approved = sum(u for s, u in index.units.items() if s in index.approved)
        pending = sum(u for s, u in index.units.items() if s not in index.approved)
        return approved, pending

    def subscribers(self, publisher: str, index_id: str) -> Dict[str, int]:
        return dict(self._get(publisher, index_id).units)

    def claimable(self, publisher: str, index_id: str, subscriber: str) -> int:
        return self._get(publisher, index_id).claimable.get(subscriber, 0)

    def distribute(self, publisher: str, index_id: str, amount: int) -> Dict[str, int]:
        if amount < 0:
            raise ValueError(f"Distribution amount must be non-negative, got {amount}")
        index = self._get(publisher, index_id)
        total_units = sum(index.units.values())
        if total_units == 0 or amount == 0:
            return {}

        allocations = {
            subscriber: amount * units // total_units
            for subscriber, units in index.units.items()
        }
        distributed = sum(allocations.values())
        if distributed > self._token.balance_of(publisher):
            raise ValueError(
                f"Publisher {publisher} cannot fund distribution of {distributed}"
            )

        for subscriber, allocation in allocations.items():
            if allocation == 0:
                continue
            if subscriber in index.approved:
                self._token.transfer(publisher, subscriber, allocation)
            else:
                # Pending share stays with the publisher until claimed.
                index.claimable[subscriber] = (
                    index.claimable.get(subscriber, 0) + allocation
                )
        logger.debug(
            "Distributed %d of %d over %d units on %s/%s",
            distributed, amount, total_units, publisher, index_id,
        )
        return allocations

    def claim(self, publisher: str, index_id: str, subscriber: str) -> int:
        index = self._get(publisher, index_id)
        owed = index.claimable.pop(subscriber, 0)
        if owed:
            self._token.transfer(publisher, subscriber, owed)
        return owed

    def _get(self, publisher: str, index_id: str) -> _Index:
        index = self._indexes.get((publisher, index_id))
        if index is None:
            raise ValueError(f"Unknown index: {publisher}/{index_id}")
        return index

"""Reward ledger — pro-rata distribution indexes per creator identity.

Every creator identity owns one distribution index on the distribution
substrate. Subscribers hold unit shares in it; an instant distribution of
`amount` gives each subscriber floor(amount * units_i / total_units). The
truncation remainder is retained by the publisher, never fabricated or
lost.

Activation gating:
- Live units may only be written for holders that are active for the
  collection (hold its credential, or for a wrapped collection, hold a
  nonzero external balance). The caller decides activeness; this module
  only routes the write.
- Writes for inactive holders land in the interim map, keyed by
  (holder, collection_id), and the collection's interim_units_total is
  adjusted by the same delta.
- On credential mint, the interim entry ports atomically into the live
  index on top of any flat mint reward and is cleared; the collection
  aggregate decreases by the ported amount.
- On credential burn, the live entry is deleted outright. No residual
  value survives a burn.

Invariant: Collection.interim_units_total == sum of interim entries for
that collection.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from patronage.errors import InvariantViolation
from patronage.models.collection import Collection
from patronage.models.replication import DistributionResult
from patronage.substrate.interfaces import DistributionSubstrate

logger = logging.getLogger(__name__)

LIVE = "live"
INTERIM = "interim"


class RewardLedger:
    """Creator distribution indexes plus pre-activation interim units.

    Usage:
        rewards = RewardLedger(ledger_address, distribution)
        rewards.create_index_if_absent("creator-1")
        rewards.update_units("creator-1", subscriber, 100)
        result = rewards.distribute("creator-1", 10_000)
    """

    def __init__(self, publisher: str, distribution: DistributionSubstrate) -> None:
        self._publisher = publisher
        self._distribution = distribution
        self._interim: Dict[Tuple[str, int], int] = {}

    @property
    def publisher(self) -> str:
        return self._publisher

    # ------------------------------------------------------------------
    # Index operations
    # ------------------------------------------------------------------

    def create_index_if_absent(self, creator_id: str) -> bool:
        """Create the creator's index. Returns True if it was created."""
        if self._distribution.index_exists(self._publisher, creator_id):
            return False
        self._distribution.create_index(self._publisher, creator_id)
        logger.info("Created reward index for creator %s", creator_id)
        return True

    def update_units(self, creator_id: str, subscriber: str, units: int) -> None:
        """Upsert a subscriber's share; zero removes the entry entirely."""
        if units < 0:
            raise InvariantViolation(f"Units must be non-negative, got {units}")
        self.create_index_if_absent(creator_id)
        self._distribution.update_subscription_units(
            self._publisher, creator_id, subscriber, units
        )

    def get_units(self, creator_id: str, subscriber: str) -> int:
        if not self._distribution.index_exists(self._publisher, creator_id):
            return 0
        return self._distribution.get_subscription_units(
            self._publisher, creator_id, subscriber
        )

    def get_totals(self, creator_id: str) -> Tuple[int, int]:
        """Return (approved_units, pending_units) for the creator's index."""
        if not self._distribution.index_exists(self._publisher, creator_id):
            return 0, 0
        return self._distribution.get_index(self._publisher, creator_id)

    def distribute(self, creator_id: str, amount: int) -> DistributionResult:
        """Split amount pro-rata over the index as it stands right now."""
        if amount < 0:
            raise InvariantViolation(f"Distribution amount must be non-negative, got {amount}")
        if not self._distribution.index_exists(self._publisher, creator_id):
            raise InvariantViolation(f"No reward index for creator {creator_id}")

        shares = self._distribution.subscribers(self._publisher, creator_id)
        total_units = sum(shares.values())
        allocations = self._distribution.distribute(self._publisher, creator_id, amount)
        distributed = sum(allocations.values())
        if distributed > amount:
            raise InvariantViolation(
                f"Distribution substrate allocated {distributed} of {amount}"
            )
        logger.info(
            "Distributed %d/%d to %d subscribers of %s (remainder %d)",
            distributed, amount, len(allocations), creator_id, amount - distributed,
        )
        return DistributionResult(
            index_id=creator_id,
            requested=amount,
            distributed=distributed,
            remainder=amount - distributed,
            total_units=total_units,
            allocations=dict(allocations),
        )

    # ------------------------------------------------------------------
    # Activation gating
    # ------------------------------------------------------------------

    def accrue(
        self, holder: str, collection: Collection, delta: int, *, active: bool
    ) -> str:
        """Route a unit delta to the live index or the interim map.

        Returns LIVE or INTERIM. Neither side may go negative.
        """
        if delta == 0:
            return LIVE if active else INTERIM
        if active:
            current = self.get_units(collection.creator_id, holder)
            updated = current + delta
            if updated < 0:
                raise InvariantViolation(
                    f"Live units for {holder} would go negative: {current} {delta:+d}"
                )
            self.update_units(collection.creator_id, holder, updated)
            logger.debug("Live units %s/%s: %d → %d", collection.creator_id, holder, current, updated)
            return LIVE

        key = (holder, collection.collection_id)
        current = self._interim.get(key, 0)
        updated = current + delta
        if updated < 0:
            raise InvariantViolation(
                f"Interim units for {holder} in collection "
                f"{collection.collection_id} would go negative: {current} {delta:+d}"
            )
        if updated:
            self._interim[key] = updated
        else:
            self._interim.pop(key, None)
        collection.interim_units_total += delta
        logger.debug(
            "Interim units %s/%d: %d → %d", holder, collection.collection_id, current, updated
        )
        return INTERIM

    def port_interim(self, holder: str, collection: Collection, flat_reward: int) -> int:
        """Move interim units (plus flat_reward) into the live index.

        Returns the interim amount ported.
        """
        if flat_reward < 0:
            raise InvariantViolation(f"Flat reward must be non-negative, got {flat_reward}")
        key = (holder, collection.collection_id)
        pending = self._interim.get(key, 0)
        current = self.get_units(collection.creator_id, holder)
        self.update_units(collection.creator_id, holder, current + flat_reward + pending)
        if pending:
            del self._interim[key]
            collection.interim_units_total -= pending
        logger.info(
            "Activated %s in collection %d: flat %d + interim %d",
            holder, collection.collection_id, flat_reward, pending,
        )
        return pending

    def clear_holder(self, holder: str, collection: Collection) -> None:
        """Delete the holder's live entry outright (credential burned)."""
        if self.get_units(collection.creator_id, holder) == 0:
            return
        self.update_units(collection.creator_id, holder, 0)
        logger.info(
            "Cleared live units for %s in creator index %s", holder, collection.creator_id
        )

    def interim_units(self, holder: str, collection_id: int) -> int:
        return self._interim.get((holder, collection_id), 0)

    def interim_holders(self, collection_id: int) -> List[str]:
        return sorted(h for (h, cid) in self._interim if cid == collection_id)

    def interim_sum(self, collection_id: int) -> int:
        return sum(u for (h, cid), u in self._interim.items() if cid == collection_id)

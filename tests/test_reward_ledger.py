"""Tests for the reward ledger — pro-rata distribution and interim units."""

import random

import pytest

from patronage.errors import InvariantViolation
from patronage.models.collection import Collection
from patronage.rewards.ledger import INTERIM, LIVE, RewardLedger
from patronage.substrate.distribution import InMemoryDistributionSubstrate
from patronage.substrate.streams import InMemoryStreamSubstrate

PUBLISHER = "0xLedger"
CREATOR_ID = "creator-1"


def _rewards(funds: int = 1_000_000):
    streams = InMemoryStreamSubstrate("USDCx")
    if funds:
        streams.mint(PUBLISHER, funds)
    distribution = InMemoryDistributionSubstrate(streams)
    return RewardLedger(PUBLISHER, distribution), distribution, streams


def _collection(collection_id: int = 1) -> Collection:
    return Collection(
        collection_id=collection_id,
        start_id=1,
        available_supply=100,
        creator_id=CREATOR_ID,
        creator_address="0xCreator",
        metadata_uri="",
    )


class TestUnits:
    def test_update_and_read(self) -> None:
        rewards, _, _ = _rewards()
        rewards.update_units(CREATOR_ID, "0xA", 40)
        assert rewards.get_units(CREATOR_ID, "0xA") == 40
        assert rewards.get_totals(CREATOR_ID) == (0, 40)

    def test_zero_removes_entry(self) -> None:
        rewards, distribution, _ = _rewards()
        rewards.update_units(CREATOR_ID, "0xA", 40)
        rewards.update_units(CREATOR_ID, "0xA", 0)
        assert distribution.subscribers(PUBLISHER, CREATOR_ID) == {}

    def test_negative_units_rejected(self) -> None:
        rewards, _, _ = _rewards()
        with pytest.raises(InvariantViolation, match="non-negative"):
            rewards.update_units(CREATOR_ID, "0xA", -1)

    def test_index_created_once(self) -> None:
        rewards, _, _ = _rewards()
        assert rewards.create_index_if_absent(CREATOR_ID)
        assert not rewards.create_index_if_absent(CREATOR_ID)

    def test_unknown_index_reads_zero(self) -> None:
        rewards, _, _ = _rewards()
        assert rewards.get_units("nobody", "0xA") == 0
        assert rewards.get_totals("nobody") == (0, 0)

    def test_approved_units_counted_separately(self) -> None:
        rewards, distribution, _ = _rewards()
        rewards.update_units(CREATOR_ID, "0xA", 10)
        rewards.update_units(CREATOR_ID, "0xB", 30)
        distribution.approve_subscription(PUBLISHER, CREATOR_ID, "0xA")
        assert rewards.get_totals(CREATOR_ID) == (10, 30)


class TestDistribution:
    def test_floor_allocation_keeps_remainder(self) -> None:
        rewards, _, _ = _rewards()
        rewards.update_units(CREATOR_ID, "0xA", 1)
        rewards.update_units(CREATOR_ID, "0xB", 2)
        result = rewards.distribute(CREATOR_ID, 10)

        assert result.allocations == {"0xA": 3, "0xB": 6}
        assert result.distributed == 9
        assert result.remainder == 1
        assert result.total_units == 3

    def test_approved_subscriber_is_paid_immediately(self) -> None:
        rewards, distribution, streams = _rewards(funds=100)
        rewards.update_units(CREATOR_ID, "0xA", 1)
        rewards.update_units(CREATOR_ID, "0xB", 1)
        distribution.approve_subscription(PUBLISHER, CREATOR_ID, "0xA")
        rewards.distribute(CREATOR_ID, 100)

        assert streams.balance_of("0xA") == 50
        assert streams.balance_of("0xB") == 0
        assert distribution.claimable(PUBLISHER, CREATOR_ID, "0xB") == 50
        assert distribution.claim(PUBLISHER, CREATOR_ID, "0xB") == 50
        assert streams.balance_of(PUBLISHER) == 0

    def test_empty_index_distributes_nothing(self) -> None:
        rewards, _, _ = _rewards()
        rewards.create_index_if_absent(CREATOR_ID)
        result = rewards.distribute(CREATOR_ID, 500)
        assert result.distributed == 0
        assert result.remainder == 500

    def test_negative_amount_rejected(self) -> None:
        rewards, _, _ = _rewards()
        rewards.create_index_if_absent(CREATOR_ID)
        with pytest.raises(InvariantViolation, match="non-negative"):
            rewards.distribute(CREATOR_ID, -5)

    def test_unknown_index_rejected(self) -> None:
        rewards, _, _ = _rewards()
        with pytest.raises(InvariantViolation, match="No reward index"):
            rewards.distribute("nobody", 5)

    def test_random_distributions_never_fabricate(self) -> None:
        rng = random.Random(7)
        rewards, _, _ = _rewards(funds=10 ** 12)
        for i in range(20):
            rewards.update_units(CREATOR_ID, f"0x{i:02d}", rng.randint(1, 1_000))

        for _ in range(50):
            amount = rng.randint(0, 10 ** 6)
            result = rewards.distribute(CREATOR_ID, amount)
            assert result.distributed + result.remainder == amount
            for account, allocation in result.allocations.items():
                units = rewards.get_units(CREATOR_ID, account)
                assert allocation == amount * units // result.total_units


class TestInterim:
    def test_inactive_holder_accrues_interim(self) -> None:
        rewards, _, _ = _rewards()
        collection = _collection()
        assert rewards.accrue("0xA", collection, 50, active=False) == INTERIM
        assert rewards.interim_units("0xA", 1) == 50
        assert collection.interim_units_total == 50
        assert rewards.get_units(CREATOR_ID, "0xA") == 0

    def test_active_holder_accrues_live(self) -> None:
        rewards, _, _ = _rewards()
        collection = _collection()
        assert rewards.accrue("0xA", collection, 50, active=True) == LIVE
        assert rewards.get_units(CREATOR_ID, "0xA") == 50
        assert collection.interim_units_total == 0

    def test_negative_interim_rejected(self) -> None:
        rewards, _, _ = _rewards()
        collection = _collection()
        rewards.accrue("0xA", collection, 10, active=False)
        with pytest.raises(InvariantViolation, match="would go negative"):
            rewards.accrue("0xA", collection, -11, active=False)
        assert rewards.interim_units("0xA", 1) == 10

    def test_port_moves_interim_into_live(self) -> None:
        rewards, _, _ = _rewards()
        collection = _collection()
        rewards.accrue("0xA", collection, 50, active=False)
        rewards.accrue("0xB", collection, 20, active=False)

        ported = rewards.port_interim("0xA", collection, flat_reward=100)

        assert ported == 50
        assert rewards.get_units(CREATOR_ID, "0xA") == 150
        assert rewards.interim_units("0xA", 1) == 0
        assert rewards.interim_holders(1) == ["0xB"]
        assert collection.interim_units_total == 20

    def test_clear_holder_deletes_live_entry(self) -> None:
        rewards, distribution, _ = _rewards()
        collection = _collection()
        rewards.accrue("0xA", collection, 75, active=True)
        rewards.clear_holder("0xA", collection)
        assert "0xA" not in distribution.subscribers(PUBLISHER, CREATOR_ID)

    def test_aggregate_matches_entries(self) -> None:
        rng = random.Random(11)
        rewards, _, _ = _rewards()
        collection = _collection()
        holders = [f"0x{i:02d}" for i in range(8)]
        for _ in range(200):
            holder = rng.choice(holders)
            if rng.random() < 0.2:
                rewards.port_interim(holder, collection, flat_reward=0)
            else:
                current = rewards.interim_units(holder, 1)
                delta = rng.randint(-current, 40)
                rewards.accrue(holder, collection, delta, active=False)
            assert collection.interim_units_total == rewards.interim_sum(1)

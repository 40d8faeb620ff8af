"""Reward ledger — pro-rata indexes and interim unit accrual."""

from patronage.rewards.ledger import INTERIM, LIVE, RewardLedger

__all__ = ["RewardLedger", "LIVE", "INTERIM"]

"""Patronage ledger — subscription streams, membership credentials and creator rewards."""

__version__ = "0.1.0"

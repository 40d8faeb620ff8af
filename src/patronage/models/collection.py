"""Collection models — credential windows, supply counters, wrapped pointers.

Each collection owns a contiguous, non-overlapping window of token ids:

    [start_id, start_id + available_supply)

The first collection starts at 1; every later window begins where the
previous one ends. Wrapped collections have an empty window because they
never mint tokens of their own.

Supply invariant: total_supply + total_redeemed <= available_supply.
Burned slots are never reused, so redeemed tokens still count against
the cap.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


# Mint sentinel: returned instead of a token id when a mint is a no-op.
NO_TOKEN = 0

FIRST_TOKEN_ID = 1


class ExternalKind(str, enum.Enum):
    """Shape of an external credential source behind a wrapped collection."""
    SINGLE_OWNER = "single_owner"
    MULTI_BALANCE = "multi_balance"


@dataclass
class Collection:
    """A credential collection owned by a creator identity."""
    collection_id: int
    start_id: int
    available_supply: int
    creator_id: str
    creator_address: str
    metadata_uri: str
    total_supply: int = 0
    total_redeemed: int = 0
    interim_units_total: int = 0
    is_wrapped: bool = False

    @property
    def window_end(self) -> int:
        """First token id past this collection's window."""
        return self.start_id + self.available_supply

    @property
    def is_exhausted(self) -> bool:
        return self.total_supply + self.total_redeemed >= self.available_supply

    def next_token_id(self) -> int:
        """Token id the next successful mint will receive."""
        return self.start_id + self.total_supply + self.total_redeemed


@dataclass(frozen=True)
class WrappedCollection:
    """Passthrough pointer at an external credential source.

    external_source: address of the external contract.
    external_kind: how balances are queried there.
    pointed_id: token/collection id at the external source.
    linked_id: the local collection id this wrapper occupies.
    """
    external_source: str
    external_kind: ExternalKind
    pointed_id: int
    linked_id: int


@dataclass(frozen=True)
class SupplyConfig:
    """Requested supply for a new collection (None → platform default)."""
    available_supply: Optional[int] = None

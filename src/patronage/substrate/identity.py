"""In-memory identity registry and external credential sources."""

from __future__ import annotations

from typing import Dict, Optional, Tuple


class InMemoryIdentityRegistry:
    """Maps external profile identifiers to their controlling account."""

    def __init__(self) -> None:
        self._controllers: Dict[str, str] = {}

    def register(self, creator_id: str, controller: str) -> None:
        self._controllers[creator_id] = controller

    def controller_of(self, creator_id: str) -> Optional[str]:
        return self._controllers.get(creator_id)


class InMemorySingleOwnerSource:
    """External source where each id has exactly one owner."""

    def __init__(self) -> None:
        self._owners: Dict[int, str] = {}

    def set_owner(self, external_id: int, owner: Optional[str]) -> None:
        if owner is None:
            self._owners.pop(external_id, None)
        else:
            self._owners[external_id] = owner

    def owner_of(self, external_id: int) -> Optional[str]:
        return self._owners.get(external_id)


class InMemoryMultiBalanceSource:
    """External source where accounts hold balances per id."""

    def __init__(self) -> None:
        self._balances: Dict[Tuple[str, int], int] = {}

    def set_balance(self, account: str, external_id: int, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Balance must be non-negative, got {amount}")
        self._balances[(account, external_id)] = amount

    def balance_of(self, account: str, external_id: int) -> int:
        return self._balances.get((account, external_id), 0)

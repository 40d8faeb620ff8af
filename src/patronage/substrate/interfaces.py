"""Collaborator contracts — the external systems the ledger consumes.

The ledger never talks to a concrete stream protocol, identity registry,
distribution protocol, scheduler or message relay directly. Each is a
Protocol here; production adapters and the in-memory reference
implementations in this package both satisfy them. Swapping a backend
requires zero changes to the flow ledger, coordinator, reward ledger,
registry or replicator.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, Tuple, runtime_checkable

from patronage.models.flow import FlowEvent


# App hook signature: the substrate calls this for every mutation of a
# flow whose receiver is a registered app. Raising aborts the mutation.
AppHook = Callable[[FlowEvent], None]


@runtime_checkable
class StreamSubstrate(Protocol):
    """Rate-based payments between accounts in one settlement asset."""

    @property
    def asset(self) -> str:
        ...

    def create_flow(
        self, sender: str, receiver: str, rate: int, *,
        by: str, payload: Optional[bytes] = None,
    ) -> None:
        ...

    def update_flow(
        self, sender: str, receiver: str, rate: int, *,
        by: str, payload: Optional[bytes] = None,
    ) -> None:
        ...

    def delete_flow(
        self, sender: str, receiver: str, *,
        by: str, payload: Optional[bytes] = None,
    ) -> None:
        ...

    def get_flow_rate(self, sender: str, receiver: str) -> int:
        ...

    def net_flow_rate(self, account: str) -> int:
        ...

    def balance_of(self, account: str) -> int:
        ...

    def transfer(self, sender: str, receiver: str, amount: int) -> None:
        ...

    def authorize_operator(self, sender: str, operator: str) -> None:
        ...

    def revoke_operator(self, sender: str, operator: str) -> None:
        ...

    def is_operator(self, sender: str, operator: str) -> bool:
        ...

    def register_app(self, address: str, hook: AppHook) -> None:
        ...


@runtime_checkable
class IdentityRegistry(Protocol):
    """Resolves an external profile identifier to its controlling account."""

    def controller_of(self, creator_id: str) -> Optional[str]:
        ...


@runtime_checkable
class DistributionSubstrate(Protocol):
    """Named pro-rata indexes with subscriber unit shares."""

    def create_index(self, publisher: str, index_id: str) -> None:
        ...

    def index_exists(self, publisher: str, index_id: str) -> bool:
        ...

    def update_subscription_units(
        self, publisher: str, index_id: str, subscriber: str, units: int
    ) -> None:
        ...

    def get_subscription_units(
        self, publisher: str, index_id: str, subscriber: str
    ) -> int:
        ...

    def get_index(self, publisher: str, index_id: str) -> Tuple[int, int]:
        """Return (total_units_approved, total_units_pending)."""
        ...

    def subscribers(self, publisher: str, index_id: str) -> dict:
        """Return {subscriber: units} for every nonzero share."""
        ...

    def distribute(self, publisher: str, index_id: str, amount: int) -> dict:
        """Distribute amount pro-rata; return {subscriber: allocation}."""
        ...


@runtime_checkable
class TaskScheduler(Protocol):
    """Time-delayed conditional callbacks."""

    def create_task(
        self,
        check: Callable[[], bool],
        execute: Callable[[], None],
        delay: int,
    ) -> str:
        ...

    def cancel_task(self, task_id: str) -> None:
        ...


@runtime_checkable
class MessageRelay(Protocol):
    """Asynchronous cross-domain payload delivery."""

    @property
    def address(self) -> str:
        ...

    def quote(self, dest_domain: int, payload: bytes, gas_limit: int) -> int:
        ...

    def dispatch(
        self,
        source_domain: int,
        source_address: str,
        dest_domain: int,
        payload: bytes,
        *,
        fee: int,
        refund_to: str,
        gas_limit: int,
    ) -> int:
        """Queue payload for delivery; return the relay sequence number."""
        ...


@runtime_checkable
class SingleOwnerSource(Protocol):
    """External source where each id has exactly one owner."""

    def owner_of(self, external_id: int) -> Optional[str]:
        ...


@runtime_checkable
class MultiBalanceSource(Protocol):
    """External source where accounts hold balances per id."""

    def balance_of(self, account: str, external_id: int) -> int:
        ...

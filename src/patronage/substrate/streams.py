"""In-memory stream substrate — continuous per-second payments.

Balances are realtime: every flow moves `rate` units per elapsed second
from sender to receiver. Balances are settled lazily against the shared
ManualClock before any read or mutation.

Flows toward a registered app address trigger the app's hook after the
substrate has applied the change. If the hook raises, the substrate
restores its complete pre-call state (rates, balances, operators) and
re-raises, so a rejected subscription leaves no trace anywhere.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Set, Tuple

from patronage.models.flow import FlowEvent, FlowEventKind, ZERO_ADDRESS
from patronage.substrate.clock import ManualClock
from patronage.substrate.interfaces import AppHook

logger = logging.getLogger(__name__)


class StreamError(ValueError):
    """Raised for invalid stream operations on the substrate itself."""


class InMemoryStreamSubstrate:
    """Single-asset stream substrate with app callbacks and operators.

    Usage:
        clock = ManualClock()
        streams = InMemoryStreamSubstrate("USDCx", clock)
        streams.mint("0xSender", 1_000_000)
        streams.create_flow("0xSender", "0xReceiver", 10, by="0xSender")
        clock.advance(60)
        streams.balance_of("0xReceiver")  # 600
    """

    def __init__(self, asset: str, clock: Optional[ManualClock] = None) -> None:
        self._asset = asset
        self._clock = clock or ManualClock()
        self._rates: Dict[Tuple[str, str], int] = {}
        self._balances: Dict[str, int] = {}
        self._operators: Set[Tuple[str, str]] = set()
        self._apps: Dict[str, AppHook] = {}
        self._settled_at = self._clock.now()

    @property
    def asset(self) -> str:
        return self._asset

    @property
    def clock(self) -> ManualClock:
        return self._clock

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def mint(self, account: str, amount: int) -> None:
        """Credit test/demo funds to an account."""
        if amount <= 0:
            raise StreamError(f"Mint amount must be positive, got {amount}")
        self._settle()
        self._balances[account] = self._balances.get(account, 0) + amount

    def balance_of(self, account: str) -> int:
        self._settle()
        return self._balances.get(account, 0)

    def transfer(self, sender: str, receiver: str, amount: int) -> None:
        if amount <= 0:
            raise StreamError(f"Transfer amount must be positive, got {amount}")
        self._settle()
        available = self._balances.get(sender, 0)
        if amount > available:
            raise StreamError(
                f"Insufficient balance: {sender} has {available}, needs {amount}"
            )
        self._balances[sender] = available - amount
        self._balances[receiver] = self._balances.get(receiver, 0) + amount

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def get_flow_rate(self, sender: str, receiver: str) -> int:
        return self._rates.get((sender, receiver), 0)

    def net_flow_rate(self, account: str) -> int:
        inflow = sum(r for (s, t), r in self._rates.items() if t == account)
        outflow = sum(r for (s, t), r in self._rates.items() if s == account)
        return inflow - outflow

    def flows_from(self, sender: str) -> Dict[str, int]:
        return {t: r for (s, t), r in self._rates.items() if s == sender}

    def flows_to(self, receiver: str) -> Dict[str, int]:
        return {s: r for (s, t), r in self._rates.items() if t == receiver}

    def create_flow(
        self, sender: str, receiver: str, rate: int, *,
        by: str, payload: Optional[bytes] = None,
    ) -> None:
        self._check_actor(sender, by)
        if rate <= 0:
            raise StreamError(f"Flow rate must be positive, got {rate}")
        if receiver in (ZERO_ADDRESS, sender):
            raise StreamError(f"Invalid flow receiver: {receiver}")
        if (sender, receiver) in self._rates:
            raise StreamError(f"Flow already exists: {sender} → {receiver}")
        self._mutate(
            sender, receiver, rate,
            FlowEvent(
                kind=FlowEventKind.CREATED, sender=sender, asset=self._asset,
                old_rate=0, new_rate=rate, payload=payload, initiator=by,
            ),
        )

    def update_flow(
        self, sender: str, receiver: str, rate: int, *,
        by: str, payload: Optional[bytes] = None,
    ) -> None:
        self._check_actor(sender, by)
        if rate <= 0:
            raise StreamError(f"Flow rate must be positive, got {rate}")
        old = self._rates.get((sender, receiver))
        if old is None:
            raise StreamError(f"No flow to update: {sender} → {receiver}")
        self._mutate(
            sender, receiver, rate,
            FlowEvent(
                kind=FlowEventKind.UPDATED, sender=sender, asset=self._asset,
                old_rate=old, new_rate=rate, payload=payload, initiator=by,
            ),
        )

    def delete_flow(
        self, sender: str, receiver: str, *,
        by: str, payload: Optional[bytes] = None,
    ) -> None:
        # Either end of a flow may close it; operators act for the sender.
        if by != receiver:
            self._check_actor(sender, by)
        old = self._rates.get((sender, receiver))
        if old is None:
            raise StreamError(f"No flow to delete: {sender} → {receiver}")
        self._mutate(
            sender, receiver, 0,
            FlowEvent(
                kind=FlowEventKind.TERMINATED, sender=sender, asset=self._asset,
                old_rate=old, new_rate=0, payload=payload, initiator=by,
            ),
        )

    # ------------------------------------------------------------------
    # Operators and apps
    # ------------------------------------------------------------------

    def authorize_operator(self, sender: str, operator: str) -> None:
        self._operators.add((sender, operator))

    def revoke_operator(self, sender: str, operator: str) -> None:
        self._operators.discard((sender, operator))

    def is_operator(self, sender: str, operator: str) -> bool:
        return (sender, operator) in self._operators

    def register_app(self, address: str, hook: AppHook) -> None:
        if address in self._apps:
            raise StreamError(f"App already registered: {address}")
        self._apps[address] = hook

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_actor(self, sender: str, by: str) -> None:
        if by != sender and not self.is_operator(sender, by):
            raise StreamError(f"{by} may not modify flows of {sender}")

    def _mutate(
        self, sender: str, receiver: str, rate: int, event: FlowEvent
    ) -> None:
        self._settle()
        snapshot = (
            dict(self._rates),
            dict(self._balances),
            set(self._operators),
        )
        if rate:
            self._rates[(sender, receiver)] = rate
        else:
            del self._rates[(sender, receiver)]

        hook = self._apps.get(receiver)
        if hook is None:
            return
        try:
            hook(event)
        except Exception:
            self._rates, self._balances, self._operators = snapshot
            logger.debug(
                "App %s rejected %s flow from %s; substrate state restored",
                receiver, event.kind.value, sender,
            )
            raise

    def _settle(self) -> None:
        now = self._clock.now()
        elapsed = now - self._settled_at
        if elapsed <= 0:
            return
        for (sender, receiver), rate in self._rates.items():
            moved = rate * elapsed
            self._balances[sender] = self._balances.get(sender, 0) - moved
            self._balances[receiver] = self._balances.get(receiver, 0) + moved
        self._settled_at = now

"""In-memory message relay — asynchronous cross-domain delivery.

Dispatch queues an envelope and returns a per-source sequence number.
Nothing is delivered until the test or simulation calls deliver() or
deliver_all(), so callers can reorder, drop or re-deliver envelopes to
exercise replay protection and reordering tolerance.

Each envelope carries a unique delivery id derived from the source
domain, source address and sequence number (keccak-256, as on the
production relay).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from web3 import Web3

logger = logging.getLogger(__name__)


# Receiver callback: (caller, source_domain, source_address, payload, delivery_id)
Receiver = Callable[[str, int, str, bytes, str], None]


@dataclass(frozen=True)
class Envelope:
    source_domain: int
    source_address: str
    dest_domain: int
    payload: bytes
    sequence: int
    delivery_id: str
    gas_limit: int


class InsufficientFee(ValueError):
    """Raised when the attached fee is below the delivery quote."""


class InMemoryMessageRelay:
    """Relay shared by every domain in a simulation.

    Usage:
        relay = InMemoryMessageRelay(relay_address)
        relay.register_domain(2, receiver.receive)
        seq = relay.dispatch(1, sender_addr, 2, payload, fee=q, refund_to=a, gas_limit=g)
        relay.deliver_all()
    """

    def __init__(
        self,
        address: str,
        base_fee: int = 1_000,
        fee_per_byte: int = 10,
    ) -> None:
        self._address = address
        self._base_fee = base_fee
        self._fee_per_byte = fee_per_byte
        self._receivers: Dict[int, Receiver] = {}
        self._queue: List[Envelope] = []
        self._delivered: List[Envelope] = []
        self._sequences: Dict[tuple, int] = {}
        self.refunds: Dict[str, int] = {}
        self.fees_collected = 0

    @property
    def address(self) -> str:
        return self._address

    def register_domain(self, domain_id: int, receiver: Receiver) -> None:
        self._receivers[domain_id] = receiver

    def quote(self, dest_domain: int, payload: bytes, gas_limit: int) -> int:
        if dest_domain not in self._receivers:
            raise ValueError(f"Unknown destination domain: {dest_domain}")
        return self._base_fee + self._fee_per_byte * len(payload) + gas_limit // 1_000

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
        required = self.quote(dest_domain, payload, gas_limit)
        if fee < required:
            raise InsufficientFee(f"Relay fee {fee} below quote {required}")
        excess = fee - required
        if excess:
            self.refunds[refund_to] = self.refunds.get(refund_to, 0) + excess
        self.fees_collected += required

        key = (source_domain, source_address)
        sequence = self._sequences.get(key, 0) + 1
        self._sequences[key] = sequence
        delivery_id = Web3.keccak(
            text=f"{source_domain}:{source_address}:{sequence}"
        ).hex()
        self._queue.append(Envelope(
            source_domain=source_domain,
            source_address=source_address,
            dest_domain=dest_domain,
            payload=payload,
            sequence=sequence,
            delivery_id=delivery_id,
            gas_limit=gas_limit,
        ))
        return sequence

    @property
    def pending(self) -> List[Envelope]:
        return list(self._queue)

    @property
    def delivered(self) -> List[Envelope]:
        return list(self._delivered)

    def deliver(self, envelope: Envelope, caller: Optional[str] = None) -> None:
        """Deliver one envelope (queued or previously delivered).

        caller defaults to the relay's own address; passing another value
        simulates a spoofed delivery.
        """
        receiver = self._receivers.get(envelope.dest_domain)
        if receiver is None:
            raise ValueError(f"Unknown destination domain: {envelope.dest_domain}")
        if envelope in self._queue:
            self._queue.remove(envelope)
        receiver(
            caller or self._address,
            envelope.source_domain,
            envelope.source_address,
            envelope.payload,
            envelope.delivery_id,
        )
        self._delivered.append(envelope)

    def deliver_all(self, reverse: bool = False) -> int:
        """Deliver every queued envelope; reverse=True delivers newest first."""
        batch = list(reversed(self._queue)) if reverse else list(self._queue)
        for envelope in batch:
            self.deliver(envelope)
        return len(batch)

"""Subscription payload — the out-of-band data a sender attaches to a stream.

ABI layout: (address receiver, uint256 collection_id, uint256 duration).
A missing or undecodable payload is an InvariantViolation: the ledger
cannot route a stream without knowing its receiver.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from patronage.errors import InvariantViolation

PAYLOAD_TYPES = ["address", "uint256", "uint256"]


@dataclass(frozen=True)
class SubscriptionPayload:
    receiver: str
    collection_id: int
    duration: int = 0

    def encode(self) -> bytes:
        if self.collection_id < 0 or self.duration < 0:
            raise InvariantViolation("Collection id and duration must be non-negative")
        return encode(
            PAYLOAD_TYPES,
            [Web3.to_checksum_address(self.receiver), self.collection_id, self.duration],
        )

    @classmethod
    def decode(cls, payload: Optional[bytes]) -> SubscriptionPayload:
        if not payload:
            raise InvariantViolation("Missing subscription payload")
        try:
            receiver, collection_id, duration = decode(PAYLOAD_TYPES, payload)
        except (DecodingError, ValueError) as exc:
            raise InvariantViolation(f"Malformed subscription payload: {exc}") from exc
        return cls(
            receiver=Web3.to_checksum_address(receiver),
            collection_id=collection_id,
            duration=duration,
        )

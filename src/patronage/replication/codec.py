"""Replication wire format — ABI-encoded (uint8 action, address account, uint256 collection).

The encoding is the one the relay carries between domains, so both sides
must agree on it byte for byte. Decoding rejects unknown actions and
malformed payloads with InvariantViolation.
"""

from __future__ import annotations

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from patronage.errors import InvariantViolation
from patronage.models.replication import ReplicationAction, ReplicationIntent

INTENT_TYPES = ["uint8", "address", "uint256"]


def encode_intent(intent: ReplicationIntent) -> bytes:
    if intent.collection_id < 0:
        raise InvariantViolation(f"Negative collection id: {intent.collection_id}")
    return encode(
        INTENT_TYPES,
        [int(intent.action), Web3.to_checksum_address(intent.account), intent.collection_id],
    )


def decode_intent(payload: bytes) -> ReplicationIntent:
    try:
        action, account, collection_id = decode(INTENT_TYPES, payload)
    except (DecodingError, ValueError) as exc:
        raise InvariantViolation(f"Malformed replication payload: {exc}") from exc
    try:
        parsed = ReplicationAction(action)
    except ValueError as exc:
        raise InvariantViolation(f"Unknown replication action: {action}") from exc
    return ReplicationIntent(
        action=parsed,
        account=Web3.to_checksum_address(account),
        collection_id=collection_id,
    )

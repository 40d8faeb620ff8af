"""Cross-domain replication of credential mints and burns."""

from patronage.replication.codec import decode_intent, encode_intent
from patronage.replication.replicator import (
    AppliedIntent,
    ReplicationReceiver,
    ReplicationSender,
)

__all__ = [
    "decode_intent",
    "encode_intent",
    "AppliedIntent",
    "ReplicationReceiver",
    "ReplicationSender",
]

"""External collaborators — contracts and in-memory reference backends."""

from patronage.substrate.clock import ManualClock
from patronage.substrate.distribution import InMemoryDistributionSubstrate
from patronage.substrate.identity import (
    InMemoryIdentityRegistry,
    InMemoryMultiBalanceSource,
    InMemorySingleOwnerSource,
)
from patronage.substrate.interfaces import (
    DistributionSubstrate,
    IdentityRegistry,
    MessageRelay,
    MultiBalanceSource,
    SingleOwnerSource,
    StreamSubstrate,
    TaskScheduler,
)
from patronage.substrate.relay import Envelope, InMemoryMessageRelay
from patronage.substrate.scheduler import InMemoryTaskScheduler
from patronage.substrate.streams import InMemoryStreamSubstrate, StreamError

__all__ = [
    "ManualClock",
    "InMemoryDistributionSubstrate",
    "InMemoryIdentityRegistry",
    "InMemoryMultiBalanceSource",
    "InMemorySingleOwnerSource",
    "DistributionSubstrate",
    "IdentityRegistry",
    "MessageRelay",
    "MultiBalanceSource",
    "SingleOwnerSource",
    "StreamSubstrate",
    "TaskScheduler",
    "Envelope",
    "InMemoryMessageRelay",
    "InMemoryTaskScheduler",
    "InMemoryStreamSubstrate",
    "StreamError",
]

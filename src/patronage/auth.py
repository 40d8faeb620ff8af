"""Capability table — explicit principal → permission mapping.

There is no ambient authority in the ledger. Each engine receives the
table at construction and asks it whether the acting principal holds a
capability; nothing consults global flags or singleton owners.

Capabilities:
- ADMIN: administrative setters, pause, fee withdrawal.
- VERIFIED_MINTER: may mint credentials directly.
- COORDINATOR: the subscription coordinator; mints and burns with
  reward-ledger effects deferred to its own apply phase.
- REPLICATOR: the cross-domain receiver; mints and burns on behalf of
  remote holders.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, FrozenSet, Iterable, List, Optional

from patronage.errors import AuthorizationFailure

logger = logging.getLogger(__name__)


class Capability(str, enum.Enum):
    ADMIN = "admin"
    VERIFIED_MINTER = "verified_minter"
    COORDINATOR = "coordinator"
    REPLICATOR = "replicator"


# Capabilities that may mint or burn credentials.
MINTING_CAPABILITIES: FrozenSet[Capability] = frozenset({
    Capability.VERIFIED_MINTER,
    Capability.COORDINATOR,
    Capability.REPLICATOR,
})

BURNING_CAPABILITIES: FrozenSet[Capability] = frozenset({
    Capability.COORDINATOR,
    Capability.REPLICATOR,
})


class CapabilityTable:
    """Mutable principal → capability set mapping.

    Usage:
        table = CapabilityTable()
        table.grant(admin_address, Capability.ADMIN)
        table.require(caller, Capability.ADMIN)
    """

    def __init__(self, grants: Optional[Dict[str, Iterable[Capability]]] = None) -> None:
        self._grants: Dict[str, FrozenSet[Capability]] = {}
        for principal, caps in (grants or {}).items():
            for cap in caps:
                self.grant(principal, cap)

    def grant(self, principal: str, capability: Capability) -> None:
        current = self._grants.get(principal, frozenset())
        self._grants[principal] = current | {capability}
        logger.info("Granted %s to %s", capability.value, principal)

    def revoke(self, principal: str, capability: Capability) -> None:
        current = self._grants.get(principal, frozenset())
        remaining = current - {capability}
        if remaining:
            self._grants[principal] = remaining
        else:
            self._grants.pop(principal, None)
        if capability in current:
            logger.info("Revoked %s from %s", capability.value, principal)

    def has(self, principal: str, capability: Capability) -> bool:
        return capability in self._grants.get(principal, frozenset())

    def has_any(self, principal: str, capabilities: FrozenSet[Capability]) -> bool:
        return bool(self._grants.get(principal, frozenset()) & capabilities)

    def capabilities_of(self, principal: str) -> FrozenSet[Capability]:
        return self._grants.get(principal, frozenset())

    def principals_with(self, capability: Capability) -> List[str]:
        return sorted(p for p, caps in self._grants.items() if capability in caps)

    def require(self, principal: str, capability: Capability) -> None:
        """Raise AuthorizationFailure unless principal holds capability."""
        if not self.has(principal, capability):
            raise AuthorizationFailure(
                f"{principal} lacks capability '{capability.value}'"
            )

    def require_any(
        self, principal: str, capabilities: FrozenSet[Capability], action: str
    ) -> None:
        if not self.has_any(principal, capabilities):
            allowed = ", ".join(sorted(c.value for c in capabilities))
            raise AuthorizationFailure(
                f"{principal} may not {action} (requires one of: {allowed})"
            )

"""Collection registry — credential collections, supply and permissions.

Collections are created by the account that controls a creator identity
(resolved through the identity registry). Ids are assigned sequentially
from 1 and never reused; each collection owns the token-id window that
starts where the previous collection's window ends. Creating a collection
also points the creator's "active collection" at it, overwriting any
earlier pointer.

Credentials are non-transferable. At most one credential exists per
(holder, collection).

Mint outcomes (never raises for capacity):
- already minted, wrapped collection, or supply exhausted → NO_TOKEN
- otherwise the next id in the collection window

Reward side effects:
- Direct mints by verified minters credit the flat mint reward plus any
  interim units immediately.
- The subscription coordinator and the replication receiver defer those
  effects to their own apply phase (settle_mint_reward / direct credit).
- Burns zero the holder's live units unless invoked by the coordinator,
  which clears them itself after the flow change is applied.

Wrapped collections point at an external credential source and never
mint. Their balance queries proxy to the source.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple, Union

from patronage.auth import (
    BURNING_CAPABILITIES,
    Capability,
    CapabilityTable,
    MINTING_CAPABILITIES,
)
from patronage.config import LedgerSettings
from patronage.errors import AuthorizationFailure, InvariantViolation
from patronage.models.collection import (
    Collection,
    ExternalKind,
    FIRST_TOKEN_ID,
    NO_TOKEN,
    SupplyConfig,
    WrappedCollection,
)
from patronage.rewards.ledger import RewardLedger
from patronage.substrate.interfaces import (
    IdentityRegistry,
    MultiBalanceSource,
    SingleOwnerSource,
)

logger = logging.getLogger(__name__)

ExternalSource = Union[SingleOwnerSource, MultiBalanceSource]


class CollectionRegistry:
    """Collection lifecycle, credential ownership and supply accounting.

    Usage:
        registry = CollectionRegistry(settings, capabilities, identity, rewards)
        collection = registry.create_collection(creator_addr, "creator-1")
        token_id = registry.mint(minter_addr, holder, collection.collection_id)
    """

    def __init__(
        self,
        settings: LedgerSettings,
        capabilities: CapabilityTable,
        identity: IdentityRegistry,
        rewards: RewardLedger,
    ) -> None:
        self._settings = settings
        self._capabilities = capabilities
        self._identity = identity
        self._rewards = rewards
        self._collections: Dict[int, Collection] = {}
        self._wrapped: Dict[int, WrappedCollection] = {}
        self._sources: Dict[str, Tuple[ExternalKind, ExternalSource]] = {}
        self._active: Dict[str, int] = {}
        self._owners: Dict[int, str] = {}
        self._minted: Dict[Tuple[str, int], int] = {}
        self._next_collection_id = 1

    # ------------------------------------------------------------------
    # Collection lifecycle
    # ------------------------------------------------------------------

    def create_collection(
        self,
        caller: str,
        creator_id: str,
        supply: Optional[SupplyConfig] = None,
        metadata_uri: str = "",
    ) -> Collection:
        """Create a collection for a creator identity the caller controls."""
        self._require_controller(caller, creator_id)
        requested = supply.available_supply if supply is not None else None
        if requested is not None and requested <= 0:
            raise InvariantViolation(f"Collection supply must be positive, got {requested}")
        available = requested or self._settings.default_collection_supply

        collection = self._new_collection(
            caller, creator_id, available, metadata_uri, is_wrapped=False
        )
        logger.info(
            "Created collection %d for %s: tokens [%d, %d)",
            collection.collection_id, creator_id, collection.start_id, collection.window_end,
        )
        return collection

    def register_source(
        self, address: str, kind: ExternalKind, source: ExternalSource
    ) -> None:
        """Make an external credential source available for wrapping."""
        if kind == ExternalKind.SINGLE_OWNER and not isinstance(source, SingleOwnerSource):
            raise InvariantViolation(f"Source {address} does not expose owner_of")
        if kind == ExternalKind.MULTI_BALANCE and not isinstance(source, MultiBalanceSource):
            raise InvariantViolation(f"Source {address} does not expose balance_of")
        self._sources[address] = (kind, source)

    def create_wrapped_collection(
        self,
        caller: str,
        creator_id: str,
        external_source: str,
        external_kind: ExternalKind,
        pointed_id: int,
        metadata_uri: str = "",
    ) -> Tuple[Collection, WrappedCollection]:
        """Register a passthrough collection over an external source."""
        self._require_controller(caller, creator_id)
        registered = self._sources.get(external_source)
        if registered is None:
            raise InvariantViolation(f"Unknown external source: {external_source}")
        if registered[0] != external_kind:
            raise InvariantViolation(
                f"Source {external_source} is {registered[0].value}, "
                f"not {external_kind.value}"
            )

        collection = self._new_collection(
            caller, creator_id, 0, metadata_uri, is_wrapped=True
        )
        wrapped = WrappedCollection(
            external_source=external_source,
            external_kind=external_kind,
            pointed_id=pointed_id,
            linked_id=collection.collection_id,
        )
        self._wrapped[collection.collection_id] = wrapped
        logger.info(
            "Created wrapped collection %d → %s #%d (%s)",
            collection.collection_id, external_source, pointed_id, external_kind.value,
        )
        return collection, wrapped

    def _new_collection(
        self,
        caller: str,
        creator_id: str,
        available: int,
        metadata_uri: str,
        is_wrapped: bool,
    ) -> Collection:
        collection_id = self._next_collection_id
        prior = self._collections.get(collection_id - 1)
        start_id = prior.window_end if prior is not None else FIRST_TOKEN_ID
        collection = Collection(
            collection_id=collection_id,
            start_id=start_id,
            available_supply=available,
            creator_id=creator_id,
            creator_address=caller,
            metadata_uri=metadata_uri,
            is_wrapped=is_wrapped,
        )
        self._collections[collection_id] = collection
        self._next_collection_id += 1
        self._active[creator_id] = collection_id
        self._rewards.create_index_if_absent(creator_id)
        return collection

    def set_metadata_uri(self, caller: str, collection_id: int, metadata_uri: str) -> None:
        collection = self.get_collection(collection_id)
        self._require_controller(caller, collection.creator_id)
        collection.metadata_uri = metadata_uri

    def set_active_collection(self, caller: str, creator_id: str, collection_id: int) -> None:
        self._require_controller(caller, creator_id)
        collection = self.get_collection(collection_id)
        if collection.creator_id != creator_id:
            raise AuthorizationFailure(
                f"Collection {collection_id} belongs to {collection.creator_id}, "
                f"not {creator_id}"
            )
        self._active[creator_id] = collection_id

    def active_collection(self, creator_id: str) -> Optional[int]:
        return self._active.get(creator_id)

    # ------------------------------------------------------------------
    # Mint / burn
    # ------------------------------------------------------------------

    def mint(self, caller: str, account: str, collection_id: int) -> int:
        """Mint a credential; NO_TOKEN when the mint is a no-op."""
        self._capabilities.require_any(caller, MINTING_CAPABILITIES, "mint credentials")
        collection = self.get_collection(collection_id)

        if collection.is_wrapped:
            logger.warning("Mint skipped: collection %d is wrapped", collection_id)
            return NO_TOKEN
        if (account, collection_id) in self._minted:
            logger.warning(
                "Mint skipped: %s already holds collection %d", account, collection_id
            )
            return NO_TOKEN
        if collection.is_exhausted:
            logger.warning("Mint skipped: collection %d supply exhausted", collection_id)
            return NO_TOKEN

        token_id = collection.next_token_id()
        collection.total_supply += 1
        self._owners[token_id] = account
        self._minted[(account, collection_id)] = token_id
        logger.info("Minted token %d of collection %d to %s", token_id, collection_id, account)

        if not self._defers_rewards(caller):
            self.settle_mint_reward(account, collection_id)
        return token_id

    def settle_mint_reward(self, account: str, collection_id: int) -> int:
        """Credit flat mint reward plus ported interim units. Returns ported interim."""
        collection = self.get_collection(collection_id)
        if not self.has_credential(account, collection_id):
            raise InvariantViolation(
                f"{account} holds no credential for collection {collection_id}"
            )
        return self._rewards.port_interim(account, collection, self._settings.mint_reward)

    def burn(self, caller: str, account: str, collection_id: int) -> int:
        """Burn the holder's credential. Returns the burned token id."""
        self._capabilities.require_any(caller, BURNING_CAPABILITIES, "burn credentials")
        collection = self.get_collection(collection_id)
        token_id = self._minted.get((account, collection_id))
        if token_id is None:
            raise InvariantViolation(
                f"{account} holds no credential for collection {collection_id}"
            )

        collection.total_supply -= 1
        collection.total_redeemed += 1
        del self._minted[(account, collection_id)]
        del self._owners[token_id]
        logger.info("Burned token %d of collection %d from %s", token_id, collection_id, account)

        if not self._capabilities.has(caller, Capability.COORDINATOR):
            self._rewards.clear_holder(account, collection)
        return token_id

    def transfer(self, caller: str, token_id: int, to: str) -> None:
        raise AuthorizationFailure("Credentials are non-transferable")

    def _defers_rewards(self, caller: str) -> bool:
        return self._capabilities.has_any(
            caller, frozenset({Capability.COORDINATOR, Capability.REPLICATOR})
        )

    # ------------------------------------------------------------------
    # Rewards routed through activation gating
    # ------------------------------------------------------------------

    def credit_action(
        self, caller: str, holder: str, collection_id: int, action: str
    ) -> str:
        """Credit reward-per-action units to holder; returns LIVE or INTERIM."""
        self._capabilities.require_any(caller, MINTING_CAPABILITIES, "credit rewards")
        units = self._settings.reward_for(action)
        if units <= 0:
            raise InvariantViolation(f"No reward configured for action '{action}'")
        return self.credit_units(holder, collection_id, units)

    def credit_units(self, holder: str, collection_id: int, units: int) -> str:
        collection = self.get_collection(collection_id)
        return self._rewards.accrue(
            holder, collection, units, active=self.has_credential(holder, collection_id)
        )

    def activate_wrapped_holder(self, holder: str, collection_id: int) -> int:
        """Port interim units for a holder of a wrapped collection.

        Wrapped collections never mint, so activation happens when the
        holder acquires an external balance. Returns units ported.
        """
        collection = self.get_collection(collection_id)
        if not collection.is_wrapped:
            raise InvariantViolation(f"Collection {collection_id} is not wrapped")
        if not self.has_credential(holder, collection_id):
            raise InvariantViolation(
                f"{holder} holds no external balance for collection {collection_id}"
            )
        return self._rewards.port_interim(holder, collection, 0)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_collection(self, collection_id: int) -> Collection:
        collection = self._collections.get(collection_id)
        if collection is None:
            raise InvariantViolation(f"Unknown collection ID: {collection_id}")
        return collection

    def collection_exists(self, collection_id: int) -> bool:
        return collection_id in self._collections

    def collections(self) -> List[Collection]:
        return [self._collections[cid] for cid in sorted(self._collections)]

    def wrapped(self, collection_id: int) -> Optional[WrappedCollection]:
        return self._wrapped.get(collection_id)

    def balance_of(self, account: str, collection_id: int) -> int:
        wrapped = self._wrapped.get(collection_id)
        if wrapped is None:
            self.get_collection(collection_id)
            return 1 if (account, collection_id) in self._minted else 0
        kind, source = self._sources[wrapped.external_source]
        if kind == ExternalKind.SINGLE_OWNER:
            return 1 if source.owner_of(wrapped.pointed_id) == account else 0
        return source.balance_of(account, wrapped.pointed_id)

    def has_credential(self, account: str, collection_id: int) -> bool:
        return self.balance_of(account, collection_id) > 0

    def owner_of(self, token_id: int) -> Optional[str]:
        return self._owners.get(token_id)

    def token_of(self, account: str, collection_id: int) -> Optional[int]:
        return self._minted.get((account, collection_id))

    def _require_controller(self, caller: str, creator_id: str) -> None:
        controller = self._identity.controller_of(creator_id)
        if controller is None or controller != caller:
            raise AuthorizationFailure(
                f"{caller} does not control creator identity {creator_id}"
            )

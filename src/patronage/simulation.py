"""End-to-end scenarios on in-memory substrates.

Used by `patronage simulate` and by the integration tests. Each scenario
builds fresh collaborators, drives a realistic subscription lifecycle and
returns a JSON-serialisable summary.

local:  one domain; credentials and rewards settle next to the streams.
remote: streams on domain 1, credentials and rewards on domain 2, kept in
        sync through the message relay (including a replayed delivery).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict

from web3 import Web3

from patronage.config import LedgerConfig
from patronage.errors import ReplayRejected
from patronage.models.flow import CreatorFee
from patronage.service import Collaborators, PatronageService
from patronage.subscriptions.payload import SubscriptionPayload
from patronage.substrate.clock import ManualClock
from patronage.substrate.relay import InMemoryMessageRelay

logger = logging.getLogger(__name__)


def address(tag: int) -> str:
    """Deterministic checksummed address for scenario actors."""
    return Web3.to_checksum_address("0x" + f"{tag:02x}" * 20)


ADMIN = address(0x0A)
LEDGER = address(0x1E)
REWARD_LEDGER = address(0x2E)
REPLICATOR = address(0x2F)
RELAY = address(0x3E)
CREATOR = address(0xC1)
SENDER = address(0x51)

CREATOR_ID = "creator-1"


def run_local(config: LedgerConfig) -> Dict[str, Any]:
    clock = ManualClock()
    collaborators = Collaborators.in_memory(config.settlement_asset, clock)
    service = PatronageService.build(
        replace(config, reward_domain=None),
        collaborators,
        ledger_address=LEDGER,
        admin_address=ADMIN,
    )
    streams = collaborators.streams
    identity = collaborators.identity

    identity.register(CREATOR_ID, CREATOR)
    created = service.create_collection(CREATOR, CREATOR_ID, available_supply=100)
    collection_id = created.data["collection_id"]
    service.set_creator_fee(CREATOR, CREATOR, CreatorFee(500, 0, burn_on_unsubscribe=True))

    streams.mint(SENDER, 10_000_000)
    payload = SubscriptionPayload(CREATOR, collection_id).encode()
    streams.create_flow(SENDER, LEDGER, 1_000, by=SENDER, payload=payload)
    clock.advance(60)
    streams.update_flow(SENDER, LEDGER, 2_000, by=SENDER, payload=payload)
    service.set_verified_minter(ADMIN, ADMIN, True)
    service.credit_action(ADMIN, SENDER, collection_id, "referral")
    clock.advance(60)

    rewards = service.rewards
    units_before_exit = rewards.get_units(CREATOR_ID, SENDER)
    distribution = service.distribute(ADMIN, CREATOR_ID, 1_000)
    streams.delete_flow(SENDER, LEDGER, by=SENDER)

    return {
        "scenario": "local",
        "collection_id": collection_id,
        "units_before_exit": units_before_exit,
        "units_after_exit": rewards.get_units(CREATOR_ID, SENDER),
        "distribution": distribution.data,
        "creator_balance": streams.balance_of(CREATOR),
        "status": service.status(),
        "audit_chain_intact": service.event_log.verify(),
    }


def run_remote(config: LedgerConfig) -> Dict[str, Any]:
    clock = ManualClock()
    relay = InMemoryMessageRelay(RELAY)

    reward_side = Collaborators.in_memory(config.settlement_asset, clock)
    reward_service = PatronageService.build(
        replace(config, domain_id=2, reward_domain=None),
        reward_side,
        ledger_address=REWARD_LEDGER,
        admin_address=ADMIN,
    )
    reward_service.attach_replication_receiver(REPLICATOR, relay.address)
    relay.register_domain(2, reward_service.on_replication_delivery)
    reward_service.register_replication_sender(ADMIN, 1, LEDGER)

    identity = reward_side.identity
    identity.register(CREATOR_ID, CREATOR)
    collection_id = reward_service.create_collection(CREATOR, CREATOR_ID).data["collection_id"]

    stream_side = Collaborators.in_memory(config.settlement_asset, clock, relay=relay)
    stream_service = PatronageService.build(
        replace(config, domain_id=1, reward_domain=2),
        stream_side,
        ledger_address=LEDGER,
        admin_address=ADMIN,
    )
    streams = stream_side.streams
    streams.mint(SENDER, 10_000_000)

    payload = SubscriptionPayload(CREATOR, collection_id).encode()
    streams.create_flow(SENDER, LEDGER, 1_000, by=SENDER, payload=payload)
    first = relay.pending[0]
    relay.deliver_all()

    registry = reward_service.registry
    rewards = reward_service.rewards
    held_after_mint = registry.has_credential(SENDER, collection_id)
    units_after_mint = rewards.get_units(CREATOR_ID, SENDER)

    replay_rejected = False
    try:
        relay.deliver(first)
    except ReplayRejected:
        replay_rejected = True

    streams.delete_flow(SENDER, LEDGER, by=SENDER)
    relay.deliver_all()

    return {
        "scenario": "remote",
        "collection_id": collection_id,
        "held_after_mint": held_after_mint,
        "units_after_mint": units_after_mint,
        "replay_rejected": replay_rejected,
        "held_after_burn": registry.has_credential(SENDER, collection_id),
        "units_after_burn": rewards.get_units(CREATOR_ID, SENDER),
        "relay_fees_collected": relay.fees_collected,
        "stream_domain": stream_service.status(),
        "reward_domain": reward_service.status(),
    }


SCENARIOS = {
    "local": run_local,
    "remote": run_remote,
}

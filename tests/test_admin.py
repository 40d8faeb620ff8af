"""Tests for the administrative surface — capability checks and bounds."""

import logging

import pytest

from patronage.admin import LedgerAdmin
from patronage.auth import Capability, CapabilityTable
from patronage.config import LedgerConfig, LedgerSettings
from patronage.errors import AuthorizationFailure, InvariantViolation
from patronage.models.flow import CreatorFee
from patronage.substrate.streams import InMemoryStreamSubstrate

ADMIN = "0xAdmin"
LEDGER = "0xLedger"
CREATOR = "0xCreator"
STRANGER = "0xStranger"


def _admin():
    settings = LedgerSettings.from_config(LedgerConfig.defaults())
    capabilities = CapabilityTable({ADMIN: [Capability.ADMIN]})
    streams = InMemoryStreamSubstrate("USDCx")
    return LedgerAdmin(settings, capabilities, streams, LEDGER), capabilities, streams


class TestProtocolSettings:
    def test_fee_within_bounds(self) -> None:
        admin, _, _ = _admin()
        admin.set_protocol_fee_percent(ADMIN, 20)
        assert admin.settings.protocol_fee_percent == 20
        admin.set_protocol_fee_percent(ADMIN, 0)
        assert admin.settings.protocol_fee_percent == 0

    def test_fee_out_of_bounds(self) -> None:
        admin, _, _ = _admin()
        with pytest.raises(InvariantViolation, match="Protocol fee"):
            admin.set_protocol_fee_percent(ADMIN, 21)
        assert admin.settings.protocol_fee_percent == 10

    def test_setters_require_admin(self) -> None:
        admin, _, _ = _admin()
        with pytest.raises(AuthorizationFailure, match="lacks capability 'admin'"):
            admin.set_protocol_fee_percent(STRANGER, 5)
        with pytest.raises(AuthorizationFailure):
            admin.set_settlement_asset(STRANGER, "DAIx")
        with pytest.raises(AuthorizationFailure):
            admin.pause(STRANGER)

    def test_settlement_asset(self) -> None:
        admin, _, _ = _admin()
        admin.set_settlement_asset(ADMIN, "DAIx")
        assert admin.settings.settlement_asset == "DAIx"
        with pytest.raises(InvariantViolation, match="non-empty"):
            admin.set_settlement_asset(ADMIN, "")

    def test_pause_toggle(self) -> None:
        admin, _, _ = _admin()
        admin.pause(ADMIN)
        assert admin.settings.paused
        admin.unpause(ADMIN)
        assert not admin.settings.paused


class TestCreatorFees:
    def test_receiver_sets_own_fee(self) -> None:
        admin, _, _ = _admin()
        fee = CreatorFee(rate=800, min_duration=3600, burn_on_unsubscribe=True)
        admin.set_creator_fee(CREATOR, CREATOR, fee)
        assert admin.settings.creator_fee(CREATOR) == fee

    def test_admin_sets_any_fee(self) -> None:
        admin, _, _ = _admin()
        admin.set_creator_fee(ADMIN, CREATOR, CreatorFee(1, 1))
        assert admin.settings.creator_fee(CREATOR).rate == 1

    def test_stranger_cannot_set_fee(self) -> None:
        admin, _, _ = _admin()
        with pytest.raises(AuthorizationFailure, match="may not change the creator fee"):
            admin.set_creator_fee(STRANGER, CREATOR, CreatorFee(1, 1))

    def test_negative_fee_rejected(self) -> None:
        admin, _, _ = _admin()
        with pytest.raises(InvariantViolation, match="non-negative"):
            admin.set_creator_fee(CREATOR, CREATOR, CreatorFee(-1, 0))

    def test_clear_reverts_to_default(self) -> None:
        admin, _, _ = _admin()
        fee = CreatorFee(rate=800, min_duration=0)
        admin.set_creator_fee(CREATOR, CREATOR, fee)
        assert admin.clear_creator_fee(CREATOR, CREATOR) == fee
        assert admin.settings.creator_fee(CREATOR) == admin.settings.default_creator_fee
        assert admin.clear_creator_fee(CREATOR, CREATOR) is None


class TestMintersAndRewards:
    def test_verified_minter_toggle(self) -> None:
        admin, capabilities, _ = _admin()
        admin.set_verified_minter(ADMIN, "0xMinter", True)
        assert capabilities.has("0xMinter", Capability.VERIFIED_MINTER)
        admin.set_verified_minter(ADMIN, "0xMinter", False)
        assert capabilities.capabilities_of("0xMinter") == frozenset()

    def test_action_reward_table(self) -> None:
        admin, _, _ = _admin()
        admin.set_action_reward(ADMIN, "share", 5)
        assert admin.settings.reward_for("share") == 5
        admin.set_action_reward(ADMIN, "share", None)
        assert admin.settings.reward_for("share") == 0

    def test_mint_reward_cannot_be_removed(self) -> None:
        admin, _, _ = _admin()
        with pytest.raises(InvariantViolation, match="cannot be removed"):
            admin.set_action_reward(ADMIN, "mint", None)
        admin.set_action_reward(ADMIN, "mint", 0)
        assert admin.settings.mint_reward == 0

    def test_negative_reward_rejected(self) -> None:
        admin, _, _ = _admin()
        with pytest.raises(InvariantViolation, match=">= 0"):
            admin.set_action_reward(ADMIN, "share", -1)


class TestWithdrawFees:
    def test_withdraw_returns_remaining(self) -> None:
        admin, _, streams = _admin()
        streams.mint(LEDGER, 1_000)
        assert admin.withdraw_fees(ADMIN, "0xTreasury", 400) == 600
        assert streams.balance_of("0xTreasury") == 400

    def test_withdraw_more_than_balance(self) -> None:
        admin, _, streams = _admin()
        streams.mint(LEDGER, 100)
        with pytest.raises(InvariantViolation, match="exceeds ledger balance"):
            admin.withdraw_fees(ADMIN, "0xTreasury", 101)

    def test_withdraw_non_positive(self) -> None:
        admin, _, _ = _admin()
        with pytest.raises(InvariantViolation, match="must be positive"):
            admin.withdraw_fees(ADMIN, "0xTreasury", 0)

    def test_withdraw_requires_admin(self) -> None:
        admin, _, streams = _admin()
        streams.mint(LEDGER, 100)
        with pytest.raises(AuthorizationFailure):
            admin.withdraw_fees(STRANGER, STRANGER, 50)


class TestCapabilityTable:
    def test_grant_and_revoke_are_logged(self, caplog) -> None:
        table = CapabilityTable()
        with caplog.at_level(logging.INFO, logger="patronage.auth"):
            table.grant(CREATOR, Capability.VERIFIED_MINTER)
            table.revoke(CREATOR, Capability.VERIFIED_MINTER)
            table.revoke(CREATOR, Capability.VERIFIED_MINTER)

        messages = [r.getMessage() for r in caplog.records]
        assert messages == [
            f"Granted verified_minter to {CREATOR}",
            f"Revoked verified_minter from {CREATOR}",
        ]
        assert not table.has(CREATOR, Capability.VERIFIED_MINTER)

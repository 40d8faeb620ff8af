"""Administrative surface — runtime settings, verified minters, fee withdrawal.

Every setter requires the ADMIN capability, except set_creator_fee and
clear_creator_fee, which a receiver may also call for its own entry.
Changes apply to the next operation: engines read the shared
LedgerSettings object on every call and never cache it.

Bounds:
- protocol fee percent in [0, MAX_PROTOCOL_FEE_PERCENT]
- creator fee rate and min_duration non-negative
- the mint reward cannot be removed from the action table
"""

from __future__ import annotations

import logging
from typing import Optional

from patronage.auth import Capability, CapabilityTable
from patronage.config import LedgerSettings, MAX_PROTOCOL_FEE_PERCENT, MINT_ACTION
from patronage.errors import AuthorizationFailure, InvariantViolation
from patronage.models.flow import CreatorFee
from patronage.substrate.interfaces import StreamSubstrate

logger = logging.getLogger(__name__)


class LedgerAdmin:
    """Capability-checked setters over the shared LedgerSettings.

    Usage:
        admin = LedgerAdmin(settings, capabilities, streams, ledger_address)
        admin.set_protocol_fee_percent(admin_addr, 5)
        admin.set_creator_fee(creator_addr, creator_addr, CreatorFee(800, 3600))
    """

    def __init__(
        self,
        settings: LedgerSettings,
        capabilities: CapabilityTable,
        streams: StreamSubstrate,
        ledger_address: str,
    ) -> None:
        self._settings = settings
        self._capabilities = capabilities
        self._streams = streams
        self._ledger_address = ledger_address

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    def set_protocol_fee_percent(self, caller: str, percent: int) -> None:
        self._capabilities.require(caller, Capability.ADMIN)
        if not 0 <= percent <= MAX_PROTOCOL_FEE_PERCENT:
            raise InvariantViolation(
                f"Protocol fee must be in [0, {MAX_PROTOCOL_FEE_PERCENT}]%, got {percent}"
            )
        old = self._settings.protocol_fee_percent
        self._settings.protocol_fee_percent = percent
        logger.info("Protocol fee changed: %d%% → %d%%", old, percent)

    def set_settlement_asset(self, caller: str, asset: str) -> None:
        self._capabilities.require(caller, Capability.ADMIN)
        if not asset:
            raise InvariantViolation("Settlement asset must be non-empty")
        self._settings.settlement_asset = asset
        logger.info("Settlement asset set to %s", asset)

    def set_creator_fee(self, caller: str, receiver: str, fee: CreatorFee) -> None:
        self._require_self_or_admin(caller, receiver)
        if fee.rate < 0 or fee.min_duration < 0:
            raise InvariantViolation(
                f"Creator fee must be non-negative, got rate={fee.rate} "
                f"min_duration={fee.min_duration}"
            )
        self._settings.creator_fees[receiver] = fee
        logger.info(
            "Creator fee for %s: rate %d, min duration %ds, burn %s",
            receiver, fee.rate, fee.min_duration, fee.burn_on_unsubscribe,
        )

    def clear_creator_fee(self, caller: str, receiver: str) -> Optional[CreatorFee]:
        """Revert receiver to the platform default. Returns the removed entry."""
        self._require_self_or_admin(caller, receiver)
        return self._settings.creator_fees.pop(receiver, None)

    def set_verified_minter(self, caller: str, account: str, enabled: bool) -> None:
        self._capabilities.require(caller, Capability.ADMIN)
        if enabled:
            self._capabilities.grant(account, Capability.VERIFIED_MINTER)
        else:
            self._capabilities.revoke(account, Capability.VERIFIED_MINTER)
        logger.info("Verified minter %s: %s", account, "enabled" if enabled else "disabled")

    def set_action_reward(self, caller: str, action: str, units: Optional[int]) -> None:
        """Set the reward for an action; None removes it."""
        self._capabilities.require(caller, Capability.ADMIN)
        if units is None:
            if action == MINT_ACTION:
                raise InvariantViolation("The mint reward cannot be removed")
            self._settings.action_rewards.pop(action, None)
            return
        if units < 0:
            raise InvariantViolation(f"Reward for '{action}' must be >= 0, got {units}")
        self._settings.action_rewards[action] = units

    def pause(self, caller: str) -> None:
        self._capabilities.require(caller, Capability.ADMIN)
        self._settings.paused = True
        logger.warning("Ledger paused by %s", caller)

    def unpause(self, caller: str) -> None:
        self._capabilities.require(caller, Capability.ADMIN)
        self._settings.paused = False
        logger.info("Ledger unpaused by %s", caller)

    def withdraw_fees(self, caller: str, to: str, amount: int) -> int:
        """Transfer accrued ledger balance out. Returns the remaining balance."""
        self._capabilities.require(caller, Capability.ADMIN)
        if amount <= 0:
            raise InvariantViolation(f"Withdrawal amount must be positive, got {amount}")
        balance = self._streams.balance_of(self._ledger_address)
        if amount > balance:
            raise InvariantViolation(
                f"Withdrawal of {amount} exceeds ledger balance {balance}"
            )
        self._streams.transfer(self._ledger_address, to, amount)
        logger.info("Withdrew %d in fees to %s", amount, to)
        return balance - amount

    def _require_self_or_admin(self, caller: str, receiver: str) -> None:
        if caller == receiver or self._capabilities.has(caller, Capability.ADMIN):
            return
        raise AuthorizationFailure(
            f"{caller} may not change the creator fee of {receiver}"
        )

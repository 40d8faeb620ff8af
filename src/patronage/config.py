"""Ledger configuration — static parameters and the mutable runtime settings.

LedgerConfig is the frozen, file-backed starting point. It is loaded from
config/ledger_params.json and may be overridden from the environment
(a .env file at the project root is read first via python-dotenv).

LedgerSettings is the live copy the administrative surface edits: fee
percentage, accepted settlement asset, per-creator policy, reward table
and pause flag. Engines hold a reference to the settings object and read
it on every operation, so admin changes apply to the next call.

Bounds:
- protocol_fee_percent is in [0, MAX_PROTOCOL_FEE_PERCENT].
- action_rewards must contain MINT_ACTION.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from patronage.errors import InvariantViolation
from patronage.models.flow import CreatorFee


MAX_PROTOCOL_FEE_PERCENT = 20
MINT_ACTION = "mint"

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
CONFIG_FILENAME = "ledger_params.json"

ENV_PREFIX = "PATRONAGE_"


@dataclass(frozen=True)
class LedgerConfig:
    """Static ledger parameters.

    reward_domain is None when the reward ledger and collection registry
    live on this domain; otherwise it names the domain they are
    replicated to.
    """
    protocol_fee_percent: int
    settlement_asset: str
    default_creator_fee: CreatorFee
    default_collection_supply: int
    action_rewards: Dict[str, int]
    domain_id: int = 1
    reward_domain: Optional[int] = None
    relay_gas_limit: int = 300_000

    @classmethod
    def defaults(cls) -> LedgerConfig:
        """In-code defaults matching the shipped ledger_params.json."""
        return cls(
            protocol_fee_percent=10,
            settlement_asset="USDCx",
            default_creator_fee=CreatorFee(rate=500, min_duration=0),
            default_collection_supply=10_000,
            action_rewards={MINT_ACTION: 100, "renewal": 25, "referral": 50},
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LedgerConfig:
        fee = data.get("default_creator_fee", {})
        return cls(
            protocol_fee_percent=int(data["protocol_fee_percent"]),
            settlement_asset=str(data["settlement_asset"]),
            default_creator_fee=CreatorFee(
                rate=int(fee.get("rate", 0)),
                min_duration=int(fee.get("min_duration", 0)),
                burn_on_unsubscribe=bool(fee.get("burn_on_unsubscribe", False)),
            ),
            default_collection_supply=int(data["default_collection_supply"]),
            action_rewards={k: int(v) for k, v in data.get("action_rewards", {}).items()},
            domain_id=int(data.get("domain_id", 1)),
            reward_domain=(
                int(data["reward_domain"])
                if data.get("reward_domain") is not None
                else None
            ),
            relay_gas_limit=int(data.get("relay_gas_limit", 300_000)),
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path = DEFAULT_CONFIG_DIR) -> LedgerConfig:
        """Load from <config_dir>/ledger_params.json."""
        path = config_dir / CONFIG_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_dict(json.load(handle))

    def with_env_overrides(self, env_file: Optional[Path] = None) -> LedgerConfig:
        """Return a copy with PATRONAGE_* environment overrides applied.

        Reads env_file (or a .env found by python-dotenv) without
        overriding variables already set in the process environment.
        """
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        overrides: Dict[str, Any] = {}
        fee = os.getenv(f"{ENV_PREFIX}PROTOCOL_FEE_PERCENT")
        if fee is not None:
            overrides["protocol_fee_percent"] = int(fee)
        asset = os.getenv(f"{ENV_PREFIX}SETTLEMENT_ASSET")
        if asset:
            overrides["settlement_asset"] = asset
        domain = os.getenv(f"{ENV_PREFIX}DOMAIN_ID")
        if domain is not None:
            overrides["domain_id"] = int(domain)
        reward_domain = os.getenv(f"{ENV_PREFIX}REWARD_DOMAIN")
        if reward_domain is not None:
            overrides["reward_domain"] = int(reward_domain) if reward_domain else None
        return replace(self, **overrides) if overrides else self

    @property
    def rewards_are_remote(self) -> bool:
        return self.reward_domain is not None and self.reward_domain != self.domain_id

    def validate(self) -> List[str]:
        """Check configuration invariants. Returns violations (empty = OK)."""
        errors: List[str] = []
        if not 0 <= self.protocol_fee_percent <= MAX_PROTOCOL_FEE_PERCENT:
            errors.append(
                f"protocol_fee_percent must be in [0, {MAX_PROTOCOL_FEE_PERCENT}], "
                f"got {self.protocol_fee_percent}"
            )
        if not self.settlement_asset:
            errors.append("settlement_asset must be set")
        if self.default_creator_fee.rate < 0:
            errors.append("default_creator_fee.rate must be >= 0")
        if self.default_creator_fee.min_duration < 0:
            errors.append("default_creator_fee.min_duration must be >= 0")
        if self.default_collection_supply <= 0:
            errors.append("default_collection_supply must be > 0")
        if MINT_ACTION not in self.action_rewards:
            errors.append(f"action_rewards missing '{MINT_ACTION}' entry")
        for action, reward in self.action_rewards.items():
            if reward < 0:
                errors.append(f"action_rewards[{action}] must be >= 0")
        if self.relay_gas_limit <= 0:
            errors.append("relay_gas_limit must be > 0")
        return errors


@dataclass
class LedgerSettings:
    """Live, admin-editable settings shared by every engine."""
    protocol_fee_percent: int
    settlement_asset: str
    default_creator_fee: CreatorFee
    default_collection_supply: int
    action_rewards: Dict[str, int]
    creator_fees: Dict[str, CreatorFee] = field(default_factory=dict)
    paused: bool = False

    @classmethod
    def from_config(cls, config: LedgerConfig) -> LedgerSettings:
        errors = config.validate()
        if errors:
            raise InvariantViolation("Invalid ledger config: " + "; ".join(errors))
        return cls(
            protocol_fee_percent=config.protocol_fee_percent,
            settlement_asset=config.settlement_asset,
            default_creator_fee=config.default_creator_fee,
            default_collection_supply=config.default_collection_supply,
            action_rewards=dict(config.action_rewards),
        )

    def creator_fee(self, receiver: str) -> CreatorFee:
        """Receiver's own policy, or the platform default if unset."""
        return self.creator_fees.get(receiver, self.default_creator_fee)

    def reward_for(self, action: str) -> int:
        """Reward units for an action; unknown actions earn nothing."""
        return self.action_rewards.get(action, 0)

    @property
    def mint_reward(self) -> int:
        return self.reward_for(MINT_ACTION)

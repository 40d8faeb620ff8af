"""Tests for ledger configuration — file loading, validation and env overrides."""

import json
import os
from dataclasses import replace

import pytest

from patronage.config import (
    DEFAULT_CONFIG_DIR,
    LedgerConfig,
    LedgerSettings,
    MINT_ACTION,
)
from patronage.errors import InvariantViolation
from patronage.models.flow import CreatorFee

ENV_KEYS = (
    "PATRONAGE_PROTOCOL_FEE_PERCENT",
    "PATRONAGE_SETTLEMENT_ASSET",
    "PATRONAGE_DOMAIN_ID",
    "PATRONAGE_REWARD_DOMAIN",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield
    # load_dotenv writes straight into os.environ.
    for key in ENV_KEYS:
        os.environ.pop(key, None)


class TestLoading:
    def test_shipped_file_matches_defaults(self) -> None:
        assert LedgerConfig.from_config_dir(DEFAULT_CONFIG_DIR) == LedgerConfig.defaults()

    def test_from_dict_optional_fields(self) -> None:
        config = LedgerConfig.from_dict({
            "protocol_fee_percent": 5,
            "settlement_asset": "DAIx",
            "default_collection_supply": 50,
            "action_rewards": {"mint": 10},
        })
        assert config.default_creator_fee == CreatorFee(rate=0, min_duration=0)
        assert config.domain_id == 1
        assert config.reward_domain is None
        assert not config.rewards_are_remote

    def test_from_config_dir(self, tmp_path) -> None:
        data = {
            "protocol_fee_percent": 3,
            "settlement_asset": "USDCx",
            "default_creator_fee": {"rate": 10, "min_duration": 60, "burn_on_unsubscribe": True},
            "default_collection_supply": 7,
            "action_rewards": {"mint": 1},
            "domain_id": 1,
            "reward_domain": 2,
        }
        (tmp_path / "ledger_params.json").write_text(json.dumps(data), encoding="utf-8")
        config = LedgerConfig.from_config_dir(tmp_path)

        assert config.default_creator_fee.burn_on_unsubscribe
        assert config.rewards_are_remote

    def test_same_reward_domain_is_local(self) -> None:
        config = replace(LedgerConfig.defaults(), domain_id=4, reward_domain=4)
        assert not config.rewards_are_remote


class TestValidation:
    def test_defaults_are_valid(self) -> None:
        assert LedgerConfig.defaults().validate() == []

    def test_fee_out_of_bounds(self) -> None:
        config = replace(LedgerConfig.defaults(), protocol_fee_percent=21)
        errors = config.validate()
        assert any("protocol_fee_percent" in e for e in errors)

    def test_mint_reward_required(self) -> None:
        config = replace(LedgerConfig.defaults(), action_rewards={"referral": 5})
        assert any(MINT_ACTION in e for e in config.validate())

    def test_negative_reward(self) -> None:
        config = replace(LedgerConfig.defaults(), action_rewards={"mint": 1, "bad": -1})
        assert any("action_rewards[bad]" in e for e in config.validate())

    def test_settings_refuse_invalid_config(self) -> None:
        config = replace(LedgerConfig.defaults(), default_collection_supply=0)
        with pytest.raises(InvariantViolation, match="Invalid ledger config"):
            LedgerSettings.from_config(config)


class TestSettings:
    def test_creator_fee_falls_back_to_default(self) -> None:
        settings = LedgerSettings.from_config(LedgerConfig.defaults())
        own = CreatorFee(rate=800, min_duration=3600)
        settings.creator_fees["0xCreator"] = own

        assert settings.creator_fee("0xCreator") == own
        assert settings.creator_fee("0xOther") == settings.default_creator_fee

    def test_reward_table(self) -> None:
        settings = LedgerSettings.from_config(LedgerConfig.defaults())
        assert settings.mint_reward == 100
        assert settings.reward_for("referral") == 50
        assert settings.reward_for("unknown") == 0

    def test_settings_do_not_alias_config(self) -> None:
        config = LedgerConfig.defaults()
        settings = LedgerSettings.from_config(config)
        settings.action_rewards["mint"] = 1
        assert config.action_rewards["mint"] == 100


class TestEnvOverrides:
    def test_process_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("PATRONAGE_PROTOCOL_FEE_PERCENT", "7")
        monkeypatch.setenv("PATRONAGE_REWARD_DOMAIN", "2")
        config = LedgerConfig.defaults().with_env_overrides()

        assert config.protocol_fee_percent == 7
        assert config.reward_domain == 2
        assert config.rewards_are_remote

    def test_empty_reward_domain_means_local(self, monkeypatch) -> None:
        monkeypatch.setenv("PATRONAGE_REWARD_DOMAIN", "")
        base = replace(LedgerConfig.defaults(), reward_domain=2)
        assert base.with_env_overrides().reward_domain is None

    def test_no_overrides_returns_same_config(self) -> None:
        config = LedgerConfig.defaults()
        assert config.with_env_overrides() is config

    def test_env_file(self, tmp_path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            "PATRONAGE_SETTLEMENT_ASSET=DAIx\nPATRONAGE_DOMAIN_ID=5\n", encoding="utf-8"
        )
        config = LedgerConfig.defaults().with_env_overrides(env_file)

        assert config.settlement_asset == "DAIx"
        assert config.domain_id == 5

    def test_process_environment_wins_over_env_file(self, tmp_path, monkeypatch) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("PATRONAGE_PROTOCOL_FEE_PERCENT=2\n", encoding="utf-8")
        monkeypatch.setenv("PATRONAGE_PROTOCOL_FEE_PERCENT", "4")
        config = LedgerConfig.defaults().with_env_overrides(env_file)
        assert config.protocol_fee_percent == 4

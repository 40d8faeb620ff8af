#!/usr/bin/env python3
"""Ledger invariant checks against the shipped configuration.

Static checks read config/ledger_params.json directly. Dynamic checks
run the in-memory scenarios and verify the accounting invariants hold
at the end of each run.
"""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "ledger_params.json"

sys.path.insert(0, str(ROOT / "src"))

from patronage.config import LedgerConfig, MAX_PROTOCOL_FEE_PERCENT, MINT_ACTION  # noqa: E402
from patronage.simulation import run_local, run_remote  # noqa: E402


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_params(params: dict, errors: list) -> None:
    fee = params["protocol_fee_percent"]
    if not 0 <= fee <= MAX_PROTOCOL_FEE_PERCENT:
        errors.append(f"protocol_fee_percent must be in [0, {MAX_PROTOCOL_FEE_PERCENT}], got {fee}")
    rewards = params.get("action_rewards", {})
    if MINT_ACTION not in rewards:
        errors.append("action_rewards must define a mint reward")
    if any(v < 0 for v in rewards.values()):
        errors.append("action_rewards must be non-negative")
    if params["default_collection_supply"] <= 0:
        errors.append("default_collection_supply must be > 0")
    reward_domain = params.get("reward_domain")
    if reward_domain is not None and reward_domain == params.get("domain_id"):
        errors.append("reward_domain must differ from domain_id (use null for local rewards)")


def check_scenarios(config: LedgerConfig, errors: list) -> None:
    local = run_local(config)
    if local["status"]["drift"]:
        errors.append(f"local: receiver aggregates drifted: {local['status']['drift']}")
    if not local["audit_chain_intact"]:
        errors.append("local: audit chain broken")
    if local["units_after_exit"] != 0:
        errors.append("local: reward units survived a credential burn")
    for collection in local["status"]["collections"]:
        used = collection["total_supply"] + collection["total_redeemed"]
        if used > collection["available_supply"]:
            errors.append(f"local: collection {collection['collection_id']} over cap")

    remote = run_remote(config)
    if not remote["replay_rejected"]:
        errors.append("remote: replayed delivery was applied")
    if remote["held_after_burn"] or remote["units_after_burn"]:
        errors.append("remote: replicated burn left credential or units behind")


def check() -> int:
    params = load_json(PARAMS_PATH)
    errors: list = []

    check_params(params, errors)
    config = LedgerConfig.from_dict(params)
    errors.extend(config.validate())
    if not errors:
        check_scenarios(config, errors)

    if errors:
        print(f"Invariant check FAILED ({len(errors)} errors):")
        for error in errors:
            print(f"  - {error}")
        return 1
    print("All ledger invariants hold.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())

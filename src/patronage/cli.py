"""Patronage CLI — inspect configuration and run ledger scenarios.

Usage:
    python -m patronage.cli show-config
    python -m patronage.cli check-config
    python -m patronage.cli split --rate 1000
    python -m patronage.cli simulate --scenario remote
    python -m patronage.cli --env-file .env.staging show-config

PATRONAGE_* variables (from the environment or a .env file) override
values in config/ledger_params.json.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from patronage.config import DEFAULT_CONFIG_DIR, LedgerConfig, LedgerSettings
from patronage.errors import LedgerError
from patronage.flows.ledger import FlowLedger
from patronage.simulation import SCENARIOS
from patronage.substrate.streams import InMemoryStreamSubstrate


def _load_config(args: argparse.Namespace) -> LedgerConfig:
    config = LedgerConfig.from_config_dir(args.config)
    return config.with_env_overrides(args.env_file)


def cmd_show_config(args: argparse.Namespace) -> int:
    config = _load_config(args)
    data = asdict(config)
    data["rewards_are_remote"] = config.rewards_are_remote
    print(json.dumps(data, indent=2))
    return 0


def cmd_check_config(args: argparse.Namespace) -> int:
    config = _load_config(args)
    errors = config.validate()
    if errors:
        print(f"Configuration check FAILED ({len(errors)} errors):", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return 1
    print("Configuration check passed.")
    return 0


def cmd_split(args: argparse.Namespace) -> int:
    config = _load_config(args)
    try:
        settings = LedgerSettings.from_config(config)
        flows = FlowLedger("ledger", InMemoryStreamSubstrate(config.settlement_asset), settings)
        net, fee = flows.split(args.rate)
    except LedgerError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps({
        "rate": args.rate,
        "protocol_fee_percent": settings.protocol_fee_percent,
        "net": net,
        "fee": fee,
    }, indent=2))
    return 0


def cmd_simulate(args: argparse.Namespace) -> int:
    config = _load_config(args)
    try:
        summary = SCENARIOS[args.scenario](config)
    except LedgerError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(summary, indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patronage",
        description="Patronage ledger — subscription streams and creator rewards",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file with PATRONAGE_* overrides",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log ledger activity to stderr",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("show-config", help="Print the effective configuration")
    sub.add_parser("check-config", help="Validate configuration invariants")

    p_split = sub.add_parser("split", help="Split a gross rate into net and fee")
    p_split.add_argument("--rate", type=int, required=True, help="Gross rate per second")

    p_sim = sub.add_parser("simulate", help="Run an end-to-end scenario in memory")
    p_sim.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS),
        default="local",
        help="Which scenario to run (default: local)",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "show-config": cmd_show_config,
        "check-config": cmd_check_config,
        "split": cmd_split,
        "simulate": cmd_simulate,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())

"""
orgtree command line.

Usage:
    orgtree plan <tree.yaml> [--state FILE]
    orgtree apply <tree.yaml> [--state FILE] [--simulate] [--reconcile]
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from orgtree.cli.apply import apply_command
from orgtree.cli.plan import plan_command
from orgtree.config import get_settings
from orgtree.logging import configure_logging
from orgtree.orchestration.results import DEFAULT_STATE_PATH


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orgtree",
        description="Provision AWS Organizations units and accounts in a strict order",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="Print the provisioning chain")
    plan_parser.add_argument("tree", help="Organization tree (YAML or JSON)")
    plan_parser.add_argument(
        "--state", help="State file; entities recorded there are planned as updates"
    )

    apply_parser = subparsers.add_parser("apply", help="Provision the organization tree")
    apply_parser.add_argument("tree", help="Organization tree (YAML or JSON)")
    apply_parser.add_argument(
        "--state",
        default=str(DEFAULT_STATE_PATH),
        help=f"State file used to resume runs (default: {DEFAULT_STATE_PATH})",
    )
    apply_parser.add_argument(
        "--simulate",
        action="store_true",
        help="Run against an in-memory control plane instead of AWS",
    )
    apply_parser.add_argument(
        "--reconcile",
        action="store_true",
        help="Re-apply every step, updating entities recorded in the state file",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command == "plan":
        return plan_command(args.tree, state_path=args.state, settings=settings)
    return apply_command(
        args.tree,
        state_path=args.state,
        simulate=args.simulate,
        reconcile=args.reconcile,
        settings=settings,
    )


if __name__ == "__main__":
    sys.exit(main())

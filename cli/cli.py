# cli/cli.py
"""
CLI registry and dispatcher for promo offer operations.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx

from promo.services.allocation import AllocationError, BudgetInput, plan_allocation
from promo.services.lifecycle import categorize_offers
from promo.services.records import FolderRecord, OfferRecord, OfferStatus, coerce_timestamp
from promo.services.tier_gate import TierGateError, minimum_tier_for, validate_offer_against_tier
from promo.services.tier_limits import TIER_LIMITS, TIER_ORDER


def _supports_color() -> bool:
    if sys.platform == "win32":
        return os.getenv("TERM") == "xterm" or os.getenv("ANSICON") is not None
    return sys.stdout.isatty()


SUPPORTS_COLOR = _supports_color()

GREEN = '\033[92m' if SUPPORTS_COLOR else ''
RED = '\033[91m' if SUPPORTS_COLOR else ''
YELLOW = '\033[93m' if SUPPORTS_COLOR else ''
BLUE = '\033[94m' if SUPPORTS_COLOR else ''
RESET = '\033[0m' if SUPPORTS_COLOR else ''


def print_success(message: str):
    print(f"{GREEN}[✓]{RESET} {message}")


def print_error(message: str):
    print(f"{RED}[✗]{RESET} {message}")


def print_warning(message: str):
    print(f"{YELLOW}[!]{RESET} {message}")


def print_info(message: str):
    print(f"{BLUE}[i]{RESET} {message}")


def _load_json(path: str):
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _parse_now(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = coerce_timestamp(value)
    if parsed is None:
        raise ValueError(f"Invalid --now timestamp: {value}")
    return parsed


# Command functions
async def cmd_tiers(args: argparse.Namespace) -> int:
    """Command: Print the membership tier table."""
    for tier in TIER_ORDER:
        caps = TIER_LIMITS[tier]
        texts = caps.pricing.monthly_texts
        print_info(
            f"{tier.value:<14} offers={caps.max_active_offers:<4} "
            f"types={len(caps.allowed_offer_types)} "
            f"delivery={len(caps.allowed_delivery_methods)} "
            f"texts={'pay-per-text' if texts is None else texts}"
        )
    return 0


async def cmd_min_tier(args: argparse.Namespace) -> int:
    """Command: Lowest tier that includes a capability."""
    try:
        tier = minimum_tier_for(args.feature)
    except TierGateError as e:
        print_error(e.message)
        return 1
    if tier is None:
        print_warning(f"{args.feature}: not available on any tier")
    else:
        print_success(f"{args.feature}: {tier.value}")
    return 0


async def cmd_validate_offer(args: argparse.Namespace) -> int:
    """Command: Check an offer JSON file against a tier."""
    offer = OfferRecord.from_row({"id": "cli", **_load_json(args.file)})
    try:
        result = validate_offer_against_tier(offer, args.tier, OfferStatus(args.target_status))
    except TierGateError as e:
        print_error(e.message)
        return 1
    if result.valid:
        print_success(f"Offer is allowed on {args.tier.upper()}")
        return 0
    for violation in result.violations:
        required = violation.upgrade_required.value if violation.upgrade_required else "none"
        print_error(f"{violation.field}: {violation.message} (requires {required})")
    return 1


async def cmd_classify(args: argparse.Namespace) -> int:
    """Command: Show lifecycle partitions for an export of offers and folders."""
    data = _load_json(args.file)
    rows = data.get("offers", []) if isinstance(data, dict) else data
    folder_rows = data.get("folders", []) if isinstance(data, dict) else []

    offers = [OfferRecord.from_row(r) for r in rows]
    folders = [FolderRecord.from_row(r) for r in folder_rows]
    categorized = categorize_offers(offers, folders, _parse_now(args.now))

    for partition in categorized.partitions():
        print_info(
            f"{partition.lifecycle.value:<14} {len(partition):>4} offers, "
            f"{len(partition.by_folder)} folders in use, {len(partition.folders)} visible"
        )
    print_info(f"{'stage1':<14} {len(categorized.stage1):>4} offers")
    return 0


async def cmd_allocate(args: argparse.Namespace) -> int:
    """Command: Preview a budget split without touching any data."""
    offer_ids: List[str] = [o.strip() for o in args.offers.split(",") if o.strip()]
    budget = BudgetInput(
        max_clicks=args.max_clicks,
        click_budget_dollars=Decimal(args.click_dollars) if args.click_dollars else None,
        text_budget=Decimal(args.text_budget) if args.text_budget else None,
        rips_budget=Decimal(args.rips_budget) if args.rips_budget else None,
    )
    try:
        allocation = plan_allocation(offer_ids, budget, divide_evenly=args.even)
    except AllocationError as e:
        print_error(f"{e.code}: {e.message}")
        return 1

    for a in allocation.assignments:
        print_info(
            f"{a.offer_id}: clicks={a.max_clicks} click$={a.click_budget_dollars} "
            f"text$={a.text_budget} rips$={a.rips_budget}"
        )
    return 0


async def cmd_check_api(args: argparse.Namespace) -> int:
    """Command: Verify a running API answers its health check."""
    url = f"{args.api_url.rstrip('/')}/api/health"
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        print_error(f"API not reachable at {url}: {e}")
        return 1

    if response.status_code == 200 and response.json().get("status") == "healthy":
        print_success(f"API healthy at {url}")
        return 0
    print_error(f"API unhealthy at {url}: HTTP {response.status_code}")
    return 1


async def cmd_sweep(args: argparse.Namespace) -> int:
    """Command: Run one lifecycle sweep against the database."""
    from workers.lifecycle_worker import worker_main

    await worker_main(once=True)
    print_success("Lifecycle sweep finished")
    return 0


COMMANDS: Dict[str, Callable] = {
    'tiers': cmd_tiers,
    'min-tier': cmd_min_tier,
    'validate-offer': cmd_validate_offer,
    'classify': cmd_classify,
    'allocate': cmd_allocate,
    'check-api': cmd_check_api,
    'sweep': cmd_sweep,
}


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Promo Offers CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    subparsers.add_parser('tiers', help='Print the membership tier table')

    min_parser = subparsers.add_parser('min-tier', help='Lowest tier with a capability')
    min_parser.add_argument('feature', help='Capability name, e.g. allow_folders')

    val_parser = subparsers.add_parser('validate-offer', help='Check an offer file against a tier')
    val_parser.add_argument('--tier', required=True)
    val_parser.add_argument('--file', required=True, help='JSON object with offer fields')
    val_parser.add_argument(
        '--target-status',
        default='active',
        choices=[s.value for s in OfferStatus],
    )

    cls_parser = subparsers.add_parser('classify', help='Partition offers by lifecycle')
    cls_parser.add_argument('--file', required=True, help='JSON list of offers, or {"offers", "folders"}')
    cls_parser.add_argument('--now', default=None, help='ISO timestamp to classify at')

    alloc_parser = subparsers.add_parser('allocate', help='Preview a budget allocation')
    alloc_parser.add_argument('--offers', required=True, help='Comma-separated offer ids')
    alloc_parser.add_argument('--max-clicks', type=int, default=None)
    alloc_parser.add_argument('--click-dollars', default=None)
    alloc_parser.add_argument('--text-budget', default=None)
    alloc_parser.add_argument('--rips-budget', default=None)
    alloc_parser.add_argument('--even', action='store_true', help='Divide totals evenly')

    api_parser = subparsers.add_parser('check-api', help='Verify the API health endpoint')
    api_parser.add_argument('--api-url', default='http://localhost:8000', help='API URL')

    subparsers.add_parser('sweep', help='Run one lifecycle sweep')

    return parser


def main(args: Optional[list] = None) -> int:
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    command_func = COMMANDS.get(parsed_args.command)
    if not command_func:
        print_error(f"Unknown command: {parsed_args.command}")
        parser.print_help()
        return 1

    try:
        return asyncio.run(command_func(parsed_args))
    except KeyboardInterrupt:
        print_error("\nInterrupted by user")
        return 130
    except (OSError, ValueError) as e:
        print_error(f"Error executing command: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())

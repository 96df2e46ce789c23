from __future__ import annotations

import argparse
import asyncio
import sys

from simops.core.logging import configure_logging
from simops.persistence.db import SessionLocal
from simops.providers.fleet_api import get_fleet_api_client
from simops.services.authz.context import load_auth_context
from simops.services.inventory import inventory_summary
from simops.services.sync import SyncOrchestrator
from simops.services.telemetry import external_call_stats


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync fleets and SIMs from the provider")
    parser.add_argument("--user-id", required=True, help="User the sync runs as")
    parser.add_argument("--account", action="append", default=None, help="Account id (repeatable)")
    parser.add_argument("--fleet", action="append", default=None, help="Fleet id (repeatable)")
    parser.add_argument("--skip-fleets", action="store_true", help="Only sync devices")
    parser.add_argument("--stats-window", type=int, default=3600, help="Seconds of provider call stats to print")
    return parser


async def _sync(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        ctx = await load_auth_context(session, args.user_id)

    client = get_fleet_api_client()
    orchestrator = SyncOrchestrator(SessionLocal, client)
    failures = 0
    try:
        if not args.skip_fleets:
            for result in await orchestrator.sync_fleets(ctx, args.account):
                if result.error:
                    failures += 1
                    print(f"fleets {result.account_id}: error: {result.error}")
                else:
                    print(f"fleets {result.account_id}: {result.fleets}")
        for summary in await orchestrator.sync_devices(ctx, args.account, args.fleet):
            if summary.error:
                failures += 1
                print(f"devices {summary.account_id}: error: {summary.error}")
            else:
                print(f"devices {summary.account_id}/{summary.fleet_id}: {summary.synced}")
        if ctx.is_owner:
            totals = await inventory_summary(ctx, SessionLocal)
            print(f"Inventory: {totals.total_fleets} fleets, {totals.total_sims} SIMs")
        for integration, stats in sorted(external_call_stats(args.stats_window).items()):
            print(
                f"Provider {integration}: {stats['count']} calls, "
                f"{stats['error_rate']:.0%} errors, p95 {stats['p95_ms']} ms"
            )
    finally:
        await client.aclose()
    return 1 if failures else 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_sync(args))
    except Exception as exc:  # noqa: BLE001 - surface sync failures clearly
        print(f"sync_inventory failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import argparse
import asyncio
import sys

from simops.core.logging import configure_logging
from simops.domain.commands import catalog_entries
from simops.persistence.db import SessionLocal
from simops.providers.fleet_api import get_fleet_api_client
from simops.services.authz.context import load_auth_context
from simops.services.commands import CommandDispatcher, TargetGroup, Throttle


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send a command to SIMs in one account")
    parser.add_argument("--list", action="store_true", help="Print the command catalog and exit")
    parser.add_argument("--user-id", help="User the dispatch runs as")
    parser.add_argument("--account", help="Account id")
    parser.add_argument("--command", help="Catalog command or 'custom'")
    parser.add_argument("--text", default=None, help="Payload for custom commands")
    parser.add_argument("--sim", action="append", default=[], help="Local SIM id (repeatable)")
    parser.add_argument("--iccid", action="append", default=[], help="ICCID (repeatable)")
    parser.add_argument("--name", action="append", default=[], help="Device unique name (repeatable)")
    parser.add_argument("--per-second", type=int, default=None, help="Per-account send rate")
    return parser


async def _send(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        ctx = await load_auth_context(session, args.user_id)

    client = get_fleet_api_client()
    dispatcher = CommandDispatcher(SessionLocal, client)
    target = TargetGroup(
        account_id=args.account,
        sim_ids=tuple(args.sim),
        iccids=tuple(args.iccid),
        unique_names=tuple(args.name),
    )
    try:
        results = await dispatcher.dispatch(
            ctx,
            args.command,
            [target],
            text=args.text,
            throttle=Throttle(per_account_per_second=args.per_second),
        )
    finally:
        await client.aclose()

    for result in results:
        device = result.iccid or result.sim_sid or "-"
        suffix = f" {result.message}" if result.message else ""
        print(f"{result.account_label} {device}: {result.status}{suffix}")
    return 0 if all(result.status == "queued" for result in results) else 1


def main() -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args()
    if args.list:
        for name, access, description in catalog_entries():
            print(f"{name:<14} {access:<6} {description}")
        return 0
    missing = [flag for flag in ("user_id", "account", "command") if not getattr(args, flag)]
    if missing:
        flags = ", ".join("--" + flag.replace("_", "-") for flag in missing)
        parser.error(f"the following arguments are required: {flags}")
    try:
        return asyncio.run(_send(args))
    except Exception as exc:  # noqa: BLE001 - surface dispatch failures clearly
        print(f"send_command failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import argparse
import asyncio
import sys

from simops.core.logging import configure_logging
from simops.domain.models import User
from simops.persistence.db import SessionLocal
from simops.providers.fleet_api import get_fleet_api_client
from simops.services.authz.context import load_auth_context
from simops.services.authz.scopes import ROLE_OWNER
from simops.services.sync import SyncOrchestrator


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import provider accounts from configuration")
    parser.add_argument("--owner-id", required=True, help="Owner user id receiving full scopes")
    parser.add_argument("--email", default=None, help="Owner email when the user does not exist yet")
    parser.add_argument("--with-fleets", action="store_true", help="Also sync fleets for every account")
    return parser


async def _sync(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        user = await session.get(User, args.owner_id)
        if user is None:
            if not args.email:
                raise ValueError("Owner does not exist; pass --email to create it")
            session.add(User(id=args.owner_id, email=args.email, role=ROLE_OWNER))
            await session.commit()
        elif user.role != ROLE_OWNER:
            raise ValueError("User is not the owner")
        ctx = await load_auth_context(session, args.owner_id)

    client = get_fleet_api_client()
    orchestrator = SyncOrchestrator(SessionLocal, client)
    try:
        accounts = await orchestrator.sync_accounts_from_config(ctx)
        print(f"Accounts synced: {len(accounts)}")
        for account in accounts:
            print(f"  {account.label}: {account.id}")
        if args.with_fleets:
            # Reload so the new account-wide grants are part of the context.
            async with SessionLocal() as session:
                ctx = await load_auth_context(session, args.owner_id)
            for result in await orchestrator.sync_fleets(ctx):
                status = f"error: {result.error}" if result.error else f"{result.fleets} fleets"
                print(f"  fleets {result.account_id}: {status}")
    finally:
        await client.aclose()
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_sync(args))
    except Exception as exc:  # noqa: BLE001 - surface sync failures clearly
        print(f"sync_accounts failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

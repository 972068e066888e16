from __future__ import annotations

import argparse
import asyncio

import gatehouse.db as db
from gatehouse.db.models import Base
from gatehouse.settings import get_settings
from gatehouse.sso.oidc.nonces import NonceStore


async def _init_db() -> None:
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _prune_nonces(ttl_seconds: int) -> int:
    settings = get_settings()
    async with db.SessionMaker() as session:
        store = NonceStore(
            session,
            ttl_seconds=ttl_seconds,
            max_outstanding=settings.nonce_max_outstanding,
        )
        return await store.prune_expired()


def main() -> None:
    parser = argparse.ArgumentParser(prog="gatehouse")
    sub = parser.add_subparsers(dest="cmd", required=True)
    settings = get_settings()

    sub.add_parser("init-db")
    prune = sub.add_parser("prune-nonces")
    prune.add_argument(
        "--ttl-seconds",
        type=int,
        default=settings.nonce_ttl_seconds,
    )

    args = parser.parse_args()

    if args.cmd == "init-db":
        asyncio.run(_init_db())
    elif args.cmd == "prune-nonces":
        removed = asyncio.run(_prune_nonces(max(1, int(args.ttl_seconds))))
        print(f"Removed {removed} expired login nonces")
    else:
        raise SystemExit(2)

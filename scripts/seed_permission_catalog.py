from __future__ import annotations

import argparse
import asyncio
import sys

from venuedesk.core.config import get_settings
from venuedesk.core.logging import configure_logging
from venuedesk.persistence.db import Database
from venuedesk.services.authz.catalog import ensure_builtin_catalog


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Seed the permission catalog and built-in role templates"
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create tables from models first (local bootstrap only; use alembic elsewhere)",
    )
    return parser


async def _seed(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings)
    db = Database(settings)
    try:
        if args.create_tables:
            await db.create_all()
        async with db.session() as session:
            added = await ensure_builtin_catalog(session)
            await session.commit()
    finally:
        await db.dispose()

    # Re-running is safe; zero counts mean the catalog was already complete.
    print("Permission catalog seeded:")
    print(f"  permissions added: {added['permissions']}")
    print(f"  templates added: {added['templates']}")
    print(f"  template links added: {added['links']}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_seed(args))
    except Exception as exc:  # noqa: BLE001 - surface seeding failures clearly
        print(f"seed_permission_catalog failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

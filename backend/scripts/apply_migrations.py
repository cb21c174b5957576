"""Apply pending SQL migrations from contribrank/infra/migrations in filename order."""

import argparse
import asyncio
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from contribrank.infra import postgres

MIGRATIONS_DIR = BACKEND_ROOT / "contribrank" / "infra" / "migrations"


async def main(dry_run: bool) -> None:
    files = sorted(MIGRATIONS_DIR.glob("*.sql"))
    pool = await postgres.get_pool()
    try:
        async with pool.acquire() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version TEXT PRIMARY KEY,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            applied = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}
            for path in files:
                version = path.stem
                if version in applied:
                    print(f"skip {version} (already applied)")
                    continue
                if dry_run:
                    print(f"pending {version}")
                    continue
                print(f"applying {version}...")
                async with conn.transaction():
                    await conn.execute(path.read_text(encoding="utf-8"))
                    await conn.execute("INSERT INTO schema_migrations (version) VALUES ($1)", version)
                print(f"applied {version}")
    finally:
        await postgres.close_pool()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="list pending migrations without applying them")
    args = parser.parse_args()
    asyncio.run(main(args.dry_run))

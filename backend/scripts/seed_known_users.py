"""Add every user with a contrib_totals row to the scheduler's known-users set."""

import argparse
import asyncio
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from contribrank.domain.contributions.known_users import KNOWN_USERS_KEY
from contribrank.infra import postgres
from contribrank.infra.contributions_repo import PostgresContributionRepository
from contribrank.infra.redis import redis_client


async def main(limit: int | None, dry_run: bool) -> None:
    try:
        user_ids = await PostgresContributionRepository().list_user_ids_with_totals(limit)
        if dry_run:
            print(f"would seed {len(user_ids)} users")
            return
        if user_ids:
            await redis_client.sadd(KNOWN_USERS_KEY, *user_ids)
        print(f"seeded {len(user_ids)} users into {KNOWN_USERS_KEY}")
    finally:
        await postgres.close_pool()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    asyncio.run(main(args.limit, args.dry_run))

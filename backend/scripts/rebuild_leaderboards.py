"""Rebuild the Redis ranking store from contrib_totals.

Recovery path after a crash between a totals write and its leaderboard sync,
or after the Redis data was lost.
"""

import argparse
import asyncio
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from contribrank.domain.leaderboards.sync import LeaderboardSynchronizer
from contribrank.infra import postgres
from contribrank.infra.contributions_repo import PostgresContributionRepository


async def main(limit: int | None) -> None:
    synchronizer = LeaderboardSynchronizer(PostgresContributionRepository())
    try:
        count = await synchronizer.rebuild(limit)
        print(f"re-synced {count} users")
    finally:
        await postgres.close_pool()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rebuild leaderboard sorted sets from contrib_totals")
    parser.add_argument("--limit", type=int, default=None, help="maximum number of users to re-sync")
    args = parser.parse_args()
    asyncio.run(main(args.limit))

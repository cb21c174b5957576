"""Leaderboard Synchronizer: pushes totals into the windowed sorted sets.

The ranking store is never authoritative. Every entry is a pure function of
``contrib_totals``, so a crash between the totals write and the sync is
repaired by syncing the user again, or by ``rebuild`` for everyone.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from contribrank.domain.contributions.models import Provider, ProviderSelector, Window
from contribrank.domain.contributions.repository import ContributionRepository
from contribrank.domain.leaderboards.keys import all_zset_keys, zset_key
from contribrank.infra.redis import redis_client
from contribrank.obs import metrics as obs_metrics

LOGGER = logging.getLogger(__name__)


class LeaderboardSynchronizer:
	def __init__(self, repository: ContributionRepository, redis=None) -> None:
		self._repository = repository
		self._redis = redis if redis is not None else redis_client

	async def sync(self, user_id: str) -> Dict[str, int]:
		"""Replace the user's entry in all nine sorted sets; returns key -> score written."""
		rows = {row.provider: row for row in await self._repository.get_totals(user_id)}
		scores: Dict[str, int] = {}
		async with self._redis.pipeline(transaction=True) as pipe:
			for window in Window:
				combined = 0
				for provider in Provider:
					key = zset_key(ProviderSelector(provider.value), window)
					row = rows.get(provider)
					if row is None:
						pipe.zrem(key, user_id)
						continue
					score = row.score(window)
					combined += score
					pipe.zadd(key, {user_id: score})
					scores[key] = score
				total_key = zset_key(ProviderSelector.COMBINED, window)
				pipe.zadd(total_key, {user_id: combined})
				scores[total_key] = combined
			await pipe.execute()
		obs_metrics.inc_leaderboard_sync()
		LOGGER.info("leaderboard_synced", extra={"user_id": user_id, "providers": sorted(p.value for p in rows)})
		return scores

	async def remove_user(self, user_id: str) -> None:
		async with self._redis.pipeline(transaction=True) as pipe:
			for key in all_zset_keys():
				pipe.zrem(key, user_id)
			await pipe.execute()
		LOGGER.info("leaderboard_user_removed", extra={"user_id": user_id})

	async def prune(self) -> int:
		"""Drop members that no longer have any totals row; returns the number removed."""
		valid = set(await self._repository.list_user_ids_with_totals())
		removed = 0
		for key in all_zset_keys():
			stale = [member async for member, _score in self._redis.zscan_iter(key) if member not in valid]
			if stale:
				removed += await self._redis.zrem(key, *stale)
		return removed

	async def rebuild(self, limit: Optional[int] = None) -> int:
		"""Re-sync every user that has a totals row, then drop everyone else.

		A user whose first totals row lands between the prune scan and the
		removal is restored by that user's own sync.
		"""
		user_ids = await self._repository.list_user_ids_with_totals(limit)
		for user_id in user_ids:
			await self.sync(user_id)
		removed = await self.prune()
		LOGGER.info("leaderboard_rebuilt", extra={"users": len(user_ids), "pruned": removed})
		return len(user_ids)


__all__ = ["LeaderboardSynchronizer"]

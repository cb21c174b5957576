"""Leaderboard Reader: cursor-paginated pages from Redis with a SQL fallback."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from redis.exceptions import RedisError

from contribrank.domain.contributions.known_users import KnownUsersRepository, RedisKnownUsers, UserProfile
from contribrank.domain.contributions.models import Provider, ProviderSelector, Window
from contribrank.domain.contributions.repository import ContributionRepository
from contribrank.domain.leaderboards.cursor import PageCursor, decode_cursor, encode_cursor
from contribrank.domain.leaderboards.keys import zset_key
from contribrank.domain.leaderboards.models import LeaderboardEntry, LeaderboardPage, ScoreBreakdown
from contribrank.infra.redis import redis_client
from contribrank.obs import metrics as obs_metrics

LOGGER = logging.getLogger(__name__)

PAGE_LIMIT = 100
EXPORT_LIMIT = 2000
EXPORT_CHUNK = 200

CSV_HEADER = ["rank", "userId", "username", "githubLogin", "gitlabUsername", "total", "github", "gitlab"]


@dataclass(slots=True)
class ExportResult:
	rows: List[Dict[str, object]] = field(default_factory=list)
	next_cursor: Optional[str] = None
	source: str = "redis"

	def to_csv(self) -> str:
		buffer = io.StringIO()
		writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
		writer.writerow(CSV_HEADER)
		for row in self.rows:
			writer.writerow(["" if row[column] is None else row[column] for column in CSV_HEADER])
		return buffer.getvalue()


class LeaderboardReader:
	"""Read-only view over the ranking store; ``contrib_totals`` wins on any doubt."""

	def __init__(
		self,
		repository: ContributionRepository,
		redis=None,
		known_users: Optional[KnownUsersRepository] = None,
	) -> None:
		self._repository = repository
		self._redis = redis if redis is not None else redis_client
		self._known_users = known_users if known_users is not None else RedisKnownUsers(self._redis)

	async def _redis_start(self, key: str, position: Optional[PageCursor]) -> int:
		if position is None:
			return 0
		current = await self._redis.zscore(key, position.user_id)
		if current is not None and int(current) == position.score:
			rank = await self._redis.zrevrank(key, position.user_id)
			if rank is not None:
				return rank + 1
		# Anchor moved or vanished: count everything ranked before (score, user_id).
		higher = await self._redis.zcount(key, f"({position.score}", "+inf")
		ties = await self._redis.zrangebyscore(key, position.score, position.score)
		return higher + sum(1 for member in ties if member > position.user_id)

	async def _redis_page(
		self,
		key: str,
		limit: int,
		position: Optional[PageCursor],
	) -> Optional[Tuple[int, List[Tuple[str, int]]]]:
		try:
			if not await self._redis.exists(key):
				return None
			start = await self._redis_start(key, position)
			items = await self._redis.zrevrange(key, start, start + limit, withscores=True)
		except RedisError:
			LOGGER.warning("leaderboard_redis_unavailable", extra={"key": key}, exc_info=True)
			return None
		return start, [(str(member), int(score)) for member, score in items]

	async def _db_page(
		self,
		selector: ProviderSelector,
		window: Window,
		limit: int,
		position: Optional[PageCursor],
	) -> Tuple[int, List[Tuple[str, int]]]:
		after = (position.score, position.user_id) if position is not None else None
		rows = await self._repository.rank_totals(selector, window, limit=limit + 1, after=after)
		start = position.offset if position is not None else 0
		return start, list(rows)

	async def get_page(
		self,
		*,
		window: Window,
		selector: ProviderSelector,
		limit: int = 25,
		cursor: Optional[str] = None,
		max_limit: int = PAGE_LIMIT,
	) -> LeaderboardPage:
		limit = max(1, min(int(limit), max_limit))
		position = decode_cursor(cursor) if cursor else None
		key = zset_key(selector, window)
		source = "redis"
		fetched = await self._redis_page(key, limit, position)
		if fetched is None:
			source = "db"
			fetched = await self._db_page(selector, window, limit, position)
		start, rows = fetched
		obs_metrics.inc_leaderboard_read(source)

		page_rows = rows[:limit]
		entries = [
			LeaderboardEntry(rank=start + idx + 1, user_id=user_id, score=score)
			for idx, (user_id, score) in enumerate(page_rows)
		]
		next_cursor = None
		if len(rows) > limit and entries:
			last = entries[-1]
			next_cursor = encode_cursor(PageCursor(offset=start + len(entries), score=last.score, user_id=last.user_id))
		return LeaderboardPage(entries=entries, next_cursor=next_cursor, source=source)

	async def details(self, user_ids: Sequence[str], window: Window) -> List[ScoreBreakdown]:
		"""Per-provider breakdown straight from ``contrib_totals``; unknown users score zero."""
		ordered = list(dict.fromkeys(user_ids))
		breakdowns = {user_id: ScoreBreakdown(user_id=user_id) for user_id in ordered}
		for row in await self._repository.get_totals_for_users(ordered):
			entry = breakdowns.get(row.user_id)
			if entry is None:
				continue
			if row.provider is Provider.GITHUB:
				entry.github = row.score(window)
			else:
				entry.gitlab = row.score(window)
		return [breakdowns[user_id] for user_id in ordered]

	async def profiles(self, user_ids: Sequence[str]) -> List[UserProfile]:
		return list(await self._known_users.get_profiles(list(dict.fromkeys(user_ids))))

	async def export(
		self,
		*,
		window: Window,
		selector: ProviderSelector,
		limit: int = 500,
		cursor: Optional[str] = None,
	) -> ExportResult:
		limit = max(1, min(int(limit), EXPORT_LIMIT))
		result = ExportResult()
		entries: List[LeaderboardEntry] = []
		next_cursor = cursor
		first = True
		while len(entries) < limit:
			page = await self.get_page(
				window=window,
				selector=selector,
				limit=min(EXPORT_CHUNK, limit - len(entries)),
				cursor=next_cursor,
				max_limit=EXPORT_LIMIT,
			)
			if first:
				result.source = page.source
				first = False
			entries.extend(page.entries)
			next_cursor = page.next_cursor
			if next_cursor is None:
				break
		result.next_cursor = next_cursor

		user_ids = [entry.user_id for entry in entries]
		breakdowns = {row.user_id: row for row in await self.details(user_ids, window)}
		profiles = {profile.user_id: profile for profile in await self.profiles(user_ids)}
		for entry in entries:
			breakdown = breakdowns[entry.user_id]
			profile = profiles.get(entry.user_id)
			result.rows.append(
				{
					"rank": entry.rank,
					"userId": entry.user_id,
					"username": profile.username if profile else "",
					"githubLogin": profile.github_login if profile else None,
					"gitlabUsername": profile.gitlab_username if profile else None,
					"total": breakdown.total,
					"github": breakdown.github,
					"gitlab": breakdown.gitlab,
				}
			)
		return result


__all__ = ["CSV_HEADER", "EXPORT_LIMIT", "ExportResult", "LeaderboardReader", "PAGE_LIMIT"]

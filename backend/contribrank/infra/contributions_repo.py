"""PostgreSQL implementation of the contribution repository."""

from __future__ import annotations

from datetime import date
from typing import Mapping, Optional, Sequence, Tuple

import asyncpg

from contribrank.domain.contributions.models import (
	ContributionDay,
	ContributionTotals,
	Provider,
	ProviderSelector,
	Window,
)
from contribrank.domain.contributions.repository import ContributionRepository, RankedRow
from contribrank.infra.postgres import get_pool

# Whitelisted column names; never interpolate user input into SQL.
# Ties sort bytewise (COLLATE "C") to match Redis sorted-set member order.
_WINDOW_COLUMNS = {
	Window.ALL: "all_time",
	Window.D30: "last_30d",
	Window.D365: "last_365d",
}


class PostgresContributionRepository(ContributionRepository):
	"""Asyncpg-backed repository for contribution days and totals."""

	def __init__(self, pool: Optional[asyncpg.Pool] = None) -> None:
		self._pool = pool

	async def _get_pool(self) -> asyncpg.Pool:
		if self._pool is not None:
			return self._pool
		return await get_pool()

	async def upsert_days(self, user_id: str, provider: Provider, counts: Mapping[date, int]) -> int:
		if not counts:
			return 0
		pool = await self._get_pool()
		await pool.executemany(
			"""
			INSERT INTO contrib_daily (user_id, provider, date_utc, count, updated_at)
			VALUES ($1, $2::contrib_provider, $3, $4, NOW())
			ON CONFLICT (user_id, provider, date_utc)
			DO UPDATE SET count = EXCLUDED.count,
				updated_at = NOW()
			""",
			[(user_id, provider.value, day, max(0, int(count))) for day, count in counts.items()],
		)
		return len(counts)

	async def list_days(self, user_id: str, provider: Provider) -> Sequence[ContributionDay]:
		pool = await self._get_pool()
		rows = await pool.fetch(
			"""
			SELECT user_id, provider, date_utc, count
			FROM contrib_daily
			WHERE user_id = $1 AND provider = $2::contrib_provider
			ORDER BY date_utc
			""",
			user_id,
			provider.value,
		)
		return [
			ContributionDay(
				user_id=str(row["user_id"]),
				provider=Provider(row["provider"]),
				day=row["date_utc"],
				count=int(row["count"]),
			)
			for row in rows
		]

	async def providers_with_days(self, user_id: str) -> Sequence[Provider]:
		pool = await self._get_pool()
		rows = await pool.fetch(
			"SELECT DISTINCT provider FROM contrib_daily WHERE user_id = $1 ORDER BY provider",
			user_id,
		)
		return [Provider(row["provider"]) for row in rows]

	async def sum_counts(
		self,
		user_id: str,
		provider: Provider,
		*,
		since: Optional[date] = None,
		until: Optional[date] = None,
	) -> int:
		pool = await self._get_pool()
		total = await pool.fetchval(
			"""
			SELECT COALESCE(SUM(count), 0)
			FROM contrib_daily
			WHERE user_id = $1
				AND provider = $2::contrib_provider
				AND ($3::date IS NULL OR date_utc >= $3::date)
				AND ($4::date IS NULL OR date_utc <= $4::date)
			""",
			user_id,
			provider.value,
			since,
			until,
		)
		return int(total or 0)

	async def upsert_totals(self, totals: ContributionTotals) -> None:
		pool = await self._get_pool()
		await pool.execute(
			"""
			INSERT INTO contrib_totals (user_id, provider, all_time, last_30d, last_365d, updated_at)
			VALUES ($1, $2::contrib_provider, $3, $4, $5, NOW())
			ON CONFLICT (user_id, provider)
			DO UPDATE SET all_time = EXCLUDED.all_time,
				last_30d = EXCLUDED.last_30d,
				last_365d = EXCLUDED.last_365d,
				updated_at = NOW()
			""",
			totals.user_id,
			totals.provider.value,
			totals.all_time,
			totals.last_30d,
			totals.last_365d,
		)

	async def get_totals(self, user_id: str) -> Sequence[ContributionTotals]:
		pool = await self._get_pool()
		rows = await pool.fetch(
			"""
			SELECT user_id, provider, all_time, last_30d, last_365d, updated_at
			FROM contrib_totals
			WHERE user_id = $1
			ORDER BY provider
			""",
			user_id,
		)
		return [ContributionTotals.from_record(row) for row in rows]

	async def get_totals_for_users(self, user_ids: Sequence[str]) -> Sequence[ContributionTotals]:
		if not user_ids:
			return []
		pool = await self._get_pool()
		rows = await pool.fetch(
			"""
			SELECT user_id, provider, all_time, last_30d, last_365d, updated_at
			FROM contrib_totals
			WHERE user_id = ANY($1::text[])
			""",
			list(user_ids),
		)
		return [ContributionTotals.from_record(row) for row in rows]

	async def rank_totals(
		self,
		selector: ProviderSelector,
		window: Window,
		*,
		limit: int,
		offset: int = 0,
		after: Optional[Tuple[float, str]] = None,
	) -> Sequence[RankedRow]:
		column = _WINDOW_COLUMNS[window]
		params: list = []
		if selector is ProviderSelector.COMBINED:
			inner = f"SELECT user_id, SUM({column})::bigint AS score FROM contrib_totals GROUP BY user_id"
		else:
			params.append(selector.value)
			inner = f"SELECT user_id, {column}::bigint AS score FROM contrib_totals WHERE provider = $1::contrib_provider"
		where = ""
		if after is not None:
			score, last_user = after
			params.extend([int(score), last_user])
			s_idx, u_idx = len(params) - 1, len(params)
			where = f'WHERE score < ${s_idx} OR (score = ${s_idx} AND user_id COLLATE "C" < ${u_idx})'
			offset = 0
		params.extend([limit, offset])
		query = f"""
			SELECT user_id, score
			FROM ({inner}) ranked
			{where}
			ORDER BY score DESC, user_id COLLATE "C" DESC
			LIMIT ${len(params) - 1} OFFSET ${len(params)}
		"""
		pool = await self._get_pool()
		rows = await pool.fetch(query, *params)
		return [(str(row["user_id"]), int(row["score"] or 0)) for row in rows]

	async def list_user_ids_with_totals(self, limit: Optional[int] = None) -> Sequence[str]:
		pool = await self._get_pool()
		rows = await pool.fetch(
			"""
			SELECT DISTINCT user_id FROM contrib_totals
			ORDER BY user_id
			LIMIT $1
			""",
			limit,
		)
		return [str(row["user_id"]) for row in rows]

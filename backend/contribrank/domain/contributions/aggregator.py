"""Totals Aggregator: rolling-window sums rebuilt from the day store."""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from contribrank.domain.contributions.dates import today_utc, window_start
from contribrank.domain.contributions.models import ContributionTotals, Window
from contribrank.domain.contributions.repository import ContributionRepository

LOGGER = logging.getLogger(__name__)


class TotalsAggregator:
	"""Recomputes every window from scratch and replaces the totals rows.

	The recompute is O(days of history) per user/provider; it is always
	correct and safe to re-run after any partial failure.
	"""

	def __init__(self, repository: ContributionRepository) -> None:
		self._repository = repository

	async def _window_sum(self, user_id: str, totals: ContributionTotals, window: Window, today: date) -> int:
		days = window.days
		if days is None:
			return await self._repository.sum_counts(user_id, totals.provider)
		return await self._repository.sum_counts(
			user_id,
			totals.provider,
			since=window_start(today, days),
			until=today,
		)

	async def recompute(self, user_id: str, *, today: Optional[date] = None) -> List[ContributionTotals]:
		today = today or today_utc()
		written: List[ContributionTotals] = []
		for provider in await self._repository.providers_with_days(user_id):
			totals = ContributionTotals(user_id=user_id, provider=provider)
			totals.all_time = await self._window_sum(user_id, totals, Window.ALL, today)
			totals.last_30d = await self._window_sum(user_id, totals, Window.D30, today)
			totals.last_365d = await self._window_sum(user_id, totals, Window.D365, today)
			await self._repository.upsert_totals(totals)
			written.append(totals)
		LOGGER.info(
			"totals_recomputed",
			extra={"user_id": user_id, "providers": [row.provider.value for row in written]},
		)
		return written


__all__ = ["TotalsAggregator"]

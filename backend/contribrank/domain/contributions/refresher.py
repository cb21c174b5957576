"""Day-Range Refresher: bounded-concurrency provider fetches into the day store."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Mapping, Optional, Set, Tuple

from contribrank.domain.contributions.dates import iter_days
from contribrank.domain.contributions.errors import ContributionUsageError, ProviderFetchError
from contribrank.domain.contributions.models import DayFailure, Provider, RefreshResult, UserIdentity
from contribrank.domain.contributions.repository import ContributionRepository
from contribrank.domain.providers.base import ProviderFetcher
from contribrank.obs import metrics as obs_metrics

LOGGER = logging.getLogger(__name__)

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 8
DEFAULT_CONCURRENCY = 6

_Job = Tuple[Provider, ProviderFetcher, Optional[str], date]


def clamp_concurrency(value: Optional[int], default: int = DEFAULT_CONCURRENCY) -> int:
	if value is None:
		value = default
	return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, int(value)))


class DayRangeRefresher:
	"""Fetches one count per (provider, day) and upserts it into the day store.

	Only the lock holder for a user/provider calls this, so the upsert is
	effectively the single writer of each day row.
	"""

	def __init__(
		self,
		repository: ContributionRepository,
		fetchers: Mapping[Provider, ProviderFetcher],
		tokens: Optional[Mapping[Provider, Optional[str]]] = None,
	) -> None:
		self._repository = repository
		self._fetchers = dict(fetchers)
		self._tokens = dict(tokens or {})

	async def refresh(
		self,
		identity: UserIdentity,
		from_day: date,
		to_day: date,
		concurrency: Optional[int] = None,
		*,
		auth_tokens: Optional[Mapping[Provider, Optional[str]]] = None,
	) -> RefreshResult:
		if not identity.has_any_login():
			raise ContributionUsageError("at least one of githubLogin or gitlabUsername is required")
		if from_day > to_day:
			raise ContributionUsageError("fromDayUtc must not be after toDayUtc")

		workers = clamp_concurrency(concurrency)
		result = RefreshResult()
		queue: asyncio.Queue[_Job] = asyncio.Queue()
		for provider in identity.providers:
			fetcher = self._fetchers.get(provider)
			token = (auth_tokens or {}).get(provider) or self._tokens.get(provider)
			if fetcher is None or not fetcher.can_fetch(identity, token):
				result.skipped.append(provider)
				obs_metrics.inc_provider_fetch(provider.value, "skipped")
				LOGGER.info("provider_skipped", extra={"user_id": identity.user_id, "provider": provider.value})
				continue
			for day in iter_days(from_day, to_day):
				queue.put_nowait((provider, fetcher, token, day))

		written_days: Set[date] = set()

		async def _worker() -> None:
			while True:
				try:
					provider, fetcher, token, day = queue.get_nowait()
				except asyncio.QueueEmpty:
					return
				try:
					counts = await fetcher.fetch_daily_counts(identity, day, day, token)
				except ProviderFetchError as exc:
					obs_metrics.inc_provider_fetch(provider.value, "error")
					LOGGER.warning(
						"provider_day_failed",
						extra={
							"user_id": identity.user_id,
							"provider": provider.value,
							"day": day.isoformat(),
							"error": str(exc),
						},
					)
					result.errors.append(DayFailure(provider=provider, day=day, error=str(exc)))
					continue
				obs_metrics.inc_provider_fetch(provider.value, "ok")
				if day not in counts:
					continue
				rows = await self._repository.upsert_days(identity.user_id, provider, {day: counts[day]})
				if rows:
					written_days.add(day)
					result.written[provider] = result.written.get(provider, 0) + rows
					obs_metrics.inc_days_written(provider.value, rows)

		tasks = [asyncio.create_task(_worker()) for _ in range(min(workers, queue.qsize()))]
		try:
			await asyncio.gather(*tasks)
		except BaseException:
			for task in tasks:
				task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)
			raise

		result.days_refreshed = len(written_days)
		result.errors.sort(key=lambda failure: (failure.provider.value, failure.day))
		LOGGER.info(
			"day_range_refreshed",
			extra={
				"user_id": identity.user_id,
				"from": from_day.isoformat(),
				"to": to_day.isoformat(),
				"concurrency": workers,
				"days_refreshed": result.days_refreshed,
				"errors": len(result.errors),
			},
		)
		return result


__all__ = ["DayRangeRefresher", "clamp_concurrency", "DEFAULT_CONCURRENCY", "MAX_CONCURRENCY", "MIN_CONCURRENCY"]

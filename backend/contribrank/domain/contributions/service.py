"""Locked refresh cycles: refresher, aggregator and synchronizer under one lock set."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from typing import Mapping, Optional, Sequence

from contribrank.domain.contributions.aggregator import TotalsAggregator
from contribrank.domain.contributions.dates import today_utc, window_start, yesterday_and_today
from contribrank.domain.contributions.errors import ContributionUsageError
from contribrank.domain.contributions.known_users import KnownUsersRepository, RedisKnownUsers
from contribrank.domain.contributions.lock_keys import BackfillLockKey, DayRangeLockKey, RefreshLockKey
from contribrank.domain.contributions.models import Provider, RefreshOutcome, UserIdentity
from contribrank.domain.contributions.refresher import DEFAULT_CONCURRENCY, DayRangeRefresher, clamp_concurrency
from contribrank.domain.contributions.repository import ContributionRepository
from contribrank.domain.leaderboards.sync import LeaderboardSynchronizer
from contribrank.domain.providers.base import ProviderFetcher
from contribrank.infra.locks import LockConflictError, LockManager
from contribrank.obs import metrics as obs_metrics
from contribrank.settings import settings

LOGGER = logging.getLogger(__name__)

BACKFILL_DEFAULT_DAYS = 30
BACKFILL_MIN_DAYS = 1
BACKFILL_MAX_DAYS = 365


def backfill_lock_ttl(days: int) -> int:
	return max(120, min(900, days * 2))


def backfill_concurrency(days: int) -> int:
	"""Smaller pools for longer ranges, since every unit of work costs more."""
	if days > 180:
		return 3
	if days > 60:
		return 4
	return DEFAULT_CONCURRENCY


def clamp_backfill_days(days: Optional[int]) -> int:
	if days is None:
		return BACKFILL_DEFAULT_DAYS
	return max(BACKFILL_MIN_DAYS, min(BACKFILL_MAX_DAYS, int(days)))


class ContributionService:
	"""Single-user write path: lock, fetch, aggregate, sync, release."""

	def __init__(
		self,
		repository: ContributionRepository,
		fetchers: Mapping[Provider, ProviderFetcher],
		*,
		tokens: Optional[Mapping[Provider, Optional[str]]] = None,
		redis=None,
		locks: Optional[LockManager] = None,
		known_users: Optional[KnownUsersRepository] = None,
		synchronizer: Optional[LeaderboardSynchronizer] = None,
	) -> None:
		self.repository = repository
		self.fetchers = dict(fetchers)
		self.refresher = DayRangeRefresher(repository, fetchers, tokens)
		self.aggregator = TotalsAggregator(repository)
		self.synchronizer = synchronizer or LeaderboardSynchronizer(repository, redis)
		self.locks = locks or LockManager(redis)
		self.known_users = known_users or RedisKnownUsers(redis)

	async def refresh_day(
		self,
		identity: UserIdentity,
		*,
		from_day: Optional[date] = None,
		to_day: Optional[date] = None,
		concurrency: Optional[int] = None,
		now: Optional[datetime] = None,
	) -> RefreshOutcome:
		"""Short refresh, yesterday to today by default, guarded by exact-range locks."""
		_require_login(identity)
		yesterday, today = yesterday_and_today(now)
		from_day = from_day or yesterday
		to_day = to_day or today
		if from_day > to_day:
			raise ContributionUsageError("fromDayUtc must not be after toDayUtc")
		keys: Sequence[RefreshLockKey] = [
			DayRangeLockKey(provider=provider, user_id=identity.user_id, from_day=from_day, to_day=to_day)
			for provider in identity.providers
		]
		return await self._run(
			"refresh_day",
			identity,
			keys,
			ttl_seconds=settings.refresh_lock_ttl_seconds,
			from_day=from_day,
			to_day=to_day,
			concurrency=clamp_concurrency(concurrency),
			today=today,
		)

	async def backfill(
		self,
		identity: UserIdentity,
		*,
		days: Optional[int] = None,
		concurrency: Optional[int] = None,
		now: Optional[datetime] = None,
	) -> RefreshOutcome:
		"""Historical refresh of the last ``days`` days, one lock per provider whatever the range."""
		_require_login(identity)
		days = clamp_backfill_days(days)
		today = today_utc(now)
		keys: Sequence[RefreshLockKey] = [
			BackfillLockKey(provider=provider, user_id=identity.user_id) for provider in identity.providers
		]
		return await self._run(
			"backfill",
			identity,
			keys,
			ttl_seconds=backfill_lock_ttl(days),
			from_day=window_start(today, days),
			to_day=today,
			concurrency=clamp_concurrency(concurrency, backfill_concurrency(days)),
			today=today,
		)

	async def _run(
		self,
		operation: str,
		identity: UserIdentity,
		keys: Sequence[RefreshLockKey],
		*,
		ttl_seconds: int,
		from_day: date,
		to_day: date,
		concurrency: int,
		today: date,
	) -> RefreshOutcome:
		started = time.perf_counter()
		try:
			async with self.locks.hold(keys, ttl_seconds):
				result = await self.refresher.refresh(identity, from_day, to_day, concurrency)
				await self.aggregator.recompute(identity.user_id, today=today)
				await self.synchronizer.sync(identity.user_id)
		except LockConflictError:
			obs_metrics.inc_lock_conflict("backfill" if operation == "backfill" else "refresh")
			obs_metrics.record_refresh(operation, result="conflict")
			raise
		except Exception:
			obs_metrics.record_refresh(operation, result="error", duration_seconds=time.perf_counter() - started)
			LOGGER.exception("refresh_failed", extra={"operation": operation, "user_id": identity.user_id})
			raise
		await self.known_users.remember(identity)
		elapsed = time.perf_counter() - started
		obs_metrics.record_refresh(operation, result="partial" if result.errors else "ok", duration_seconds=elapsed)
		LOGGER.info(
			"refresh_completed",
			extra={
				"operation": operation,
				"user_id": identity.user_id,
				"days_refreshed": result.days_refreshed,
				"errors": len(result.errors),
				"duration_s": round(elapsed, 3),
			},
		)
		return RefreshOutcome(
			user_id=identity.user_id,
			providers=identity.providers,
			from_day=from_day,
			to_day=to_day,
			concurrency=concurrency,
			result=result,
		)

	async def remove_user(self, user_id: str) -> None:
		"""Drop a user from the ranking store and the known-users registry."""
		await self.synchronizer.remove_user(user_id)
		await self.known_users.forget(user_id)

	async def aclose(self) -> None:
		for fetcher in self.fetchers.values():
			close = getattr(fetcher, "aclose", None)
			if close is not None:
				await close()


def _require_login(identity: UserIdentity) -> None:
	if not identity.has_any_login():
		raise ContributionUsageError("at least one of githubLogin or gitlabUsername is required")


__all__ = [
	"BACKFILL_DEFAULT_DAYS",
	"ContributionService",
	"backfill_concurrency",
	"backfill_lock_ttl",
	"clamp_backfill_days",
]

from datetime import date, datetime, timezone

import pytest

from contribrank.domain.contributions.errors import ContributionUsageError
from contribrank.domain.contributions.known_users import KNOWN_USERS_KEY
from contribrank.domain.contributions.lock_keys import BackfillLockKey, DayRangeLockKey
from contribrank.domain.contributions.models import Provider, UserIdentity
from contribrank.domain.contributions.service import (
	backfill_concurrency,
	backfill_lock_ttl,
	clamp_backfill_days,
)
from contribrank.infra.locks import LockConflictError, LockManager

NOW = datetime(2025, 3, 2, 12, 0, tzinfo=timezone.utc)
YESTERDAY = date(2025, 3, 1)
TODAY = date(2025, 3, 2)


async def _lock_keys(redis):
	return [key async for key in redis.scan_iter(match="lock:*")]


def test_backfill_helpers():
	assert clamp_backfill_days(None) == 30
	assert clamp_backfill_days(0) == 1
	assert clamp_backfill_days(1000) == 365
	assert backfill_lock_ttl(10) == 120
	assert backfill_lock_ttl(200) == 400
	assert backfill_lock_ttl(365) == 730
	assert backfill_concurrency(30) == 6
	assert backfill_concurrency(90) == 4
	assert backfill_concurrency(365) == 3


@pytest.mark.asyncio
async def test_refresh_day_runs_the_full_cycle(contribution_service, repository, github_fetcher, gitlab_fetcher, fake_redis):
	github_fetcher.counts = {YESTERDAY: 3, TODAY: 2}
	gitlab_fetcher.counts = {TODAY: 4}
	identity = UserIdentity("u1", github_login="octo", gitlab_username="tanuki")

	outcome = await contribution_service.refresh_day(identity, now=NOW)

	assert (outcome.from_day, outcome.to_day) == (YESTERDAY, TODAY)
	assert outcome.providers == [Provider.GITHUB, Provider.GITLAB]
	assert outcome.concurrency == 6
	assert outcome.result.days_refreshed == 2
	assert repository.totals[("u1", Provider.GITHUB)].last_30d == 5
	assert await fake_redis.zscore("lb:total:30d", "u1") == 9
	assert await fake_redis.sismember(KNOWN_USERS_KEY, "u1")
	assert await _lock_keys(fake_redis) == []


@pytest.mark.asyncio
async def test_conflicting_refresh_is_rejected_before_any_fetch(contribution_service, github_fetcher, gitlab_fetcher, fake_redis):
	held = DayRangeLockKey(Provider.GITHUB, "u1", YESTERDAY, TODAY)
	assert await LockManager(fake_redis).acquire(held, 60)
	identity = UserIdentity("u1", github_login="octo", gitlab_username="tanuki")

	with pytest.raises(LockConflictError) as info:
		await contribution_service.refresh_day(identity, now=NOW)

	assert info.value.key.provider is Provider.GITHUB
	assert github_fetcher.calls == []
	assert gitlab_fetcher.calls == []
	assert await _lock_keys(fake_redis) == [held.canonical()]


@pytest.mark.asyncio
async def test_different_ranges_do_not_conflict(contribution_service, fake_redis):
	held = DayRangeLockKey(Provider.GITHUB, "u1", date(2025, 2, 1), date(2025, 2, 2))
	assert await LockManager(fake_redis).acquire(held, 60)

	outcome = await contribution_service.refresh_day(UserIdentity("u1", github_login="octo"), now=NOW)

	assert outcome.result.errors == []


@pytest.mark.asyncio
async def test_partial_failure_then_retry_heals_only_the_failed_provider(
	contribution_service, repository, github_fetcher, gitlab_fetcher, fake_redis
):
	github_fetcher.counts = {YESTERDAY: 1, TODAY: 1}
	github_fetcher.fail_all = True
	gitlab_fetcher.counts = {YESTERDAY: 2, TODAY: 2}
	identity = UserIdentity("u1", github_login="octo", gitlab_username="tanuki")

	outcome = await contribution_service.refresh_day(identity, now=NOW)

	assert {failure.provider for failure in outcome.result.errors} == {Provider.GITHUB}
	assert repository.totals[("u1", Provider.GITLAB)].all_time == 4
	assert ("u1", Provider.GITHUB) not in repository.totals
	assert await fake_redis.zscore("lb:total:all", "u1") == 4

	github_fetcher.fail_all = False
	gitlab_fetcher.calls.clear()
	healed = await contribution_service.refresh_day(UserIdentity("u1", github_login="octo"), now=NOW)

	assert healed.result.errors == []
	assert gitlab_fetcher.calls == []
	assert repository.totals[("u1", Provider.GITLAB)].all_time == 4
	assert repository.totals[("u1", Provider.GITHUB)].all_time == 2
	assert await fake_redis.zscore("lb:total:all", "u1") == 6


@pytest.mark.asyncio
async def test_backfill_covers_the_trailing_window(contribution_service, github_fetcher, fake_redis):
	outcome = await contribution_service.backfill(UserIdentity("u1", github_login="octo"), days=5, now=NOW)

	assert outcome.from_day == date(2025, 2, 26)
	assert outcome.to_day == TODAY
	assert outcome.result.days_refreshed == 5
	assert len(github_fetcher.calls) == 5


@pytest.mark.asyncio
async def test_backfill_conflicts_whatever_the_range(contribution_service, fake_redis):
	assert await LockManager(fake_redis).acquire(BackfillLockKey(Provider.GITLAB, "u1"), 60)

	with pytest.raises(LockConflictError):
		await contribution_service.backfill(UserIdentity("u1", gitlab_username="tanuki"), days=90, now=NOW)


@pytest.mark.asyncio
async def test_locks_are_released_after_an_unexpected_error(contribution_service, github_fetcher, fake_redis):
	github_fetcher.crash_users.add("u1")

	with pytest.raises(RuntimeError):
		await contribution_service.refresh_day(UserIdentity("u1", github_login="octo"), now=NOW)

	assert await _lock_keys(fake_redis) == []
	assert not await fake_redis.sismember(KNOWN_USERS_KEY, "u1")


@pytest.mark.asyncio
async def test_usage_errors_are_raised_before_locking(contribution_service, fake_redis):
	with pytest.raises(ContributionUsageError):
		await contribution_service.refresh_day(UserIdentity("u1"), now=NOW)
	with pytest.raises(ContributionUsageError):
		await contribution_service.refresh_day(
			UserIdentity("u1", github_login="octo"), from_day=TODAY, to_day=YESTERDAY, now=NOW
		)
	assert await _lock_keys(fake_redis) == []


@pytest.mark.asyncio
async def test_remove_user_drops_rankings_and_registry(contribution_service, fake_redis):
	await contribution_service.refresh_day(UserIdentity("u1", github_login="octo"), now=NOW)

	await contribution_service.remove_user("u1")

	assert await fake_redis.zscore("lb:total:all", "u1") is None
	assert not await fake_redis.sismember(KNOWN_USERS_KEY, "u1")

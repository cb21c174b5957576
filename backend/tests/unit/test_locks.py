import asyncio
from datetime import date

import pytest

from contribrank.domain.contributions.lock_keys import BackfillLockKey, DayRangeLockKey, lock_key_string
from contribrank.domain.contributions.models import Provider
from contribrank.infra.locks import LockConflictError, LockManager


def test_lock_keys_render_canonical_strings():
	day_key = DayRangeLockKey(Provider.GITLAB, "user-1", date(2025, 1, 1), date(2025, 1, 2))
	backfill_key = BackfillLockKey(Provider.GITHUB, "user-1")
	assert lock_key_string(day_key) == "lock:refresh:gitlab:user-1:2025-01-01:2025-01-02"
	assert lock_key_string(backfill_key) == "lock:backfill:github:user-1"
	assert day_key == DayRangeLockKey(Provider.GITLAB, "user-1", date(2025, 1, 1), date(2025, 1, 2))


@pytest.mark.asyncio
async def test_acquire_is_exclusive_until_release(fake_redis):
	first = LockManager(fake_redis)
	second = LockManager(fake_redis)
	token = await first.acquire("lock:test", 30)
	assert token is not None
	assert await second.acquire("lock:test", 30) is None
	await first.release("lock:test", token)
	assert await second.acquire("lock:test", 30) is not None


@pytest.mark.asyncio
async def test_release_is_idempotent(fake_redis):
	manager = LockManager(fake_redis)
	await manager.release("lock:never-held", "no-token")
	token = await manager.acquire("lock:test", 30)
	assert token is not None
	await manager.release("lock:test", token)
	await manager.release("lock:test", token)
	assert await fake_redis.exists("lock:test") == 0


@pytest.mark.asyncio
async def test_release_does_not_delete_a_lock_held_by_someone_else(fake_redis):
	stale = LockManager(fake_redis)
	stale_token = await stale.acquire("lock:test", 30)
	assert stale_token is not None
	# Simulate expiry followed by a new holder.
	await fake_redis.delete("lock:test")
	fresh = LockManager(fake_redis)
	assert await fresh.acquire("lock:test", 30) is not None
	await stale.release("lock:test", stale_token)
	assert await fake_redis.exists("lock:test") == 1


@pytest.mark.asyncio
async def test_shared_manager_keeps_new_holder_after_expiry(fake_redis):
	manager = LockManager(fake_redis)
	first_entered = asyncio.Event()
	first_finish = asyncio.Event()
	second_entered = asyncio.Event()
	second_finish = asyncio.Event()

	async def slow_first():
		first_entered.set()
		await first_finish.wait()

	async def second():
		second_entered.set()
		await second_finish.wait()

	first_task = asyncio.create_task(manager.with_lock("lock:shared", 1, slow_first))
	await first_entered.wait()
	await asyncio.sleep(1.2)

	second_task = asyncio.create_task(manager.with_lock("lock:shared", 30, second))
	await second_entered.wait()

	# The first holder outlived its TTL; leaving must not free the second holder's lock.
	first_finish.set()
	await first_task
	assert await fake_redis.exists("lock:shared") == 1
	with pytest.raises(LockConflictError):
		await manager.with_lock("lock:shared", 30, second)

	second_finish.set()
	await second_task
	assert await fake_redis.exists("lock:shared") == 0


@pytest.mark.asyncio
async def test_with_lock_mutual_exclusion(fake_redis):
	entered = asyncio.Event()
	finish = asyncio.Event()
	calls: list[str] = []

	async def work():
		calls.append("run")
		entered.set()
		await finish.wait()
		return "first"

	holder = asyncio.create_task(LockManager(fake_redis).with_lock("lock:test", 30, work))
	await entered.wait()

	with pytest.raises(LockConflictError) as info:
		await LockManager(fake_redis).with_lock("lock:test", 30, work)
	assert info.value.key == "lock:test"

	finish.set()
	assert await holder == "first"
	assert calls == ["run"]
	assert await fake_redis.exists("lock:test") == 0


@pytest.mark.asyncio
async def test_with_lock_releases_on_error(fake_redis):
	async def boom():
		raise RuntimeError("failed")

	with pytest.raises(RuntimeError):
		await LockManager(fake_redis).with_lock("lock:test", 30, boom)
	assert await fake_redis.exists("lock:test") == 0


@pytest.mark.asyncio
async def test_ttl_expiry_frees_the_key(fake_redis):
	crashed = LockManager(fake_redis)
	other = LockManager(fake_redis)
	assert await crashed.acquire("lock:ttl", 1) is not None
	assert await other.acquire("lock:ttl", 1) is None
	await asyncio.sleep(1.1)
	assert await other.acquire("lock:ttl", 30) is not None


@pytest.mark.asyncio
async def test_hold_acquires_in_sorted_order_and_rolls_back_on_conflict(fake_redis):
	gitlab_key = BackfillLockKey(Provider.GITLAB, "user-1")
	github_key = BackfillLockKey(Provider.GITHUB, "user-1")
	blocker = LockManager(fake_redis)
	assert await blocker.acquire(gitlab_key, 30)

	manager = LockManager(fake_redis)
	with pytest.raises(LockConflictError) as info:
		async with manager.hold([gitlab_key, github_key], 30):
			pytest.fail("body must not run")
	assert info.value.key == gitlab_key
	# github sorts first, so it was acquired and must have been released again.
	assert await fake_redis.exists(github_key.canonical()) == 0
	assert await fake_redis.exists(gitlab_key.canonical()) == 1


@pytest.mark.asyncio
async def test_hold_releases_every_key_on_exit(fake_redis):
	keys = [BackfillLockKey(Provider.GITLAB, "u"), BackfillLockKey(Provider.GITHUB, "u")]
	manager = LockManager(fake_redis)
	async with manager.hold(keys, 30):
		for key in keys:
			assert await fake_redis.exists(key.canonical()) == 1
	for key in keys:
		assert await fake_redis.exists(key.canonical()) == 0

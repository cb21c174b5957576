"""Redis-backed TTL locks.

Locks are plain ``SET key token NX EX ttl`` entries. A holder that crashes simply
lets the TTL lapse, after which the key becomes acquirable again; there is no
explicit cancel. Release is compare-and-delete on the holder token, so a caller
whose lock already expired never deletes a lock that somebody else now holds.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple, TypeVar, Union

from redis.exceptions import WatchError

from contribrank.infra.redis import redis_client

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SupportsLockKey(Protocol):
	"""Typed lock key that renders to a canonical Redis key."""

	def canonical(self) -> str:
		...


LockKeyLike = Union[str, SupportsLockKey]


def render_key(key: LockKeyLike) -> str:
	if isinstance(key, str):
		return key
	return key.canonical()


class LockConflictError(Exception):
	"""Raised when a lock is already held by another caller."""

	def __init__(self, key: LockKeyLike) -> None:
		self.key = key
		super().__init__(f"lock_in_use:{render_key(key)}")


class LockManager:
	"""Non-blocking mutual exclusion keyed by arbitrary strings.

	Holder tokens belong to each acquisition, never to the manager, so one
	manager can be shared by every request and the cron job.
	"""

	def __init__(self, redis=None) -> None:
		self._redis = redis if redis is not None else redis_client

	async def acquire(self, key: LockKeyLike, ttl_seconds: int) -> Optional[str]:
		"""Return the holder token when the lock was obtained, None when held and unexpired."""
		name = render_key(key)
		token = uuid.uuid4().hex
		ok = await self._redis.set(name, token, nx=True, ex=max(1, int(ttl_seconds)))
		if not ok:
			return None
		return token

	async def release(self, key: LockKeyLike, token: str) -> None:
		"""Delete the lock only while it still carries ``token``; otherwise a no-op."""
		name = render_key(key)
		async with self._redis.pipeline(transaction=True) as pipe:
			try:
				await pipe.watch(name)
				current = await pipe.get(name)
				if current != token:
					if current is not None:
						LOGGER.info("lock_release_skipped", extra={"key": name})
					return
				pipe.multi()
				pipe.delete(name)
				await pipe.execute()
			except WatchError:
				# Lock changed hands between GET and DEL: it is no longer ours.
				LOGGER.info("lock_release_raced", extra={"key": name})

	@asynccontextmanager
	async def hold(self, keys: Sequence[LockKeyLike], ttl_seconds: int) -> AsyncIterator[None]:
		"""Acquire every key in canonical sorted order and release them all on exit.

		Raises ``LockConflictError`` for the first key that is already held; keys
		acquired before it are released before the error propagates.
		"""
		ordered = sorted(keys, key=render_key)
		acquired: List[Tuple[LockKeyLike, str]] = []
		try:
			for key in ordered:
				token = await self.acquire(key, ttl_seconds)
				if token is None:
					LOGGER.info("lock_conflict", extra={"key": render_key(key)})
					raise LockConflictError(key)
				acquired.append((key, token))
			yield
		finally:
			for key, token in reversed(acquired):
				await self.release(key, token)

	async def with_lock(
		self,
		key: LockKeyLike,
		ttl_seconds: int,
		fn: Callable[[], Awaitable[T]],
	) -> T:
		async with self.hold([key], ttl_seconds):
			return await fn()


__all__ = ["LockConflictError", "LockManager", "SupportsLockKey", "render_key"]

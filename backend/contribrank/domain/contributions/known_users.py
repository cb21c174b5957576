"""Known-users registry consumed by the scheduler.

Every user that has been refreshed at least once is remembered together with
its provider logins, so the daily job knows whom to refresh without scanning
the full user table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence

from contribrank.domain.contributions.models import UserIdentity
from contribrank.infra.redis import redis_client

KNOWN_USERS_KEY = "lb:users"


def meta_key(user_id: str) -> str:
	return f"lb:user:{user_id}"


@dataclass(slots=True)
class UserProfile:
	"""Display metadata for a leaderboard row."""

	user_id: str
	username: str
	avatar_url: Optional[str] = None
	github_login: Optional[str] = None
	gitlab_username: Optional[str] = None

	def to_dict(self) -> Dict[str, Optional[str]]:
		return {
			"userId": self.user_id,
			"username": self.username,
			"avatarUrl": self.avatar_url,
			"githubLogin": self.github_login,
			"gitlabUsername": self.gitlab_username,
		}


def _github_avatar(login: str) -> str:
	return f"https://github.com/{login}.png?size=80"


def _gitlab_avatar(username: str) -> str:
	return f"https://gitlab.com/{username}.png?width=80"


def profile_from_meta(user_id: str, meta: Dict[str, str]) -> UserProfile:
	github_login = meta.get("githubLogin") or None
	gitlab_username = meta.get("gitlabUsername") or None
	username = meta.get("username") or github_login or gitlab_username or user_id[:8]
	avatar_url = meta.get("avatarUrl")
	if not avatar_url and github_login:
		avatar_url = _github_avatar(github_login)
	if not avatar_url and gitlab_username:
		avatar_url = _gitlab_avatar(gitlab_username)
	return UserProfile(
		user_id=user_id,
		username=username,
		avatar_url=avatar_url,
		github_login=github_login,
		gitlab_username=gitlab_username,
	)


class KnownUsersRepository(Protocol):
	"""Registry of users the scheduler refreshes."""

	async def list_known_users(self, limit: int) -> Sequence[str]:
		...

	async def get_identities(self, user_ids: Sequence[str]) -> Sequence[UserIdentity]:
		...

	async def remember(self, identity: UserIdentity) -> None:
		...

	async def get_profiles(self, user_ids: Sequence[str]) -> Sequence[UserProfile]:
		...

	async def forget(self, user_id: str) -> None:
		...


class RedisKnownUsers(KnownUsersRepository):
	"""Known users as a Redis set plus one metadata hash per user."""

	def __init__(self, redis=None) -> None:
		self._redis = redis if redis is not None else redis_client

	async def list_known_users(self, limit: int) -> Sequence[str]:
		members = await self._redis.smembers(KNOWN_USERS_KEY)
		return sorted(str(member) for member in members)[: max(0, limit)]

	async def _read_meta(self, user_ids: Sequence[str]) -> List[Dict[str, str]]:
		if not user_ids:
			return []
		async with self._redis.pipeline(transaction=False) as pipe:
			for user_id in user_ids:
				pipe.hgetall(meta_key(user_id))
			rows = await pipe.execute()
		return [row or {} for row in rows]

	async def get_identities(self, user_ids: Sequence[str]) -> Sequence[UserIdentity]:
		metas = await self._read_meta(user_ids)
		return [
			UserIdentity(
				user_id=user_id,
				github_login=meta.get("githubLogin"),
				gitlab_username=meta.get("gitlabUsername"),
			)
			for user_id, meta in zip(user_ids, metas)
		]

	async def remember(self, identity: UserIdentity) -> None:
		updates: Dict[str, str] = {}
		if identity.github_login:
			updates["githubLogin"] = identity.github_login
			updates["username"] = identity.github_login
			updates["avatarUrl"] = _github_avatar(identity.github_login)
		if identity.gitlab_username:
			updates["gitlabUsername"] = identity.gitlab_username
			updates.setdefault("username", identity.gitlab_username)
			updates.setdefault("avatarUrl", _gitlab_avatar(identity.gitlab_username))
		async with self._redis.pipeline(transaction=True) as pipe:
			if updates:
				pipe.hset(meta_key(identity.user_id), mapping=updates)
			pipe.sadd(KNOWN_USERS_KEY, identity.user_id)
			await pipe.execute()

	async def get_profiles(self, user_ids: Sequence[str]) -> Sequence[UserProfile]:
		metas = await self._read_meta(user_ids)
		return [profile_from_meta(user_id, meta) for user_id, meta in zip(user_ids, metas)]

	async def forget(self, user_id: str) -> None:
		async with self._redis.pipeline(transaction=True) as pipe:
			pipe.srem(KNOWN_USERS_KEY, user_id)
			pipe.delete(meta_key(user_id))
			await pipe.execute()


__all__ = [
	"KNOWN_USERS_KEY",
	"KnownUsersRepository",
	"RedisKnownUsers",
	"UserProfile",
	"meta_key",
	"profile_from_meta",
]

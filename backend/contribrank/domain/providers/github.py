"""GitHub GraphQL contribution fetcher."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Dict, List, Mapping, Optional

import httpx
from pydantic import BaseModel, ValidationError

from contribrank.domain.contributions.dates import day_bounds, day_buckets
from contribrank.domain.contributions.errors import ProviderFetchError
from contribrank.domain.contributions.models import Provider, UserIdentity
from contribrank.domain.providers.base import RetryingHttp, Sleep
from contribrank.settings import settings

LOGGER = logging.getLogger(__name__)

CONTRIBUTIONS_QUERY = """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    login
    contributionsCollection(from: $from, to: $to) {
      totalCommitContributions
      totalPullRequestContributions
      totalIssueContributions
    }
  }
  rateLimit {
    cost
    remaining
    resetAt
  }
}
"""


class _Contributions(BaseModel):
	totalCommitContributions: int = 0
	totalPullRequestContributions: int = 0
	totalIssueContributions: int = 0

	@property
	def total(self) -> int:
		return self.totalCommitContributions + self.totalPullRequestContributions + self.totalIssueContributions


class _User(BaseModel):
	login: str
	contributionsCollection: _Contributions


class _RateLimit(BaseModel):
	cost: int
	remaining: int
	resetAt: str


class _Data(BaseModel):
	user: Optional[_User] = None
	rateLimit: Optional[_RateLimit] = None


class _GraphQLError(BaseModel):
	message: str
	type: Optional[str] = None


class _GraphQLResponse(BaseModel):
	data: Optional[_Data] = None
	errors: Optional[List[_GraphQLError]] = None


class GithubFetcher:
	"""Counts commits, pull requests and issues per UTC day via GraphQL.

	The GraphQL API rejects anonymous calls, so a missing token means the
	provider is skipped rather than failed.
	"""

	provider = Provider.GITHUB

	def __init__(
		self,
		client: Optional[httpx.AsyncClient] = None,
		*,
		token: Optional[str] = None,
		graphql_url: Optional[str] = None,
		max_attempts: Optional[int] = None,
		backoff_seconds: Optional[float] = None,
		sleep: Sleep = asyncio.sleep,
	) -> None:
		self._client = client or httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
		self._owns_client = client is None
		self.token = token
		self.graphql_url = graphql_url or settings.github_graphql_url
		self._http = RetryingHttp(
			self.provider,
			self._client,
			max_attempts=max_attempts or settings.provider_max_attempts,
			backoff_seconds=settings.provider_backoff_seconds if backoff_seconds is None else backoff_seconds,
			sleep=sleep,
		)

	def can_fetch(self, identity: UserIdentity, auth_token: Optional[str]) -> bool:
		return bool(identity.github_login and (auth_token or self.token))

	async def fetch_daily_counts(
		self,
		identity: UserIdentity,
		from_day: date,
		to_day: date,
		auth_token: Optional[str] = None,
	) -> Mapping[date, int]:
		token = auth_token or self.token
		if not self.can_fetch(identity, token):
			LOGGER.info("github_fetch_skipped", extra={"user_id": identity.user_id})
			return {}
		assert identity.github_login is not None and token is not None
		counts: Dict[date, int] = {}
		for day in day_buckets(from_day, to_day):
			counts[day] = await self._count_day(identity.github_login, day, token)
		return counts

	async def _count_day(self, login: str, day: date, token: str) -> int:
		start, end = day_bounds(day)
		response = await self._http.request(
			"POST",
			self.graphql_url,
			json={
				"query": CONTRIBUTIONS_QUERY,
				"variables": {"login": login, "from": start.isoformat(), "to": end.isoformat()},
			},
			headers={"Authorization": f"bearer {token}", "Content-Type": "application/json"},
		)
		try:
			parsed = _GraphQLResponse.model_validate(response.json())
		except (ValueError, ValidationError) as exc:
			raise ProviderFetchError(self.provider.value, "unexpected GitHub GraphQL response shape") from exc
		if parsed.errors:
			messages = "; ".join(error.message for error in parsed.errors)
			# An unknown login is not a failure: it simply has no contributions.
			if parsed.data is not None and parsed.data.user is None and all(e.type == "NOT_FOUND" for e in parsed.errors):
				return 0
			raise ProviderFetchError(self.provider.value, f"GitHub GraphQL error(s): {messages}")
		if parsed.data is None:
			raise ProviderFetchError(self.provider.value, "GitHub GraphQL returned no data")
		if parsed.data.rateLimit is not None and parsed.data.rateLimit.remaining < 50:
			LOGGER.warning(
				"github_rate_limit_low",
				extra={"remaining": parsed.data.rateLimit.remaining, "reset_at": parsed.data.rateLimit.resetAt},
			)
		if parsed.data.user is None:
			return 0
		return parsed.data.user.contributionsCollection.total

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()


__all__ = ["GithubFetcher", "CONTRIBUTIONS_QUERY"]

"""Shared plumbing for provider fetchers."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Awaitable, Callable, Dict, Mapping, Optional, Protocol

import httpx

from contribrank.domain.contributions.errors import ProviderFetchError
from contribrank.domain.contributions.models import Provider, UserIdentity

LOGGER = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
MIN_RETRY_AFTER_SECONDS = 1.0
MAX_RETRY_AFTER_SECONDS = 10.0

Sleep = Callable[[float], Awaitable[None]]


class ProviderFetcher(Protocol):
	"""Returns one contribution count per UTC day for a user."""

	provider: Provider

	def can_fetch(self, identity: UserIdentity, auth_token: Optional[str]) -> bool:
		"""False when the provider must be skipped (no login, or a required token is missing)."""

	async def fetch_daily_counts(
		self,
		identity: UserIdentity,
		from_day: date,
		to_day: date,
		auth_token: Optional[str] = None,
	) -> Mapping[date, int]:
		"""Counts for every day of the inclusive range, or an empty mapping when skipped."""


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
	raw = response.headers.get("Retry-After")
	if not raw:
		return None
	try:
		value = float(raw)
	except ValueError:
		return None
	return min(max(value, MIN_RETRY_AFTER_SECONDS), MAX_RETRY_AFTER_SECONDS)


def _is_rate_limited(response: httpx.Response) -> bool:
	if response.status_code in RETRYABLE_STATUS:
		return True
	# GitHub signals primary rate limits with 403 and an exhausted budget.
	return response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"


class RetryingHttp:
	"""Issues requests with a small bounded number of retries and backoff."""

	def __init__(
		self,
		provider: Provider,
		client: httpx.AsyncClient,
		*,
		max_attempts: int = 3,
		backoff_seconds: float = 0.5,
		sleep: Sleep = asyncio.sleep,
	) -> None:
		self.provider = provider
		self.client = client
		self.max_attempts = max(1, max_attempts)
		self.backoff_seconds = backoff_seconds
		self._sleep = sleep

	def _backoff(self, attempt: int, response: Optional[httpx.Response]) -> float:
		if response is not None:
			retry_after = _retry_after_seconds(response)
			if retry_after is not None:
				return retry_after
		return self.backoff_seconds * (2 ** attempt)

	async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
		last_error = "no attempt made"
		status_code: Optional[int] = None
		for attempt in range(self.max_attempts):
			response: Optional[httpx.Response] = None
			try:
				response = await self.client.request(method, url, **kwargs)
			except httpx.TransportError as exc:
				last_error = f"transport error: {exc.__class__.__name__}"
			else:
				if response.is_success:
					return response
				status_code = response.status_code
				last_error = f"HTTP {response.status_code}: {response.text[:200]}"
				if not _is_rate_limited(response):
					raise ProviderFetchError(self.provider.value, last_error, status_code=status_code)
			if attempt + 1 < self.max_attempts:
				delay = self._backoff(attempt, response)
				LOGGER.warning(
					"provider_request_retry",
					extra={
						"provider": self.provider.value,
						"attempt": attempt + 1,
						"delay_s": delay,
						"reason": last_error,
					},
				)
				await self._sleep(delay)
		raise ProviderFetchError(
			self.provider.value,
			f"gave up after {self.max_attempts} attempts: {last_error}",
			status_code=status_code,
		)


def zero_filled(days: list[date], counts: Mapping[date, int]) -> Dict[date, int]:
	return {day: max(0, int(counts.get(day, 0))) for day in days}


__all__ = ["ProviderFetcher", "RetryingHttp", "zero_filled"]

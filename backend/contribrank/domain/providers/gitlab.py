"""GitLab REST (v4) contribution fetcher."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from contribrank.domain.contributions.dates import day_bounds, day_buckets
from contribrank.domain.contributions.errors import ProviderFetchError
from contribrank.domain.contributions.models import Provider, UserIdentity
from contribrank.domain.providers.base import RetryingHttp, Sleep, zero_filled
from contribrank.settings import settings

LOGGER = logging.getLogger(__name__)

PER_PAGE = 100
MAX_PAGES = 25


class GitlabUser(BaseModel):
	id: int
	username: str


class GitlabPushData(BaseModel):
	commit_count: Optional[int] = None


class GitlabEvent(BaseModel):
	id: int
	action_name: Optional[str] = None
	target_type: Optional[str] = None
	created_at: datetime
	push_data: Optional[GitlabPushData] = None


_USERS = TypeAdapter(List[GitlabUser])
_EVENTS = TypeAdapter(List[GitlabEvent])


def event_weight(event: GitlabEvent) -> int:
	"""Contribution value of a single event: pushed commits, opened MRs and issues."""
	action = (event.action_name or "").lower()
	if event.push_data is not None and event.push_data.commit_count is not None and "push" in action:
		return max(0, event.push_data.commit_count)
	if event.target_type in ("MergeRequest", "Issue") and action == "opened":
		return 1
	return 0


def bucket_events(events: Iterable[GitlabEvent]) -> Dict[date, int]:
	counts: Dict[date, int] = defaultdict(int)
	for event in events:
		weight = event_weight(event)
		if weight:
			counts[event.created_at.astimezone(timezone.utc).date()] += weight
	return dict(counts)


class GitlabFetcher:
	"""Counts pushed commits, opened merge requests and opened issues per UTC day.

	Works unauthenticated against public profiles; a token only raises the
	rate limit and exposes private activity the token can see.
	"""

	provider = Provider.GITLAB

	def __init__(
		self,
		client: Optional[httpx.AsyncClient] = None,
		*,
		token: Optional[str] = None,
		base_url: Optional[str] = None,
		max_attempts: Optional[int] = None,
		backoff_seconds: Optional[float] = None,
		sleep: Sleep = asyncio.sleep,
	) -> None:
		self._client = client or httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
		self._owns_client = client is None
		self.token = token
		self.base_url = (base_url or settings.gitlab_base_url).rstrip("/")
		self._http = RetryingHttp(
			self.provider,
			self._client,
			max_attempts=max_attempts or settings.provider_max_attempts,
			backoff_seconds=settings.provider_backoff_seconds if backoff_seconds is None else backoff_seconds,
			sleep=sleep,
		)
		self._user_ids: Dict[str, Optional[int]] = {}

	def can_fetch(self, identity: UserIdentity, auth_token: Optional[str]) -> bool:
		return bool(identity.gitlab_username)

	def _headers(self, token: Optional[str]) -> Dict[str, str]:
		headers = {"Accept": "application/json"}
		if token:
			headers["PRIVATE-TOKEN"] = token
		return headers

	async def _get(self, path: str, token: Optional[str], params: Mapping[str, object]) -> httpx.Response:
		return await self._http.request(
			"GET",
			f"{self.base_url}{path}",
			params={key: str(value) for key, value in params.items()},
			headers=self._headers(token),
		)

	async def resolve_user_id(self, username: str, token: Optional[str]) -> Optional[int]:
		if username in self._user_ids:
			return self._user_ids[username]
		response = await self._get("/api/v4/users", token, {"username": username, "per_page": 1})
		try:
			users = _USERS.validate_python(response.json())
		except (ValueError, ValidationError) as exc:
			raise ProviderFetchError(self.provider.value, "unexpected GitLab users response shape") from exc
		user_id = users[0].id if users else None
		self._user_ids[username] = user_id
		return user_id

	async def _events(self, user_id: int, from_day: date, to_day: date, token: Optional[str]) -> List[GitlabEvent]:
		lower, _ = day_bounds(from_day)
		_, upper = day_bounds(to_day)
		params: Dict[str, object] = {
			# GitLab's after/before filters are exclusive calendar dates.
			"after": (from_day - timedelta(days=1)).isoformat(),
			"before": (to_day + timedelta(days=1)).isoformat(),
			"per_page": PER_PAGE,
			"scope": "all",
		}
		page = 1
		out: List[GitlabEvent] = []
		while True:
			response = await self._get(f"/api/v4/users/{user_id}/events", token, {**params, "page": page})
			try:
				events = _EVENTS.validate_python(response.json())
			except (ValueError, ValidationError) as exc:
				raise ProviderFetchError(self.provider.value, "unexpected GitLab events response shape") from exc
			in_window = [event for event in events if lower <= event.created_at < upper]
			out.extend(in_window)
			if events and not in_window and max(event.created_at for event in events) < lower:
				break
			next_page = response.headers.get("X-Next-Page", "")
			if not next_page.isdigit() or int(next_page) <= 0:
				break
			page = int(next_page)
			if page > MAX_PAGES:
				LOGGER.warning("gitlab_events_truncated", extra={"gitlab_user_id": user_id, "pages": MAX_PAGES})
				break
		return out

	async def fetch_daily_counts(
		self,
		identity: UserIdentity,
		from_day: date,
		to_day: date,
		auth_token: Optional[str] = None,
	) -> Mapping[date, int]:
		token = auth_token or self.token
		if not self.can_fetch(identity, token):
			return {}
		assert identity.gitlab_username is not None
		days = day_buckets(from_day, to_day)
		user_id = await self.resolve_user_id(identity.gitlab_username, token)
		if user_id is None:
			# Unknown username: a valid, all-zero answer rather than a failure.
			return zero_filled(days, {})
		events = await self._events(user_id, from_day, to_day, token)
		return zero_filled(days, bucket_events(events))

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()


__all__ = ["GitlabFetcher", "bucket_events", "event_weight"]

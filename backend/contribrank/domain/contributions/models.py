"""Domain models for contribution days, totals and refresh results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Provider(str, Enum):
	"""External git hosting backends."""

	GITHUB = "github"
	GITLAB = "gitlab"


class Window(str, Enum):
	"""Trailing windows over which day counts are summed."""

	ALL = "all"
	D30 = "30d"
	D365 = "365d"

	@property
	def days(self) -> Optional[int]:
		if self is Window.D30:
			return 30
		if self is Window.D365:
			return 365
		return None


class ProviderSelector(str, Enum):
	"""Axis along which leaderboards are split."""

	GITHUB = "github"
	GITLAB = "gitlab"
	COMBINED = "combined"

	@property
	def provider(self) -> Optional[Provider]:
		if self is ProviderSelector.COMBINED:
			return None
		return Provider(self.value)


@dataclass(slots=True)
class UserIdentity:
	"""Which external accounts to query for a user."""

	user_id: str
	github_login: Optional[str] = None
	gitlab_username: Optional[str] = None

	def __post_init__(self) -> None:
		self.github_login = _clean(self.github_login)
		self.gitlab_username = _clean(self.gitlab_username)

	def login_for(self, provider: Provider) -> Optional[str]:
		if provider is Provider.GITHUB:
			return self.github_login
		return self.gitlab_username

	@property
	def providers(self) -> List[Provider]:
		"""Linked providers in canonical (sorted) order."""
		return [p for p in sorted(Provider, key=lambda p: p.value) if self.login_for(p)]

	def has_any_login(self) -> bool:
		return bool(self.github_login or self.gitlab_username)


def _clean(value: Optional[str]) -> Optional[str]:
	if value is None:
		return None
	value = value.strip()
	return value or None


@dataclass(slots=True)
class ContributionDay:
	"""One UTC day's count for one user/provider pair."""

	user_id: str
	provider: Provider
	day: date
	count: int


@dataclass(slots=True)
class ContributionTotals:
	"""Rolling-window totals materialised from contribution days."""

	user_id: str
	provider: Provider
	all_time: int = 0
	last_30d: int = 0
	last_365d: int = 0
	updated_at: Optional[datetime] = None

	def score(self, window: Window) -> int:
		if window is Window.D30:
			return self.last_30d
		if window is Window.D365:
			return self.last_365d
		return self.all_time

	@classmethod
	def from_record(cls, record: Any) -> "ContributionTotals":
		return cls(
			user_id=str(record["user_id"]),
			provider=Provider(record["provider"]),
			all_time=int(record["all_time"] or 0),
			last_30d=int(record["last_30d"] or 0),
			last_365d=int(record["last_365d"] or 0),
			updated_at=record["updated_at"],
		)


@dataclass(slots=True)
class DayFailure:
	"""A provider fetch that failed after retries."""

	provider: Provider
	day: date
	error: str

	def to_dict(self) -> Dict[str, str]:
		return {"provider": self.provider.value, "day": self.day.isoformat(), "error": self.error}


@dataclass(slots=True)
class RefreshResult:
	"""Outcome of a Day-Range Refresher run."""

	days_refreshed: int = 0
	errors: List[DayFailure] = field(default_factory=list)
	skipped: List[Provider] = field(default_factory=list)
	written: Dict[Provider, int] = field(default_factory=dict)

	def failed_providers(self) -> List[Provider]:
		return sorted({failure.provider for failure in self.errors}, key=lambda p: p.value)


@dataclass(slots=True)
class RefreshOutcome:
	"""Result of a locked refresh + aggregate + sync cycle."""

	user_id: str
	providers: List[Provider]
	from_day: date
	to_day: date
	concurrency: int
	result: RefreshResult

"""Storage contracts and in-memory fallbacks for contribution data."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable, List, Mapping, MutableMapping, Optional, Protocol, Sequence, Tuple

from contribrank.domain.contributions.models import (
	ContributionDay,
	ContributionTotals,
	Provider,
	ProviderSelector,
	Window,
)

RankedRow = Tuple[str, int]


class ContributionRepository(Protocol):
	"""Relational source of truth: contribution days and derived totals."""

	async def upsert_days(self, user_id: str, provider: Provider, counts: Mapping[date, int]) -> int:
		"""Overwrite the count of every supplied day and return the number of rows written."""

	async def list_days(self, user_id: str, provider: Provider) -> Sequence[ContributionDay]:
		"""Return every stored day for a user/provider pair ordered by day."""

	async def providers_with_days(self, user_id: str) -> Sequence[Provider]:
		"""Providers for which the user has at least one day row."""

	async def sum_counts(
		self,
		user_id: str,
		provider: Provider,
		*,
		since: Optional[date] = None,
		until: Optional[date] = None,
	) -> int:
		"""Sum counts over an inclusive day range; open bounds are unbounded."""

	async def upsert_totals(self, totals: ContributionTotals) -> None:
		"""Replace the totals row of a user/provider pair."""

	async def get_totals(self, user_id: str) -> Sequence[ContributionTotals]:
		"""Totals rows for one user, one per provider with data."""

	async def get_totals_for_users(self, user_ids: Sequence[str]) -> Sequence[ContributionTotals]:
		"""Totals rows for a set of users."""

	async def rank_totals(
		self,
		selector: ProviderSelector,
		window: Window,
		*,
		limit: int,
		offset: int = 0,
		after: Optional[Tuple[float, str]] = None,
	) -> Sequence[RankedRow]:
		"""Rank users by score descending, ties by user id descending.

		When ``after`` is given, rows strictly after that ``(score, user_id)``
		position are returned and ``offset`` is ignored.
		"""

	async def list_user_ids_with_totals(self, limit: Optional[int] = None) -> Sequence[str]:
		"""Distinct user ids that have at least one totals row."""


def _after(row: RankedRow, position: Tuple[float, str]) -> bool:
	score, user_id = position
	return row[1] < score or (row[1] == score and row[0] < user_id)


def _order(rows: Iterable[RankedRow]) -> List[RankedRow]:
	return sorted(rows, key=lambda row: (row[1], row[0]), reverse=True)


@dataclass
class InMemoryContributionRepository(ContributionRepository):
	"""Simple repository with in-memory state for local development and tests."""

	days: MutableMapping[Tuple[str, Provider, date], int] = field(default_factory=dict)
	totals: MutableMapping[Tuple[str, Provider], ContributionTotals] = field(default_factory=dict)

	async def upsert_days(self, user_id: str, provider: Provider, counts: Mapping[date, int]) -> int:
		for day, count in counts.items():
			self.days[(user_id, provider, day)] = max(0, int(count))
		return len(counts)

	async def list_days(self, user_id: str, provider: Provider) -> Sequence[ContributionDay]:
		rows = [
			ContributionDay(user_id=uid, provider=prov, day=day, count=count)
			for (uid, prov, day), count in self.days.items()
			if uid == user_id and prov is provider
		]
		return sorted(rows, key=lambda row: row.day)

	async def providers_with_days(self, user_id: str) -> Sequence[Provider]:
		found = {prov for (uid, prov, _day) in self.days if uid == user_id}
		return sorted(found, key=lambda p: p.value)

	async def sum_counts(
		self,
		user_id: str,
		provider: Provider,
		*,
		since: Optional[date] = None,
		until: Optional[date] = None,
	) -> int:
		total = 0
		for (uid, prov, day), count in self.days.items():
			if uid != user_id or prov is not provider:
				continue
			if since is not None and day < since:
				continue
			if until is not None and day > until:
				continue
			total += count
		return total

	async def upsert_totals(self, totals: ContributionTotals) -> None:
		totals.updated_at = datetime.now(timezone.utc)
		self.totals[(totals.user_id, totals.provider)] = totals

	async def get_totals(self, user_id: str) -> Sequence[ContributionTotals]:
		rows = [row for (uid, _prov), row in self.totals.items() if uid == user_id]
		return sorted(rows, key=lambda row: row.provider.value)

	async def get_totals_for_users(self, user_ids: Sequence[str]) -> Sequence[ContributionTotals]:
		wanted = set(user_ids)
		return [row for (uid, _prov), row in self.totals.items() if uid in wanted]

	async def rank_totals(
		self,
		selector: ProviderSelector,
		window: Window,
		*,
		limit: int,
		offset: int = 0,
		after: Optional[Tuple[float, str]] = None,
	) -> Sequence[RankedRow]:
		scores: dict[str, int] = {}
		for (uid, prov), row in self.totals.items():
			if selector.provider is not None and prov is not selector.provider:
				continue
			scores[uid] = scores.get(uid, 0) + row.score(window)
		ranked = _order(scores.items())
		if after is not None:
			ranked = [row for row in ranked if _after(row, after)]
			offset = 0
		return ranked[offset : offset + limit]

	async def list_user_ids_with_totals(self, limit: Optional[int] = None) -> Sequence[str]:
		ids = sorted({uid for (uid, _prov) in self.totals})
		return ids if limit is None else ids[:limit]


__all__ = ["ContributionRepository", "InMemoryContributionRepository", "RankedRow"]

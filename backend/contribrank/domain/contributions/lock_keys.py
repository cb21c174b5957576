"""Typed lock keys for refresh operations.

Keys are built in exactly one place so the canonical Redis string cannot drift
between the refresh-day route, the backfill route and the scheduler.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Union

from contribrank.domain.contributions.models import Provider


@dataclass(frozen=True, slots=True)
class DayRangeLockKey:
	"""Guards one exact day range of one provider for one user."""

	provider: Provider
	user_id: str
	from_day: date
	to_day: date

	def canonical(self) -> str:
		return f"lock:refresh:{self.provider.value}:{self.user_id}:{self.from_day.isoformat()}:{self.to_day.isoformat()}"


@dataclass(frozen=True, slots=True)
class BackfillLockKey:
	"""Guards every backfill of one provider for one user, whatever the range."""

	provider: Provider
	user_id: str

	def canonical(self) -> str:
		return f"lock:backfill:{self.provider.value}:{self.user_id}"


RefreshLockKey = Union[DayRangeLockKey, BackfillLockKey]


def lock_key_string(key: RefreshLockKey) -> str:
	return key.canonical()

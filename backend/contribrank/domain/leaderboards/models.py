"""Read-side value objects for leaderboard pages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(slots=True)
class LeaderboardEntry:
	rank: int
	user_id: str
	score: int

	def to_dict(self) -> Dict[str, object]:
		return {"rank": self.rank, "userId": self.user_id, "score": self.score}


@dataclass(slots=True)
class LeaderboardPage:
	"""One page of ranked entries; ``source`` is ``redis`` or ``db``."""

	entries: List[LeaderboardEntry] = field(default_factory=list)
	next_cursor: Optional[str] = None
	source: str = "redis"


@dataclass(slots=True)
class ScoreBreakdown:
	"""Per-provider scores of one user for one window."""

	user_id: str
	github: int = 0
	gitlab: int = 0

	@property
	def total(self) -> int:
		return self.github + self.gitlab

	def to_dict(self) -> Dict[str, object]:
		return {"userId": self.user_id, "github": self.github, "gitlab": self.gitlab, "total": self.total}

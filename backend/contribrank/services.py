"""Process-wide service instances shared by the routers, the scheduler and the scripts."""

from __future__ import annotations

from contribrank.domain.contributions.known_users import RedisKnownUsers
from contribrank.domain.contributions.scheduler import SchedulerDriver
from contribrank.domain.contributions.service import ContributionService
from contribrank.domain.leaderboards.read import LeaderboardReader
from contribrank.domain.providers import default_fetchers, default_tokens
from contribrank.infra.contributions_repo import PostgresContributionRepository

repository = PostgresContributionRepository()
known_users = RedisKnownUsers()
contribution_service = ContributionService(
	repository,
	default_fetchers(),
	tokens=default_tokens(),
	known_users=known_users,
)
scheduler_driver = SchedulerDriver(contribution_service, known_users)
leaderboard_reader = LeaderboardReader(repository, known_users=known_users)

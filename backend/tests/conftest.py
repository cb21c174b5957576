import sys
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from contribrank.domain.contributions.dates import iter_days
from contribrank.domain.contributions.errors import ProviderFetchError
from contribrank.domain.contributions.known_users import RedisKnownUsers
from contribrank.domain.contributions.models import Provider, UserIdentity
from contribrank.domain.contributions.repository import InMemoryContributionRepository
from contribrank.domain.contributions.service import ContributionService
from contribrank.infra import postgres
from contribrank.infra.redis import redis_client, set_redis_client
from contribrank.main import app
from contribrank.settings import settings

CRON_SECRET = "test-cron-secret"


class StubFetcher:
	"""In-memory provider: fixed counts per day, optional failures."""

	def __init__(
		self,
		provider: Provider,
		counts: Optional[Dict[date, int]] = None,
		*,
		fail_days: Iterable[date] = (),
		requires_token: bool = False,
	) -> None:
		self.provider = provider
		self.counts: Dict[date, int] = dict(counts or {})
		self.fail_days = set(fail_days)
		self.fail_all = False
		self.crash_users: set[str] = set()
		self.requires_token = requires_token
		self.calls: list[date] = []

	def can_fetch(self, identity: UserIdentity, auth_token: Optional[str]) -> bool:
		if not identity.login_for(self.provider):
			return False
		return bool(auth_token) or not self.requires_token

	async def fetch_daily_counts(self, identity, from_day, to_day, auth_token=None):
		if identity.user_id in self.crash_users:
			raise RuntimeError("database unreachable")
		out: Dict[date, int] = {}
		for day in iter_days(from_day, to_day):
			self.calls.append(day)
			if self.fail_all or day in self.fail_days:
				raise ProviderFetchError(self.provider.value, "HTTP 502: bad gateway", status_code=502)
			out[day] = self.counts.get(day, 0)
		return out


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	original_secret = settings.cron_secret
	original_public = settings.obs_metrics_public
	settings.cron_secret = CRON_SECRET
	settings.obs_metrics_public = False
	try:
		yield
	finally:
		settings.cron_secret = original_secret
		settings.obs_metrics_public = original_public


@pytest.fixture
def repository():
	return InMemoryContributionRepository()


@pytest.fixture
def make_fetcher():
	return StubFetcher


@pytest.fixture
def github_fetcher():
	return StubFetcher(Provider.GITHUB)


@pytest.fixture
def gitlab_fetcher():
	return StubFetcher(Provider.GITLAB)


@pytest.fixture
def known_users(fake_redis):
	return RedisKnownUsers(fake_redis)


@pytest.fixture
def contribution_service(repository, github_fetcher, gitlab_fetcher, known_users, fake_redis):
	return ContributionService(
		repository,
		{Provider.GITHUB: github_fetcher, Provider.GITLAB: gitlab_fetcher},
		redis=fake_redis,
		known_users=known_users,
	)


@pytest.fixture
def auth_headers():
	return {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client

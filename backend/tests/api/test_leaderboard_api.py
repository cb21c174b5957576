import csv
import io

import pytest

from contribrank.api import leaderboards
from contribrank.domain.contributions.known_users import RedisKnownUsers
from contribrank.domain.contributions.models import ContributionTotals, Provider, UserIdentity
from contribrank.domain.leaderboards.read import LeaderboardReader
from contribrank.domain.leaderboards.sync import LeaderboardSynchronizer

USERS = [f"user-{index:02d}" for index in range(30)]


@pytest.fixture(autouse=True)
def wire_reader(monkeypatch, repository, fake_redis, known_users):
	reader = LeaderboardReader(repository, fake_redis, known_users)
	monkeypatch.setattr(leaderboards, "_reader", reader)
	return reader


async def _seed(repository, fake_redis, *, sync=True):
	synchronizer = LeaderboardSynchronizer(repository, fake_redis)
	for index, user_id in enumerate(USERS):
		await repository.upsert_totals(
			ContributionTotals(user_id, Provider.GITHUB, all_time=index * 10, last_30d=index, last_365d=index * 3)
		)
		if index % 3 == 0:
			await repository.upsert_totals(
				ContributionTotals(user_id, Provider.GITLAB, all_time=5, last_30d=1, last_365d=2)
			)
		if sync:
			await synchronizer.sync(user_id)


async def _collect(api_client, params):
	entries = []
	sources = set()
	cursor = None
	while True:
		query = dict(params)
		if cursor:
			query["cursor"] = cursor
		response = await api_client.get("/leaderboard", params=query)
		assert response.status_code == 200
		body = response.json()
		sources.add(body["source"])
		entries.extend(body["entries"])
		cursor = body["nextCursor"]
		if cursor is None:
			return entries, sources


def _expected_order():
	scores = {user_id: index + (1 if index % 3 == 0 else 0) for index, user_id in enumerate(USERS)}
	return sorted(USERS, key=lambda user_id: (scores[user_id], user_id), reverse=True)


@pytest.mark.asyncio
async def test_cursor_chain_walks_the_whole_board(api_client, repository, fake_redis):
	await _seed(repository, fake_redis)

	entries, sources = await _collect(api_client, {"window": "30d", "provider": "combined", "limit": 7})

	assert sources == {"redis"}
	assert [entry["userId"] for entry in entries] == _expected_order()
	assert [entry["rank"] for entry in entries] == list(range(1, 31))


@pytest.mark.asyncio
async def test_database_fallback_serves_the_same_order(api_client, repository, fake_redis):
	await _seed(repository, fake_redis, sync=False)

	entries, sources = await _collect(api_client, {"window": "30d", "limit": 8})

	assert sources == {"db"}
	assert [entry["userId"] for entry in entries] == _expected_order()


@pytest.mark.asyncio
async def test_provider_board_only_contains_that_provider(api_client, repository, fake_redis):
	await _seed(repository, fake_redis)

	response = await api_client.get("/leaderboard", params={"provider": "gitlab", "window": "all", "limit": 100})

	body = response.json()
	assert body["provider"] == "gitlab"
	assert len(body["entries"]) == 10
	assert body["nextCursor"] is None
	assert {entry["score"] for entry in body["entries"]} == {5}


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"params",
	[{"limit": 101}, {"limit": 0}, {"window": "7d"}, {"provider": "bitbucket"}],
)
async def test_invalid_query_parameters(api_client, params):
	response = await api_client.get("/leaderboard", params=params)
	assert response.status_code == 422


@pytest.mark.asyncio
async def test_bad_cursor_is_a_bad_request(api_client):
	response = await api_client.get("/leaderboard", params={"cursor": "garbage"})
	assert response.status_code == 400
	assert response.json()["detail"] == "invalid cursor"


@pytest.mark.asyncio
async def test_details_breakdown(api_client, repository, fake_redis):
	await _seed(repository, fake_redis)

	response = await api_client.post(
		"/leaderboard/details", json={"userIds": ["user-03", "nobody"], "window": "365d"}
	)

	assert response.status_code == 200
	assert response.json()["entries"] == [
		{"userId": "user-03", "github": 9, "gitlab": 2, "total": 11},
		{"userId": "nobody", "github": 0, "gitlab": 0, "total": 0},
	]


@pytest.mark.asyncio
async def test_details_requires_user_ids(api_client):
	response = await api_client.post("/leaderboard/details", json={"userIds": []})
	assert response.status_code == 422


@pytest.mark.asyncio
async def test_profiles(api_client, known_users):
	await known_users.remember(UserIdentity("u1", github_login="octo", gitlab_username="tanuki"))

	response = await api_client.get("/leaderboard/profiles", params={"userIds": "u1, unknown-user"})

	assert response.status_code == 200
	first, second = response.json()["entries"]
	assert first["username"] == "octo"
	assert first["gitlabUsername"] == "tanuki"
	assert first["avatarUrl"].startswith("https://github.com/octo")
	assert second["username"] == "unknown-"
	assert second["avatarUrl"] is None


@pytest.mark.asyncio
async def test_profiles_rejects_empty_lists(api_client):
	response = await api_client.get("/leaderboard/profiles", params={"userIds": " , "})
	assert response.status_code == 400


@pytest.mark.asyncio
async def test_export_csv(api_client, repository, fake_redis):
	await _seed(repository, fake_redis)

	response = await api_client.get("/leaderboard/export", params={"window": "30d", "limit": 5})

	assert response.status_code == 200
	assert response.headers["content-type"].startswith("text/csv")
	assert response.headers["X-Leaderboard-Source"] == "redis"
	assert "X-Next-Cursor" in response.headers
	assert 'filename="leaderboard_combined_30d_' in response.headers["Content-Disposition"]
	rows = list(csv.DictReader(io.StringIO(response.text)))
	assert [row["userId"] for row in rows] == _expected_order()[:5]
	assert rows[0]["rank"] == "1"

	rest = await api_client.get(
		"/leaderboard/export",
		params={"window": "30d", "limit": 100, "cursor": response.headers["X-Next-Cursor"]},
	)
	rest_rows = list(csv.DictReader(io.StringIO(rest.text)))
	assert [row["userId"] for row in rest_rows] == _expected_order()[5:]
	assert "X-Next-Cursor" not in rest.headers

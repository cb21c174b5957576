"""Request bodies for the internal and public leaderboard routes."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from contribrank.domain.contributions.models import UserIdentity, Window


class _IdentityRequest(BaseModel):
	user_id: str = Field(..., alias="userId", min_length=1)
	github_login: Optional[str] = Field(default=None, alias="githubLogin")
	gitlab_username: Optional[str] = Field(default=None, alias="gitlabUsername")
	concurrency: Optional[int] = Field(default=None, ge=1, le=8)

	model_config = {"populate_by_name": True}

	def identity(self) -> UserIdentity:
		return UserIdentity(
			user_id=self.user_id.strip(),
			github_login=self.github_login,
			gitlab_username=self.gitlab_username,
		)


class RefreshDayRequest(_IdentityRequest):
	from_day: Optional[date] = Field(default=None, alias="fromDayUtc")
	to_day: Optional[date] = Field(default=None, alias="toDayUtc")


class BackfillRequest(_IdentityRequest):
	days: Optional[int] = Field(default=None, ge=1, le=365)


class DetailsRequest(BaseModel):
	user_ids: List[str] = Field(..., alias="userIds", min_length=1, max_length=200)
	window: Window = Window.D30

	model_config = {"populate_by_name": True}

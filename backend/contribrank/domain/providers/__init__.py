"""Per-provider daily contribution fetchers."""

from __future__ import annotations

from typing import Dict, Optional

from contribrank.domain.contributions.models import Provider
from contribrank.domain.providers.base import ProviderFetcher
from contribrank.domain.providers.github import GithubFetcher
from contribrank.domain.providers.gitlab import GitlabFetcher
from contribrank.settings import settings


def default_fetchers() -> Dict[Provider, ProviderFetcher]:
	return {
		Provider.GITHUB: GithubFetcher(token=settings.github_token),
		Provider.GITLAB: GitlabFetcher(token=settings.gitlab_token),
	}


def default_tokens() -> Dict[Provider, Optional[str]]:
	return {
		Provider.GITHUB: settings.github_token,
		Provider.GITLAB: settings.gitlab_token,
	}


__all__ = ["GithubFetcher", "GitlabFetcher", "ProviderFetcher", "default_fetchers", "default_tokens"]

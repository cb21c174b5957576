"""Error taxonomy for contribution refreshes."""

from __future__ import annotations


class ContributionUsageError(ValueError):
	"""Malformed input rejected before any side effect."""


class ProviderFetchError(Exception):
	"""A provider fetch failed after the bounded retries were exhausted."""

	def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
		self.provider = provider
		self.status_code = status_code
		super().__init__(message)

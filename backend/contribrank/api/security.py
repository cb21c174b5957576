"""Shared-secret bearer guard for the internal write routes."""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from contribrank.settings import settings


def _bearer(authorization: Optional[str]) -> Optional[str]:
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1].strip()
	return None


async def require_cron_secret(
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	"""Reject before any lock or store is touched; an unset secret rejects everything."""
	expected = settings.cron_secret
	provided = _bearer(authorization)
	if not expected or provided is None or not secrets.compare_digest(provided, expected):
		raise HTTPException(
			status.HTTP_401_UNAUTHORIZED,
			detail="unauthorized",
			headers={"WWW-Authenticate": "Bearer"},
		)

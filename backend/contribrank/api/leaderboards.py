"""Public leaderboard routes: pages, per-provider details, profiles and CSV export."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Response, status

from contribrank import services
from contribrank.api.schemas import DetailsRequest
from contribrank.domain.contributions.models import ProviderSelector, Window
from contribrank.domain.leaderboards.read import EXPORT_LIMIT, PAGE_LIMIT

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])

_reader = services.leaderboard_reader


@router.get("")
async def leaderboard_endpoint(
	window: Window = Query(default=Window.D30),
	provider: ProviderSelector = Query(default=ProviderSelector.COMBINED),
	limit: int = Query(default=25, ge=1, le=PAGE_LIMIT),
	cursor: Optional[str] = Query(default=None),
) -> Dict[str, Any]:
	page = await _reader.get_page(window=window, selector=provider, limit=limit, cursor=cursor)
	return {
		"ok": True,
		"window": window.value,
		"provider": provider.value,
		"limit": limit,
		"cursor": cursor,
		"nextCursor": page.next_cursor,
		"source": page.source,
		"entries": [entry.to_dict() for entry in page.entries],
	}


@router.post("/details")
async def details_endpoint(payload: DetailsRequest) -> Dict[str, Any]:
	rows = await _reader.details(payload.user_ids, payload.window)
	return {"ok": True, "window": payload.window.value, "entries": [row.to_dict() for row in rows]}


@router.get("/profiles")
async def profiles_endpoint(user_ids: str = Query(..., alias="userIds")) -> Dict[str, Any]:
	ids = [value.strip() for value in user_ids.split(",") if value.strip()]
	if not ids or len(ids) > 200:
		raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="userIds must list between 1 and 200 ids")
	profiles = await _reader.profiles(ids)
	return {"ok": True, "entries": [profile.to_dict() for profile in profiles]}


@router.get("/export")
async def export_endpoint(
	window: Window = Query(default=Window.D30),
	provider: ProviderSelector = Query(default=ProviderSelector.COMBINED),
	limit: int = Query(default=500, ge=1, le=EXPORT_LIMIT),
	cursor: Optional[str] = Query(default=None),
) -> Response:
	result = await _reader.export(window=window, selector=provider, limit=limit, cursor=cursor)
	stamp = datetime.now(timezone.utc).date().isoformat()
	headers = {
		"Content-Disposition": f'attachment; filename="leaderboard_{provider.value}_{window.value}_{stamp}.csv"',
		"Cache-Control": "no-store",
		"X-Leaderboard-Source": result.source,
	}
	if result.next_cursor:
		headers["X-Next-Cursor"] = result.next_cursor
	return Response(content=result.to_csv(), media_type="text/csv; charset=utf-8", headers=headers)

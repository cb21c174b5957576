"""Internal write routes: refresh-day, backfill, daily cron and user removal."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from contribrank import services
from contribrank.api.schemas import BackfillRequest, RefreshDayRequest
from contribrank.api.security import require_cron_secret
from contribrank.domain.contributions.models import RefreshOutcome

router = APIRouter(
	prefix="/internal/leaderboard",
	tags=["internal"],
	dependencies=[Depends(require_cron_secret)],
)

_service = services.contribution_service
_driver = services.scheduler_driver


def _outcome_payload(outcome: RefreshOutcome, range_key: str) -> Dict[str, Any]:
	result = outcome.result
	return {
		"ok": True,
		"userId": outcome.user_id,
		"providers": [provider.value for provider in outcome.providers],
		range_key: {"from": outcome.from_day.isoformat(), "to": outcome.to_day.isoformat()},
		"daysRefreshed": result.days_refreshed,
		"concurrency": outcome.concurrency,
		"errors": [failure.to_dict() for failure in result.errors],
		"skipped": [provider.value for provider in result.skipped],
	}


@router.post("/refresh-day")
async def refresh_day_endpoint(payload: RefreshDayRequest) -> Dict[str, Any]:
	outcome = await _service.refresh_day(
		payload.identity(),
		from_day=payload.from_day,
		to_day=payload.to_day,
		concurrency=payload.concurrency,
	)
	return _outcome_payload(outcome, "range")


@router.post("/backfill")
async def backfill_endpoint(payload: BackfillRequest) -> Dict[str, Any]:
	outcome = await _service.backfill(
		payload.identity(),
		days=payload.days,
		concurrency=payload.concurrency,
	)
	return _outcome_payload(outcome, "window")


@router.get("/cron/daily")
async def cron_daily_endpoint(
	limit: Optional[int] = Query(default=None, ge=1, le=5000),
	concurrency: Optional[int] = Query(default=None, ge=1, le=8),
	dry: bool = Query(default=False),
) -> Dict[str, Any]:
	report = await _driver.run_daily(limit=limit, concurrency=concurrency, dry=dry)
	return report.to_dict()


@router.delete("/users/{user_id}", status_code=status.HTTP_200_OK)
async def remove_user_endpoint(user_id: str) -> Dict[str, Any]:
	await _service.remove_user(user_id)
	return {"ok": True, "userId": user_id}

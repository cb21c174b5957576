"""Scheduler Driver: daily yesterday-to-today refresh fan-out across known users."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from contribrank.domain.contributions.dates import yesterday_and_today
from contribrank.domain.contributions.known_users import KnownUsersRepository
from contribrank.domain.contributions.models import UserIdentity
from contribrank.domain.contributions.service import ContributionService
from contribrank.infra.locks import LockConflictError
from contribrank.obs import metrics as obs_metrics
from contribrank.settings import settings

LOGGER = logging.getLogger(__name__)

MAX_LIMIT = 5000
DEFAULT_USER_CONCURRENCY = 4
MAX_USER_CONCURRENCY = 8
PREVIEW_SIZE = 10


@dataclass(slots=True)
class CronReport:
	from_day: date
	to_day: date
	scanned: int = 0
	processed: int = 0
	skipped: int = 0
	errors: List[Dict[str, Any]] = field(default_factory=list)
	dry_run: bool = False
	sample: List[Dict[str, Optional[str]]] = field(default_factory=list)

	def to_dict(self) -> Dict[str, Any]:
		window = {"from": self.from_day.isoformat(), "to": self.to_day.isoformat()}
		if self.dry_run:
			return {"ok": True, "dryRun": True, "scanned": self.scanned, "sample": self.sample, "window": window}
		payload: Dict[str, Any] = {
			"ok": True,
			"scanned": self.scanned,
			"processed": self.processed,
			"skipped": self.skipped,
			"errors": self.errors,
			"window": window,
		}
		if self.scanned == 0:
			payload["note"] = "No known users yet. Run a backfill or refresh to seed them."
		return payload


def _preview(identity: UserIdentity) -> Dict[str, Optional[str]]:
	return {
		"userId": identity.user_id,
		"githubLogin": identity.github_login,
		"gitlabUsername": identity.gitlab_username,
	}


class SchedulerDriver:
	"""Refreshes every known user for yesterday and today with a bounded user pool.

	Individual failures are collected into ``errors``; the run as a whole
	always completes and reports.
	"""

	def __init__(self, service: ContributionService, known_users: KnownUsersRepository) -> None:
		self._service = service
		self._known_users = known_users

	async def run_daily(
		self,
		*,
		limit: Optional[int] = None,
		concurrency: Optional[int] = None,
		dry: bool = False,
		now: Optional[datetime] = None,
	) -> CronReport:
		limit = max(1, min(MAX_LIMIT, limit or settings.cron_default_limit))
		workers = max(1, min(MAX_USER_CONCURRENCY, concurrency or DEFAULT_USER_CONCURRENCY))
		from_day, to_day = yesterday_and_today(now)
		user_ids = await self._known_users.list_known_users(limit)
		identities = list(await self._known_users.get_identities(user_ids))
		report = CronReport(from_day=from_day, to_day=to_day, scanned=len(identities), dry_run=dry)
		if dry:
			report.sample = [_preview(identity) for identity in identities[:PREVIEW_SIZE]]
			LOGGER.info("cron_dry_run", extra={"scanned": report.scanned})
			return report

		started = time.perf_counter()
		queue: asyncio.Queue[UserIdentity] = asyncio.Queue()
		for identity in identities:
			queue.put_nowait(identity)

		async def _worker() -> None:
			while True:
				try:
					identity = queue.get_nowait()
				except asyncio.QueueEmpty:
					return
				await self._refresh_one(identity, report, now=now, concurrency=workers)

		await asyncio.gather(*(_worker() for _ in range(min(workers, max(1, queue.qsize())))))
		report.errors.sort(key=lambda entry: (entry["userId"], entry.get("provider") or ""))
		obs_metrics.record_refresh(
			"cron",
			result="partial" if report.errors else "ok",
			duration_seconds=time.perf_counter() - started,
		)
		LOGGER.info(
			"cron_daily_completed",
			extra={
				"scanned": report.scanned,
				"processed": report.processed,
				"skipped": report.skipped,
				"errors": len(report.errors),
			},
		)
		return report

	async def _refresh_one(
		self,
		identity: UserIdentity,
		report: CronReport,
		*,
		now: Optional[datetime],
		concurrency: int,
	) -> None:
		if not identity.has_any_login():
			report.skipped += 1
			return
		try:
			outcome = await self._service.refresh_day(identity, now=now, concurrency=concurrency)
		except LockConflictError as exc:
			provider = getattr(exc.key, "provider", None)
			report.errors.append(
				{
					"userId": identity.user_id,
					"kind": "conflict",
					"provider": provider.value if provider is not None else None,
					"error": "refresh already in progress",
				}
			)
			return
		except Exception as exc:
			# One user's failure never stops the batch.
			report.errors.append({"userId": identity.user_id, "kind": "fatal", "error": str(exc)})
			return
		report.processed += 1
		for failure in outcome.result.errors:
			report.errors.append(
				{
					"userId": identity.user_id,
					"kind": "provider",
					"provider": failure.provider.value,
					"day": failure.day.isoformat(),
					"error": failure.error,
				}
			)

	async def run_scheduled(self) -> None:
		"""Entry point for the in-process daily job."""
		await self.run_daily()


__all__ = ["CronReport", "SchedulerDriver"]

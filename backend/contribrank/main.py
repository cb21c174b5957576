"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from contribrank import services
from contribrank.api import internal, leaderboards, ops
from contribrank.api.errors import install_error_handlers
from contribrank.infra import postgres
from contribrank.infra.scheduler import DailyScheduler
from contribrank.obs import init as obs_init
from contribrank.settings import settings

LOGGER = logging.getLogger(__name__)

CRON_JOB_ID = "leaderboard-daily-refresh"


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	scheduler: DailyScheduler | None = None
	if settings.cron_enabled:
		scheduler = DailyScheduler()
		scheduler.start()
		scheduler.schedule_daily(
			CRON_JOB_ID,
			services.scheduler_driver.run_scheduled,
			hour=settings.cron_hour_utc,
			minute=settings.cron_minute_utc,
		)
		LOGGER.info(
			"cron_scheduled",
			extra={"hour_utc": settings.cron_hour_utc, "minute_utc": settings.cron_minute_utc},
		)
	app.state.scheduler = scheduler
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		await services.contribution_service.aclose()
		await postgres.close_pool()


app = FastAPI(title="Contribution Leaderboard", lifespan=lifespan)
obs_init(app)
install_error_handlers(app)

app.include_router(internal.router)
app.include_router(leaderboards.router)
app.include_router(ops.router)

"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException

from contribrank.domain.contributions.errors import ContributionUsageError
from contribrank.infra.locks import LockConflictError, render_key
from contribrank.infra.redis import redis_client
from contribrank.obs import logging as obs_logging
from contribrank.settings import settings


def get_request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None) or obs_logging.current_request_id()
    return rid or "unknown"


async def _retry_after(exc: LockConflictError) -> int:
    try:
        remaining = await redis_client.ttl(render_key(exc.key))
    except RedisError:
        remaining = -1
    if remaining is None or remaining <= 0:
        return settings.refresh_lock_ttl_seconds
    return int(remaining)


def conflict_detail(exc: LockConflictError) -> dict:
    provider = getattr(exc.key, "provider", None)
    name = provider.value if provider is not None else "unknown"
    return {
        "error": "refresh_in_progress",
        "provider": name,
        "message": f"A refresh is already in progress for {name}, try again shortly",
    }


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": get_request_id(request)}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {
            "detail": "validation_error",
            "errors": jsonable_encoder(exc.errors()),
            "request_id": get_request_id(request),
        }
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(ContributionUsageError)
    async def usage_exc_handler(request: Request, exc: ContributionUsageError):  # type: ignore[override]
        payload = {"detail": str(exc), "request_id": get_request_id(request)}
        return JSONResponse(status_code=400, content=payload)

    @app.exception_handler(LockConflictError)
    async def conflict_exc_handler(request: Request, exc: LockConflictError):  # type: ignore[override]
        payload = {"detail": conflict_detail(exc), "request_id": get_request_id(request)}
        headers = {"Retry-After": str(await _retry_after(exc))}
        return JSONResponse(status_code=409, content=payload, headers=headers)

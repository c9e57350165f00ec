"""ASGI application: routers, error envelope, startup and background jobs."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from crowdledger import db
from crowdledger.config import AppInfo, Settings, get_settings
from crowdledger.core.errors import LedgerError, error_response
from crowdledger.core.logging import get_logger, setup_logging
from crowdledger.core.runtime_state import set_scheduler_active
import crowdledger.models  # noqa: F401  registers the tables
from crowdledger.routers import get_api_router
from crowdledger.services.ledger import reconcile_ledger_once

logger = get_logger(__name__)

# create_all() is refused outside these environments; everything else runs Alembic.
SCHEMA_BOOTSTRAP_ENVS = frozenset({"dev", "local", "test"})


def _run_reconciliation() -> None:
    try:
        reconcile_ledger_once()
    except SQLAlchemyError:
        # Logged with its traceback by the job; the next interval tries again.
        return


def _bootstrap_schema(settings: Settings) -> None:
    if not settings.ALLOW_DB_CREATE_ALL:
        return
    if settings.app_env.lower() not in SCHEMA_BOOTSTRAP_ENVS:
        logger.warning("Ignoring ALLOW_DB_CREATE_ALL", extra={"env": settings.app_env})
        return
    logger.warning("Creating tables with create_all()", extra={"env": settings.app_env})
    db.create_all()


def _start_scheduler(settings: Settings) -> AsyncIOScheduler | None:
    if not settings.SCHEDULER_ENABLED:
        return None
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _run_reconciliation,
        "interval",
        minutes=settings.RECONCILE_INTERVAL_MINUTES,
        id="reconcile-ledger",
        replace_existing=True,
    )
    scheduler.start()
    set_scheduler_active(True)
    logger.info("Reconciliation job scheduled", extra={"minutes": settings.RECONCILE_INTERVAL_MINUTES})
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Application startup", extra={"env": settings.app_env})
    db.init_engine()
    _bootstrap_schema(settings)
    await asyncio.to_thread(_run_reconciliation)
    scheduler = _start_scheduler(settings)
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        set_scheduler_active(False)
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Idempotency-Key", "X-User-Id"],
    )
    if settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        app.add_middleware(PrometheusMiddleware, app_name="crowdledger")
        app.add_route("/metrics", handle_metrics)
    if settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=settings.SENTRY_DSN, traces_sample_rate=0.2, environment=settings.app_env)


async def _ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log("Request rejected", extra={"path": request.url.path, "code": exc.code, "status_code": exc.status_code})
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response("VALIDATION_ERROR", "Request payload is invalid.", {"errors": exc.errors()})
    return JSONResponse(status_code=422, content=jsonable_encoder(payload))


async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    content = detail if isinstance(detail, dict) and "error" in detail else error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(
        status_code=500, content=error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    )


def create_app() -> FastAPI:
    settings = get_settings()
    info = AppInfo()
    application = FastAPI(title=info.name, version=info.version, lifespan=lifespan)
    _install_middleware(application, settings)
    application.include_router(get_api_router())
    application.add_exception_handler(LedgerError, _ledger_error)
    application.add_exception_handler(RequestValidationError, _invalid_request)
    application.add_exception_handler(HTTPException, _http_error)
    application.add_exception_handler(Exception, _unhandled)
    return application


app = create_app()

__all__ = ["app", "create_app"]

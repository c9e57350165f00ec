"""Liveness and readiness report."""
from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from alembic.util import CommandError
from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from crowdledger.config import AppInfo, get_settings
from crowdledger.core.runtime_state import is_scheduler_active, last_reconciliation
from crowdledger.db import get_engine

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _expected_migration_head() -> str | None:
    try:
        return ScriptDirectory.from_config(Config(str(ALEMBIC_INI))).get_current_head()
    except CommandError:
        logger.exception("Alembic scripts could not be loaded", extra={"ini": str(ALEMBIC_INI)})
        return None


def _check_store() -> tuple[str, str | None]:
    """Return the store status and the revision it is stamped with."""

    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
            return "ok", MigrationContext.configure(conn).get_current_revision()
    except (SQLAlchemyError, RuntimeError):
        logger.exception("Ledger store health check failed")
        return "error", None


def _migration_state(db_status: str, current: str | None) -> str:
    if db_status != "ok":
        return "unknown"
    head = _expected_migration_head()
    if head is None:
        return "unknown"
    return "up_to_date" if current == head else "out_of_date"


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    settings = get_settings()
    db_status, current_revision = _check_store()
    migrations_status = _migration_state(db_status, current_revision)
    db_ok = db_status == "ok"
    migrations_ok = migrations_status == "up_to_date"
    return {
        "status": "ok" if db_ok and migrations_ok else "degraded",
        "version": AppInfo().version,
        "db_ok": db_ok,
        "db_status": db_status,
        "migrations_ok": migrations_ok,
        "migrations_status": migrations_status,
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "last_reconciliation": last_reconciliation(),
        "policies": {
            "decision_rule": settings.MILESTONE_DECISION_RULE,
            "voter_eligibility": settings.VOTER_ELIGIBILITY,
            "campaign_completion": settings.CAMPAIGN_COMPLETION_POLICY,
        },
    }

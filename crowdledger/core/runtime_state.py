"""Process-wide runtime flags shared across modules."""
from __future__ import annotations

_scheduler_active = False
_last_reconciliation: dict[str, int] | None = None


def set_scheduler_active(active: bool) -> None:
    global _scheduler_active
    _scheduler_active = active


def is_scheduler_active() -> bool:
    return _scheduler_active


def record_reconciliation(summary: dict[str, int]) -> None:
    global _last_reconciliation
    _last_reconciliation = dict(summary)


def last_reconciliation() -> dict[str, int] | None:
    return _last_reconciliation

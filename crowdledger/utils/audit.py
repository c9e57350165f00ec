"""Audit trail writer with PII masking."""
from __future__ import annotations

from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from crowdledger.models.audit import AuditLog
from crowdledger.models.base import utcnow

REDACTED = "***"


def _mask_email(value: str) -> str:
    _, sep, domain = value.partition("@")
    return f"{REDACTED}@{domain}" if sep else REDACTED


def _mask_contact(value: str) -> str:
    compact = value.replace(" ", "")
    return f"{REDACTED}{compact[-4:]}" if len(compact) > 4 else REDACTED


def _mask_url(value: str) -> str:
    path = value.split("?", 1)[0]
    head, sep, _ = path.rpartition("/")
    return f"{head}/{REDACTED}" if sep else REDACTED


MASKERS: dict[str, Callable[[str], str]] = {
    "email": _mask_email,
    "contact": _mask_contact,
    "address": lambda _value: REDACTED,
    "proof_url": _mask_url,
}


def sanitize_payload_for_audit(data: Any) -> Any:
    """Copy ``data`` with the values of known PII keys masked, at any depth."""

    if isinstance(data, Mapping):
        return {
            key: (
                MASKERS[key](str(value))
                if key in MASKERS and value is not None
                else sanitize_payload_for_audit(value)
            )
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [sanitize_payload_for_audit(item) for item in data]
    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: Mapping[str, Any] | None = None,
) -> AuditLog:
    """Add an audit row to the caller's unit of work; it commits with it."""

    entry = AuditLog(
        actor=actor,
        action=action,
        entity=entity,
        entity_id=entity_id or 0,
        data_json=sanitize_payload_for_audit(dict(data or {})),
        at=utcnow(),
    )
    db.add(entry)
    return entry


def actor_for_user(user: Any, fallback: str = "system") -> str:
    user_id = getattr(user, "id", None)
    return fallback if user_id is None else f"user:{user_id}"


__all__ = ["MASKERS", "actor_for_user", "log_audit", "sanitize_payload_for_audit"]

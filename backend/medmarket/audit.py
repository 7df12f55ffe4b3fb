import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import sentry_sdk
from prometheus_client import Counter
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

AUDIT_WRITE_FAILURES = Counter(
    "audit_write_failures_total", "Audit entries that could not be persisted"
)


def _json_safe(values: dict[str, Any] | None) -> dict[str, Any] | None:
    if values is None:
        return None
    safe: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, UUID):
            safe[key] = str(value)
        elif isinstance(value, datetime):
            safe[key] = value.isoformat()
        else:
            safe[key] = value
    return safe


class AuditRecorder:
    """Collect audit entries during a unit of work and append them after commit.

    Entries are written in their own transaction once the business change has
    committed, so a failing audit sink never undoes the mutation it
    describes. Failures are logged, counted and sent to Sentry.
    """

    def __init__(self) -> None:
        self._pending: list[dict[str, Any]] = []

    def record(
        self,
        organization_id: UUID | None,
        actor_id: UUID | None,
        action: str,
        resource_type: str,
        resource_id: UUID | None,
        previous_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> None:
        self._pending.append(
            {
                "organization_id": organization_id,
                "actor_id": actor_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "previous_values": _json_safe(previous_values),
                "new_values": _json_safe(new_values),
            }
        )

    @property
    def pending(self) -> list[dict[str, Any]]:
        return list(self._pending)

    def discard(self) -> None:
        self._pending.clear()

    def flush(self, db: Session) -> list[models.AuditLog]:
        """Persist queued entries; never raises on sink failure."""

        if not self._pending:
            return []
        now = datetime.now(timezone.utc)
        entries = [models.AuditLog(created_at=now, **payload) for payload in self._pending]
        try:
            db.add_all(entries)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            AUDIT_WRITE_FAILURES.inc(len(entries))
            sentry_sdk.capture_exception(exc)
            logger.exception(
                "Failed to write %d audit entries (%s)",
                len(entries),
                ", ".join(sorted({p["action"] for p in self._pending})),
            )
            entries = []
        finally:
            self._pending.clear()
        return entries


def list_entries(
    db: Session,
    organization_id: UUID,
    *,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[models.AuditLog]:
    query = db.query(models.AuditLog).filter(models.AuditLog.organization_id == organization_id)
    if resource_type:
        query = query.filter(models.AuditLog.resource_type == resource_type)
    if resource_id:
        query = query.filter(models.AuditLog.resource_id == resource_id)
    if action:
        query = query.filter(models.AuditLog.action == action)
    return query.order_by(models.AuditLog.created_at.desc()).limit(limit).all()


def generate_report(
    db: Session,
    organization_id: UUID,
    start: datetime,
    end: datetime,
):
    query = db.query(models.AuditLog).filter(
        models.AuditLog.organization_id == organization_id,
        models.AuditLog.created_at >= start,
        models.AuditLog.created_at <= end,
    )
    rows = (
        query.with_entities(models.AuditLog.action, func.count(models.AuditLog.id))
        .group_by(models.AuditLog.action)
        .all()
    )
    return [{"action": r[0], "count": r[1]} for r in rows]

"""Unit of work shared by the request and quote workflows."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar
from uuid import UUID

from prometheus_client import Counter
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import models
from ..audit import AuditRecorder
from ..errors import not_found
from ..notify import StatusEvent

# purpose: run each workflow mutation all-or-nothing, then audit and notify
# status: active
# related_docs: backend/medmarket/audit.py

logger = logging.getLogger(__name__)

WORKFLOW_TRANSITIONS = Counter(
    "workflow_transitions_total",
    "Committed workflow status transitions",
    ["resource", "from_status", "to_status"],
)

T = TypeVar("T")


@dataclass
class UnitOfWork:
    db: Session
    audit: AuditRecorder = field(default_factory=AuditRecorder)
    events: list[StatusEvent] = field(default_factory=list)

    def transition(
        self,
        resource_type: str,
        resource_id: UUID,
        from_status: str | None,
        to_status: str,
        organization_id: UUID,
        actor_id: UUID | None = None,
        provider_organization_id: UUID | None = None,
    ) -> None:
        self.events.append(
            StatusEvent(
                resource_type=resource_type,
                resource_id=resource_id,
                from_status=from_status,
                to_status=to_status,
                organization_id=organization_id,
                actor_id=actor_id,
                provider_organization_id=provider_organization_id,
            )
        )


@dataclass
class WorkflowResult(Generic[T]):
    value: T
    events: list[StatusEvent] = field(default_factory=list)


def run_in_transaction(
    db: Session,
    operation: Callable[[UnitOfWork], T],
    retries: int = 1,
) -> WorkflowResult[T]:
    """Run ``operation`` in one transaction and commit it.

    Any error rolls the whole unit back and drops its queued audit entries
    and events. A ``StaleDataError`` means a concurrent writer bumped a row
    version first; the operation is re-run so it re-reads the committed
    state and either proceeds or raises the proper workflow error.
    """

    attempt = 0
    while True:
        uow = UnitOfWork(db)
        try:
            value = operation(uow)
            db.commit()
        except StaleDataError:
            db.rollback()
            uow.audit.discard()
            if attempt >= retries:
                raise
            attempt += 1
            logger.info("Concurrent update detected; retrying (attempt %d)", attempt + 1)
            continue
        except Exception:
            db.rollback()
            uow.audit.discard()
            raise
        break

    for event in uow.events:
        WORKFLOW_TRANSITIONS.labels(event.resource_type, event.from_status or "", event.to_status).inc()
        logger.info(
            "%s %s: %s -> %s",
            event.resource_type,
            event.resource_id,
            event.from_status,
            event.to_status,
        )
    uow.audit.flush(db)
    return WorkflowResult(value=value, events=uow.events)


def lock_service_request(db: Session, service_request_id: UUID) -> models.ServiceRequest:
    """Re-read a request row under lock, ignoring any cached copy."""

    request = (
        db.query(models.ServiceRequest)
        .filter(models.ServiceRequest.id == service_request_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if request is None:
        raise not_found("service_request", service_request_id)
    return request


def lock_quote(db: Session, quote_id: UUID) -> models.Quote:
    quote = (
        db.query(models.Quote)
        .filter(models.Quote.id == quote_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if quote is None:
        raise not_found("quote", quote_id)
    return quote

"""Service request lifecycle: creation, status changes, execution and declines."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from .. import models, rate_limit, rbac, schemas
from ..errors import ErrorCode, WorkflowError, not_found
from ..rbac import CallerContext
from ..state_machine import (
    QUOTABLE_STATUSES,
    REPORTABLE_STATUSES,
    assert_transition,
    is_approval_transition,
)
from .transactions import UnitOfWork, WorkflowResult, lock_service_request, run_in_transaction

RESOURCE = "service_request"
MIN_DECLINE_REASON_LENGTH = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _provider_organization_id(db: Session, request: models.ServiceRequest) -> UUID | None:
    if request.assigned_provider_id is None:
        return None
    provider = db.get(models.Provider, request.assigned_provider_id)
    return provider.organization_id if provider else None


def _set_status(
    uow: UnitOfWork,
    caller: CallerContext,
    request: models.ServiceRequest,
    target: str,
    action: str,
) -> None:
    """Apply a checked status change, queue its audit entry and its event."""

    previous = request.status
    request.status = target
    request.updated_at = _now()
    if target == "completed":
        request.completed_at = request.updated_at
    new_values: dict = {"status": target}
    if target == "completed":
        new_values["completed_at"] = request.completed_at
    uow.audit.record(
        caller.organization_id,
        caller.user_id,
        action,
        RESOURCE,
        request.id,
        previous_values={"status": previous},
        new_values=new_values,
    )
    uow.transition(
        RESOURCE,
        request.id,
        previous,
        target,
        organization_id=request.organization_id,
        actor_id=caller.user_id,
        provider_organization_id=_provider_organization_id(uow.db, request),
    )


def create(
    db: Session, caller: CallerContext | None, payload: schemas.ServiceRequestCreate
) -> WorkflowResult[models.ServiceRequest]:
    caller = rbac.require_authenticated(caller)
    rbac.require_member(db, caller, payload.organization_id)
    rbac.require_org_type(db, payload.organization_id, "hospital")

    equipment = db.get(models.Equipment, payload.equipment_id)
    if equipment is None:
        raise not_found("equipment", payload.equipment_id)
    if equipment.organization_id != payload.organization_id:
        raise WorkflowError(
            ErrorCode.EQUIPMENT_ORG_MISMATCH,
            equipment_id=str(equipment.id),
            organization_id=str(payload.organization_id),
        )
    rate_limit.enforce(payload.organization_id, "serviceRequests.create")

    def operation(uow: UnitOfWork) -> models.ServiceRequest:
        now = _now()
        request = models.ServiceRequest(
            organization_id=payload.organization_id,
            equipment_id=payload.equipment_id,
            requested_by=caller.user_id,
            type=payload.type,
            priority=payload.priority,
            status="pending",
            description_vi=payload.description_vi,
            description_en=payload.description_en,
            scheduled_at=payload.scheduled_at,
            created_at=now,
            updated_at=now,
        )
        uow.db.add(request)
        uow.db.flush()
        uow.audit.record(
            payload.organization_id,
            caller.user_id,
            "serviceRequest.created",
            RESOURCE,
            request.id,
            new_values={
                "status": "pending",
                "equipment_id": payload.equipment_id,
                "type": payload.type,
                "priority": payload.priority,
            },
        )
        uow.transition(
            RESOURCE,
            request.id,
            None,
            "pending",
            organization_id=payload.organization_id,
            actor_id=caller.user_id,
        )
        return request

    return run_in_transaction(db, operation)


def cancel(
    db: Session, caller: CallerContext | None, service_request_id: UUID
) -> WorkflowResult[models.ServiceRequest]:
    caller = rbac.require_active_organization(caller)

    def operation(uow: UnitOfWork) -> models.ServiceRequest:
        request = lock_service_request(uow.db, service_request_id)
        rbac.require_request_owner(caller, request)
        assert_transition(request.status, "cancelled")
        _set_status(uow, caller, request, "cancelled", "serviceRequest.cancelled")
        return request

    return run_in_transaction(db, operation)


def update_status(
    db: Session, caller: CallerContext | None, service_request_id: UUID, target: str
) -> WorkflowResult[models.ServiceRequest]:
    """Generic status change for the owning hospital or the assigned provider.

    Approval-class targets need an owner/admin who did not create the
    request. Acceptance itself has to go through quote acceptance, which is
    the only path that assigns a provider.
    """

    caller = rbac.require_active_organization(caller)

    def operation(uow: UnitOfWork) -> models.ServiceRequest:
        request = lock_service_request(uow.db, service_request_id)
        is_owner = rbac.is_request_owner(caller, request)
        is_provider = rbac.is_assigned_provider(uow.db, caller, request)
        if not (is_owner or is_provider):
            raise WorkflowError(ErrorCode.FORBIDDEN, service_request_id=str(request.id))
        if is_provider and not is_owner and target == "in_progress":
            raise WorkflowError(
                ErrorCode.FORBIDDEN,
                service_request_id=str(request.id),
                reason="start_service_required",
            )
        assert_transition(request.status, target)
        if is_approval_transition(request.status, target, caller.org_type):
            rbac.require_approval_role(caller)
            rbac.prevent_self_approval(request.requested_by, caller.user_id)
        if target == "accepted":
            raise WorkflowError(
                ErrorCode.INVALID_TRANSITION,
                current_status=request.status,
                target_status=target,
                reason="quote_acceptance_required",
            )
        _set_status(uow, caller, request, target, "serviceRequest.statusUpdated")
        return request

    return run_in_transaction(db, operation)


def start_service(
    db: Session, caller: CallerContext | None, service_request_id: UUID
) -> WorkflowResult[models.ServiceRequest]:
    caller = rbac.require_active_organization(caller)

    def operation(uow: UnitOfWork) -> models.ServiceRequest:
        request = lock_service_request(uow.db, service_request_id)
        rbac.require_assigned_provider(uow.db, caller, request)
        if request.status != "accepted":
            raise WorkflowError(
                ErrorCode.INVALID_TRANSITION,
                current_status=request.status,
                target_status="in_progress",
            )
        _set_status(uow, caller, request, "in_progress", "serviceRequest.started")
        return request

    return run_in_transaction(db, operation)


def update_progress(
    db: Session,
    caller: CallerContext | None,
    service_request_id: UUID,
    payload: schemas.ProgressUpdate,
) -> WorkflowResult[models.ServiceRequest]:
    caller = rbac.require_active_organization(caller)

    def check(session: Session, request: models.ServiceRequest) -> None:
        rbac.require_assigned_provider(session, caller, request)
        if request.status != "in_progress":
            raise WorkflowError(
                ErrorCode.INVALID_SERVICE_REQUEST_STATUS,
                current_status=request.status,
            )

    current = db.get(models.ServiceRequest, service_request_id)
    if current is None:
        raise not_found(RESOURCE, service_request_id)
    check(db, current)
    # charged once per call, outside the retried unit of work
    rate_limit.enforce(caller.organization_id, "serviceRequests.updateProgress")

    def operation(uow: UnitOfWork) -> models.ServiceRequest:
        request = lock_service_request(uow.db, service_request_id)
        check(uow.db, request)
        previous = {
            "progress_notes": request.progress_notes,
            "percent_complete": request.percent_complete,
        }
        request.progress_notes = payload.notes
        if payload.percent_complete is not None:
            request.percent_complete = payload.percent_complete
        request.updated_at = _now()
        uow.audit.record(
            caller.organization_id,
            caller.user_id,
            "serviceRequest.progressUpdated",
            RESOURCE,
            request.id,
            previous_values=previous,
            new_values=payload.model_dump(),
        )
        return request

    return run_in_transaction(db, operation)


def complete_service(
    db: Session, caller: CallerContext | None, service_request_id: UUID
) -> WorkflowResult[models.ServiceRequest]:
    caller = rbac.require_active_organization(caller)

    def operation(uow: UnitOfWork) -> models.ServiceRequest:
        request = lock_service_request(uow.db, service_request_id)
        rbac.require_assigned_provider(uow.db, caller, request)
        assert_transition(request.status, "completed")
        _set_status(uow, caller, request, "completed", "serviceRequest.completed")
        return request

    return run_in_transaction(db, operation)


def submit_completion_report(
    db: Session,
    caller: CallerContext | None,
    service_request_id: UUID,
    payload: schemas.CompletionReportCreate,
) -> WorkflowResult[models.CompletionReport]:
    caller = rbac.require_active_organization(caller)

    def operation(uow: UnitOfWork) -> models.CompletionReport:
        request = lock_service_request(uow.db, service_request_id)
        provider = rbac.require_assigned_provider(uow.db, caller, request)
        if request.status not in REPORTABLE_STATUSES:
            raise WorkflowError(
                ErrorCode.INVALID_SERVICE_REQUEST_STATUS,
                current_status=request.status,
            )
        report = models.CompletionReport(
            service_request_id=request.id,
            provider_id=provider.id,
            submitted_by=caller.user_id,
            created_at=_now(),
            **payload.model_dump(),
        )
        uow.db.add(report)
        uow.db.flush()
        uow.audit.record(
            caller.organization_id,
            caller.user_id,
            "serviceRequest.completionReportSubmitted",
            RESOURCE,
            request.id,
            new_values={
                "completion_report_id": report.id,
                "actual_hours": payload.actual_hours,
                "parts_replaced": list(payload.parts_replaced),
            },
        )
        return report

    return run_in_transaction(db, operation)


def decline_request(
    db: Session,
    caller: CallerContext | None,
    service_request_id: UUID,
    reason: str,
) -> WorkflowResult[models.ServiceRequestDecline]:
    """Record that a provider will not quote; the request itself is untouched."""

    caller = rbac.require_active_organization(caller)
    rbac.require_caller_org_type(caller, "provider")
    provider = rbac.provider_for_organization(db, caller.organization_id)
    reason = (reason or "").strip()
    if len(reason) < MIN_DECLINE_REASON_LENGTH:
        raise WorkflowError(ErrorCode.INVALID_REASON, min_length=MIN_DECLINE_REASON_LENGTH)

    def operation(uow: UnitOfWork) -> models.ServiceRequestDecline:
        request = uow.db.get(models.ServiceRequest, service_request_id)
        if request is None:
            raise not_found(RESOURCE, service_request_id)
        if request.status not in QUOTABLE_STATUSES:
            raise WorkflowError(
                ErrorCode.INVALID_SERVICE_REQUEST_STATUS,
                current_status=request.status,
            )
        decline = models.ServiceRequestDecline(
            service_request_id=request.id,
            provider_id=provider.id,
            declined_by=caller.user_id,
            reason=reason,
            created_at=_now(),
        )
        uow.db.add(decline)
        uow.db.flush()
        uow.audit.record(
            caller.organization_id,
            caller.user_id,
            "serviceRequest.declined",
            RESOURCE,
            request.id,
            new_values={"provider_id": provider.id, "reason": reason},
        )
        return decline

    return run_in_transaction(db, operation)


def get_by_id(
    db: Session, caller: CallerContext | None, service_request_id: UUID
) -> models.ServiceRequest:
    caller = rbac.require_active_organization(caller)
    request = (
        db.query(models.ServiceRequest)
        .options(selectinload(models.ServiceRequest.quotes))
        .filter(models.ServiceRequest.id == service_request_id)
        .first()
    )
    if request is None:
        raise not_found(RESOURCE, service_request_id)
    if rbac.is_request_owner(caller, request) or rbac.is_assigned_provider(db, caller, request):
        return request
    # open requests are visible to every provider that might quote them
    if caller.org_type == "provider" and request.status in QUOTABLE_STATUSES:
        return request
    raise WorkflowError(ErrorCode.FORBIDDEN, service_request_id=str(request.id))


def list_by_hospital(
    db: Session, caller: CallerContext | None, status: str | None = None
) -> list[models.ServiceRequest]:
    caller = rbac.require_active_organization(caller)
    rbac.require_caller_org_type(caller, "hospital")
    query = db.query(models.ServiceRequest).filter(
        models.ServiceRequest.organization_id == caller.organization_id
    )
    if status:
        query = query.filter(models.ServiceRequest.status == status)
    return query.order_by(models.ServiceRequest.created_at.desc()).all()


def list_by_provider(
    db: Session, caller: CallerContext | None, status: str | None = None
) -> list[models.ServiceRequest]:
    """Requests assigned to the caller's provider plus open ones it has not declined."""

    caller = rbac.require_active_organization(caller)
    rbac.require_caller_org_type(caller, "provider")
    provider = rbac.provider_for_organization(db, caller.organization_id)
    declined = select(models.ServiceRequestDecline.service_request_id).where(
        models.ServiceRequestDecline.provider_id == provider.id
    )
    query = db.query(models.ServiceRequest).filter(
        or_(
            models.ServiceRequest.assigned_provider_id == provider.id,
            models.ServiceRequest.status.in_(sorted(QUOTABLE_STATUSES))
            & models.ServiceRequest.id.not_in(declined),
        )
    )
    if status:
        query = query.filter(models.ServiceRequest.status == status)
    return query.order_by(models.ServiceRequest.created_at.desc()).all()

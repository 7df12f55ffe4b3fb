"""Quote lifecycle and the acceptance cascade."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models, rate_limit, rbac, schemas
from ..errors import ErrorCode, WorkflowError
from ..rbac import CallerContext
from ..state_machine import QUOTABLE_STATUSES, assert_quote_transition, assert_transition
from . import service_requests
from .transactions import (
    UnitOfWork,
    WorkflowResult,
    lock_quote,
    lock_service_request,
    run_in_transaction,
)

RESOURCE = "quote"
# an explicit null for these leaves the stored value alone
NON_NULLABLE_UPDATE_FIELDS = frozenset({"amount", "currency", "valid_until_days"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot(quote: models.Quote) -> dict:
    return {
        "status": quote.status,
        "amount": quote.amount,
        "currency": quote.currency,
        "valid_until": quote.valid_until,
        "notes": quote.notes,
        "estimated_duration_days": quote.estimated_duration_days,
        "available_start_date": quote.available_start_date,
    }


def _provider_organization_id(db: Session, quote: models.Quote) -> UUID | None:
    provider = db.get(models.Provider, quote.provider_id)
    return provider.organization_id if provider else None


def _require_quote_provider(db: Session, caller: CallerContext, quote: models.Quote) -> None:
    if _provider_organization_id(db, quote) != caller.organization_id:
        raise WorkflowError(ErrorCode.FORBIDDEN, quote_id=str(quote.id))


def _set_quote_status(
    uow: UnitOfWork,
    caller: CallerContext,
    quote: models.Quote,
    request: models.ServiceRequest,
    target: str,
    action: str,
    **details,
) -> None:
    previous = quote.status
    quote.status = target
    quote.updated_at = _now()
    uow.audit.record(
        caller.organization_id,
        caller.user_id,
        action,
        RESOURCE,
        quote.id,
        previous_values={"status": previous},
        new_values={"status": target, **details},
    )
    uow.transition(
        RESOURCE,
        quote.id,
        previous,
        target,
        organization_id=request.organization_id,
        actor_id=caller.user_id,
        provider_organization_id=_provider_organization_id(uow.db, quote),
    )


def submit(
    db: Session, caller: CallerContext | None, payload: schemas.QuoteCreate
) -> WorkflowResult[models.Quote]:
    """Create a pending quote; the first quote moves the request to ``quoted``."""

    caller = rbac.require_active_organization(caller)
    rbac.require_caller_org_type(caller, "provider")
    provider = rbac.provider_for_organization(db, caller.organization_id)
    rate_limit.enforce(caller.organization_id, "quotes.submit")

    def operation(uow: UnitOfWork) -> models.Quote:
        request = lock_service_request(uow.db, payload.service_request_id)
        if request.status not in QUOTABLE_STATUSES:
            raise WorkflowError(
                ErrorCode.INVALID_SERVICE_REQUEST_STATUS,
                current_status=request.status,
            )
        now = _now()
        quote = models.Quote(
            service_request_id=request.id,
            provider_id=provider.id,
            status="pending",
            amount=payload.amount,
            currency=payload.currency,
            notes=payload.notes,
            valid_until=now + timedelta(days=payload.valid_until_days)
            if payload.valid_until_days
            else None,
            estimated_duration_days=payload.estimated_duration_days,
            available_start_date=payload.available_start_date,
            created_at=now,
            updated_at=now,
        )
        uow.db.add(quote)
        uow.db.flush()
        uow.audit.record(
            caller.organization_id,
            caller.user_id,
            "quote.submitted",
            RESOURCE,
            quote.id,
            new_values={
                "service_request_id": request.id,
                "amount": quote.amount,
                "currency": quote.currency,
            },
        )
        if request.status == "pending":
            request.status = "quoted"
            uow.audit.record(
                caller.organization_id,
                caller.user_id,
                "serviceRequest.quoted",
                service_requests.RESOURCE,
                request.id,
                previous_values={"status": "pending"},
                new_values={"status": "quoted", "quote_id": quote.id},
            )
            uow.transition(
                service_requests.RESOURCE,
                request.id,
                "pending",
                "quoted",
                organization_id=request.organization_id,
                actor_id=caller.user_id,
            )
        # touching the row bumps its version so concurrent writers conflict
        request.updated_at = now
        return quote

    return run_in_transaction(db, operation)


def update(
    db: Session, caller: CallerContext | None, quote_id: UUID, payload: schemas.QuoteUpdate
) -> WorkflowResult[models.Quote]:
    caller = rbac.require_active_organization(caller)

    def operation(uow: UnitOfWork) -> models.Quote:
        quote = lock_quote(uow.db, quote_id)
        _require_quote_provider(uow.db, caller, quote)
        if quote.status != "pending":
            raise WorkflowError(ErrorCode.INVALID_QUOTE_STATUS, current_status=quote.status)
        previous = _snapshot(quote)
        changes = {
            field: value
            for field, value in payload.model_dump(exclude_unset=True).items()
            if value is not None or field not in NON_NULLABLE_UPDATE_FIELDS
        }
        valid_until_days = changes.pop("valid_until_days", None)
        for field, value in changes.items():
            setattr(quote, field, value)
        now = _now()
        if valid_until_days:
            quote.valid_until = now + timedelta(days=valid_until_days)
        quote.updated_at = now
        uow.audit.record(
            caller.organization_id,
            caller.user_id,
            "quote.updated",
            RESOURCE,
            quote.id,
            previous_values=previous,
            new_values=_snapshot(quote),
        )
        return quote

    return run_in_transaction(db, operation)


def accept(
    db: Session, caller: CallerContext | None, quote_id: UUID
) -> WorkflowResult[models.Quote]:
    """Accept one quote, reject its pending siblings and assign the provider.

    Everything happens in one unit of work; any failure leaves the quote,
    its siblings and the request exactly as they were.
    """

    caller = rbac.require_active_organization(caller)

    def operation(uow: UnitOfWork) -> models.Quote:
        quote = lock_quote(uow.db, quote_id)
        assert_quote_transition(quote.status, "accepted")
        request = lock_service_request(uow.db, quote.service_request_id)
        rbac.require_request_owner(caller, request)
        rbac.require_approval_role(caller)
        rbac.prevent_self_approval(request.requested_by, caller.user_id)

        now = _now()
        quote.accepted_by = caller.user_id
        quote.accepted_at = now
        _set_quote_status(uow, caller, quote, request, "accepted", "quote.accepted", accepted_at=now)

        siblings = (
            uow.db.query(models.Quote)
            .filter(
                models.Quote.service_request_id == request.id,
                models.Quote.id != quote.id,
                models.Quote.status == "pending",
            )
            .with_for_update()
            .populate_existing()
            .all()
        )
        for sibling in siblings:
            _set_quote_status(
                uow,
                caller,
                sibling,
                request,
                "rejected",
                "quote.rejected",
                reason="sibling_accepted",
                accepted_quote_id=quote.id,
            )

        previous_status = request.status
        assert_transition(previous_status, "accepted")
        request.status = "accepted"
        request.assigned_provider_id = quote.provider_id
        request.updated_at = now
        uow.audit.record(
            caller.organization_id,
            caller.user_id,
            "serviceRequest.accepted",
            service_requests.RESOURCE,
            request.id,
            previous_values={"status": previous_status, "assigned_provider_id": None},
            new_values={
                "status": "accepted",
                "assigned_provider_id": quote.provider_id,
                "quote_id": quote.id,
            },
        )
        uow.transition(
            service_requests.RESOURCE,
            request.id,
            previous_status,
            "accepted",
            organization_id=request.organization_id,
            actor_id=caller.user_id,
            provider_organization_id=_provider_organization_id(uow.db, quote),
        )
        return quote

    return run_in_transaction(db, operation)


def reject(
    db: Session, caller: CallerContext | None, quote_id: UUID
) -> WorkflowResult[models.Quote]:
    caller = rbac.require_active_organization(caller)

    def operation(uow: UnitOfWork) -> models.Quote:
        quote = lock_quote(uow.db, quote_id)
        request = lock_service_request(uow.db, quote.service_request_id)
        rbac.require_request_owner(caller, request)
        assert_quote_transition(quote.status, "rejected")
        _set_quote_status(uow, caller, quote, request, "rejected", "quote.rejected")
        return quote

    return run_in_transaction(db, operation)


def list_by_provider(
    db: Session, caller: CallerContext | None, status: str | None = None
) -> list[models.Quote]:
    caller = rbac.require_active_organization(caller)
    rbac.require_caller_org_type(caller, "provider")
    provider = rbac.provider_for_organization(db, caller.organization_id)
    query = db.query(models.Quote).filter(models.Quote.provider_id == provider.id)
    if status:
        query = query.filter(models.Quote.status == status)
    return query.order_by(models.Quote.created_at.desc()).all()


def list_for_request(
    db: Session, caller: CallerContext | None, service_request_id: UUID
) -> list[models.Quote]:
    """All quotes for the owning hospital; a provider only sees its own."""

    request = service_requests.get_by_id(db, caller, service_request_id)
    query = db.query(models.Quote).filter(models.Quote.service_request_id == request.id)
    if not rbac.is_request_owner(caller, request):
        provider = rbac.provider_for_organization(db, caller.organization_id)
        query = query.filter(models.Quote.provider_id == provider.id)
    return query.order_by(models.Quote.created_at.asc()).all()

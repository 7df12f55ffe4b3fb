from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .errors import ErrorCode, WorkflowError, not_found

# purpose: centralize "who may act" rules for the request / quote workflow
# status: active


@dataclass(frozen=True)
class Membership:
    """Typed view of an organization membership row."""

    organization_id: UUID
    user_id: UUID
    role: str


@dataclass(frozen=True)
class CallerContext:
    """Resolved identity of the caller for one operation."""

    user_id: UUID | None
    organization_id: UUID | None = None
    org_type: str | None = None
    role: str | None = None
    is_admin: bool = False


APPROVAL_ROLES: tuple[str, ...] = ("owner", "admin")


class MembershipResolver:
    """Look up a user's role inside an organization."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve(self, organization_id: UUID, user_id: UUID) -> Membership | None:
        row = self.db.get(models.OrganizationMembership, (organization_id, user_id))
        if row is None:
            return None
        return Membership(
            organization_id=row.organization_id,
            user_id=row.user_id,
            role=(row.role or "member").lower(),
        )


def build_caller_context(
    db: Session,
    user: models.User | None,
    organization_id: UUID | None,
    resolver: MembershipResolver | None = None,
) -> CallerContext:
    """Resolve the caller's active organization, its type and the caller's role.

    An organization the caller is not a member of is treated as no active
    organization at all.
    """

    if user is None:
        return CallerContext(user_id=None)
    if organization_id is None:
        return CallerContext(user_id=user.id, is_admin=bool(user.is_admin))
    resolver = resolver or MembershipResolver(db)
    membership = resolver.resolve(organization_id, user.id)
    organization = db.get(models.Organization, organization_id)
    if membership is None or organization is None:
        return CallerContext(user_id=user.id, is_admin=bool(user.is_admin))
    return CallerContext(
        user_id=user.id,
        organization_id=organization.id,
        org_type=organization.org_type,
        role=membership.role,
        is_admin=bool(user.is_admin),
    )


def require_authenticated(caller: CallerContext | None) -> CallerContext:
    if caller is None or caller.user_id is None:
        raise WorkflowError(ErrorCode.UNAUTHENTICATED)
    return caller


def require_active_organization(caller: CallerContext | None) -> CallerContext:
    caller = require_authenticated(caller)
    if caller.organization_id is None:
        raise WorkflowError(ErrorCode.NO_ACTIVE_ORGANIZATION)
    return caller


def require_org_type(db: Session, organization_id: UUID, expected: str) -> models.Organization:
    organization = db.get(models.Organization, organization_id)
    if organization is None:
        raise not_found("organization", organization_id)
    if organization.org_type != expected:
        raise WorkflowError(
            ErrorCode.FORBIDDEN_ORG_TYPE,
            expected=expected,
            actual=organization.org_type,
        )
    return organization


def require_caller_org_type(caller: CallerContext, expected: str) -> None:
    if caller.org_type != expected:
        raise WorkflowError(
            ErrorCode.FORBIDDEN_ORG_TYPE,
            expected=expected,
            actual=caller.org_type,
        )


def require_member(db: Session, caller: CallerContext, organization_id: UUID) -> Membership:
    """Return the caller's membership in ``organization_id`` or raise FORBIDDEN."""

    membership = MembershipResolver(db).resolve(organization_id, caller.user_id)
    if membership is None:
        raise WorkflowError(ErrorCode.FORBIDDEN, organization_id=str(organization_id))
    return membership


def require_approval_role(caller: CallerContext) -> None:
    """Approval-class transitions need an owner or admin of the acting org."""

    if caller.role not in APPROVAL_ROLES:
        raise WorkflowError(
            ErrorCode.INSUFFICIENT_ROLE,
            role=caller.role,
            required=list(APPROVAL_ROLES),
        )


def prevent_self_approval(requested_by: UUID, actor_id: UUID | None) -> None:
    """The creator of a request may never approve it, whatever their role."""

    if actor_id is not None and requested_by == actor_id:
        raise WorkflowError(ErrorCode.SELF_APPROVAL_FORBIDDEN)


def is_request_owner(caller: CallerContext, request: models.ServiceRequest) -> bool:
    return caller.organization_id is not None and request.organization_id == caller.organization_id


def require_request_owner(caller: CallerContext, request: models.ServiceRequest) -> None:
    if not is_request_owner(caller, request):
        raise WorkflowError(ErrorCode.FORBIDDEN, service_request_id=str(request.id))


def is_assigned_provider(db: Session, caller: CallerContext, request: models.ServiceRequest) -> bool:
    if request.assigned_provider_id is None or caller.organization_id is None:
        return False
    provider = db.get(models.Provider, request.assigned_provider_id)
    return provider is not None and provider.organization_id == caller.organization_id


def require_assigned_provider(
    db: Session, caller: CallerContext, request: models.ServiceRequest
) -> models.Provider:
    """Return the assigned provider when the caller's org operates it."""

    if not is_assigned_provider(db, caller, request):
        raise WorkflowError(ErrorCode.FORBIDDEN, service_request_id=str(request.id))
    return db.get(models.Provider, request.assigned_provider_id)


def provider_for_organization(db: Session, organization_id: UUID) -> models.Provider:
    provider = (
        db.query(models.Provider)
        .filter(models.Provider.organization_id == organization_id)
        .order_by(models.Provider.created_at.asc())
        .first()
    )
    if provider is None:
        raise not_found("provider", organization_id)
    return provider

from uuid import UUID
from datetime import datetime
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends
from ..database import get_db
from ..auth import get_caller
from ..rbac import CallerContext, require_active_organization
from .. import schemas, audit

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/", response_model=list[schemas.AuditLogOut])
async def list_logs(
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    action: str | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    caller = require_active_organization(caller)
    return audit.list_entries(
        db,
        caller.organization_id,
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        limit=min(max(limit, 1), 500),
    )


@router.get("/report", response_model=list[schemas.AuditReportItem])
async def audit_report(
    start: datetime,
    end: datetime,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    caller = require_active_organization(caller)
    return audit.generate_report(db, caller.organization_id, start, end)

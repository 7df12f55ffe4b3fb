from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_caller
from ..rbac import CallerContext
from .. import notify, schemas
from ..services import quotes as service

router = APIRouter(prefix="/api/quotes", tags=["quotes"])


@router.post("", response_model=schemas.IdOut, status_code=201)
def submit_quote(
    payload: schemas.QuoteCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    result = service.submit(db, caller, payload)
    background_tasks.add_task(notify.dispatch_status_events, result.events)
    return {"id": result.value.id}


@router.get("/provider", response_model=list[schemas.QuoteOut])
def list_provider_quotes(
    status: schemas.QuoteStatus | None = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return service.list_by_provider(db, caller, status)


@router.patch("/{quote_id}", response_model=schemas.IdOut)
def update_quote(
    quote_id: UUID,
    payload: schemas.QuoteUpdate,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    result = service.update(db, caller, quote_id, payload)
    return {"id": result.value.id}


@router.post("/{quote_id}/accept", response_model=schemas.QuoteAcceptOut)
def accept_quote(
    quote_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    result = service.accept(db, caller, quote_id)
    background_tasks.add_task(notify.dispatch_status_events, result.events)
    return {"quote_id": result.value.id, "service_request_id": result.value.service_request_id}


@router.post("/{quote_id}/reject", response_model=schemas.IdOut)
def reject_quote(
    quote_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    result = service.reject(db, caller, quote_id)
    background_tasks.add_task(notify.dispatch_status_events, result.events)
    return {"id": result.value.id}

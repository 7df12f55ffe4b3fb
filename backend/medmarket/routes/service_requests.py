from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_caller
from ..rbac import CallerContext
from .. import notify, schemas
from ..services import quotes as quote_service
from ..services import service_requests as service

router = APIRouter(prefix="/api/service-requests", tags=["service-requests"])


def _dispatch(background_tasks: BackgroundTasks, result):
    if result.events:
        background_tasks.add_task(notify.dispatch_status_events, result.events)
    return {"id": result.value.id}


@router.post("", response_model=schemas.IdOut, status_code=201)
def create_service_request(
    payload: schemas.ServiceRequestCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return _dispatch(background_tasks, service.create(db, caller, payload))


@router.get("/hospital", response_model=list[schemas.ServiceRequestOut])
def list_hospital_requests(
    status: schemas.ServiceRequestStatus | None = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return service.list_by_hospital(db, caller, status)


@router.get("/provider", response_model=list[schemas.ServiceRequestOut])
def list_provider_requests(
    status: schemas.ServiceRequestStatus | None = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return service.list_by_provider(db, caller, status)


@router.get("/{service_request_id}", response_model=schemas.ServiceRequestDetailOut)
def get_service_request(
    service_request_id: UUID,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    request = service.get_by_id(db, caller, service_request_id)
    detail = schemas.ServiceRequestOut.model_validate(request).model_dump()
    detail["quotes"] = [
        schemas.QuoteOut.model_validate(q)
        for q in quote_service.list_for_request(db, caller, service_request_id)
    ]
    return detail


@router.post("/{service_request_id}/cancel", response_model=schemas.IdOut)
def cancel_service_request(
    service_request_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return _dispatch(background_tasks, service.cancel(db, caller, service_request_id))


@router.post("/{service_request_id}/status", response_model=schemas.IdOut)
def update_service_request_status(
    service_request_id: UUID,
    payload: schemas.ServiceRequestStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    result = service.update_status(db, caller, service_request_id, payload.status)
    return _dispatch(background_tasks, result)


@router.post("/{service_request_id}/start", response_model=schemas.IdOut)
def start_service(
    service_request_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return _dispatch(background_tasks, service.start_service(db, caller, service_request_id))


@router.post("/{service_request_id}/progress", response_model=schemas.IdOut)
def update_progress(
    service_request_id: UUID,
    payload: schemas.ProgressUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    result = service.update_progress(db, caller, service_request_id, payload)
    return _dispatch(background_tasks, result)


@router.post("/{service_request_id}/complete", response_model=schemas.IdOut)
def complete_service(
    service_request_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return _dispatch(background_tasks, service.complete_service(db, caller, service_request_id))


@router.post(
    "/{service_request_id}/completion-reports",
    response_model=schemas.IdOut,
    status_code=201,
)
def submit_completion_report(
    service_request_id: UUID,
    payload: schemas.CompletionReportCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    result = service.submit_completion_report(db, caller, service_request_id, payload)
    return _dispatch(background_tasks, result)


@router.post("/{service_request_id}/decline", response_model=schemas.IdOut)
def decline_service_request(
    service_request_id: UUID,
    payload: schemas.DeclineRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    result = service.decline_request(db, caller, service_request_id, payload.reason)
    return _dispatch(background_tasks, result)

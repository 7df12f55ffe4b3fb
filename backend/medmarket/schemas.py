from datetime import datetime
from typing import Optional, Any, Dict, Literal, List
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID

ServiceRequestType = Literal[
    "repair", "maintenance", "calibration", "inspection", "installation", "other"
]
ServiceRequestPriority = Literal["low", "medium", "high", "critical"]
ServiceRequestStatus = Literal[
    "pending", "quoted", "accepted", "in_progress", "completed", "cancelled", "disputed"
]
QuoteStatus = Literal["pending", "accepted", "rejected", "expired"]


class ServiceRequestCreate(BaseModel):
    organization_id: UUID
    equipment_id: UUID
    type: ServiceRequestType
    priority: ServiceRequestPriority
    description_vi: str = Field(min_length=1)
    description_en: Optional[str] = None
    scheduled_at: Optional[datetime] = None


class ServiceRequestStatusUpdate(BaseModel):
    status: ServiceRequestStatus


class ProgressUpdate(BaseModel):
    notes: str = Field(min_length=10)
    percent_complete: Optional[int] = Field(default=None, ge=0, le=100)
    unexpected_issue: Optional[str] = None


class CompletionReportCreate(BaseModel):
    work_description_vi: str = Field(min_length=20)
    work_description_en: Optional[str] = None
    parts_replaced: List[str] = []
    next_maintenance_recommendation: Optional[str] = None
    actual_hours: Optional[float] = Field(default=None, gt=0)
    photo_urls: List[str] = []
    actual_completion_time: Optional[datetime] = None


class DeclineRequest(BaseModel):
    # length is checked by the workflow so the error carries its own code
    reason: str


class QuoteCreate(BaseModel):
    service_request_id: UUID
    amount: float = Field(gt=0)
    currency: str = "VND"
    notes: Optional[str] = None
    valid_until_days: Optional[int] = Field(default=None, ge=1, le=365)
    estimated_duration_days: Optional[int] = Field(default=None, ge=1)
    available_start_date: Optional[datetime] = None


class QuoteUpdate(BaseModel):
    amount: Optional[float] = Field(default=None, gt=0)
    currency: Optional[str] = None
    notes: Optional[str] = None
    valid_until_days: Optional[int] = Field(default=None, ge=1, le=365)
    estimated_duration_days: Optional[int] = Field(default=None, ge=1)
    available_start_date: Optional[datetime] = None


class IdOut(BaseModel):
    id: UUID


class QuoteAcceptOut(BaseModel):
    quote_id: UUID
    service_request_id: UUID


class QuoteOut(BaseModel):
    id: UUID
    service_request_id: UUID
    provider_id: UUID
    status: QuoteStatus
    amount: float
    currency: str
    valid_until: Optional[datetime] = None
    notes: Optional[str] = None
    estimated_duration_days: Optional[int] = None
    available_start_date: Optional[datetime] = None
    accepted_by: Optional[UUID] = None
    accepted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ServiceRequestOut(BaseModel):
    id: UUID
    organization_id: UUID
    equipment_id: UUID
    requested_by: UUID
    assigned_provider_id: Optional[UUID] = None
    type: ServiceRequestType
    priority: ServiceRequestPriority
    status: ServiceRequestStatus
    description_vi: str
    description_en: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress_notes: Optional[str] = None
    percent_complete: Optional[int] = None
    version: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ServiceRequestDetailOut(ServiceRequestOut):
    quotes: List[QuoteOut] = []


class AuditLogOut(BaseModel):
    id: UUID
    organization_id: Optional[UUID] = None
    actor_id: Optional[UUID] = None
    action: str
    resource_type: str
    resource_id: Optional[UUID] = None
    previous_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditReportItem(BaseModel):
    action: str
    count: int

import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
    Float,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String)
    is_admin = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=_utcnow)

    memberships = relationship("OrganizationMembership", back_populates="user")


class Organization(Base):
    __tablename__ = "organizations"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    # hospital | provider
    org_type = Column(String, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    members = relationship("OrganizationMembership", back_populates="organization")


class OrganizationMembership(Base):
    __tablename__ = "organization_memberships"
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), primary_key=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), primary_key=True)
    # owner | admin | member
    role = Column(String, default="member", nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    user = relationship("User", back_populates="memberships")
    organization = relationship("Organization", back_populates="members")


class Equipment(Base):
    __tablename__ = "equipment"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    name_vi = Column(String, nullable=False)
    name_en = Column(String)
    status = Column(String, default="available")
    created_at = Column(DateTime, default=_utcnow)


class Provider(Base):
    __tablename__ = "providers"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    name_vi = Column(String, nullable=False)
    name_en = Column(String)
    status = Column(String, default="active")
    created_at = Column(DateTime, default=_utcnow)

    organization = relationship("Organization")


class ServiceRequest(Base):
    __tablename__ = "service_requests"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False)
    equipment_id = Column(UUID(as_uuid=True), ForeignKey("equipment.id"), nullable=False)
    requested_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    assigned_provider_id = Column(UUID(as_uuid=True), ForeignKey("providers.id"), nullable=True, index=True)
    type = Column(String, nullable=False)
    priority = Column(String, nullable=False)
    status = Column(String, default="pending", nullable=False)
    description_vi = Column(Text, nullable=False)
    description_en = Column(Text, nullable=True)
    scheduled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    # latest provider progress snapshot; the full trail lives in audit_logs
    progress_notes = Column(Text, nullable=True)
    percent_complete = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    # every write to a request row bumps ``version`` and is guarded by it
    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        sa.Index("ix_service_requests_org_status", "organization_id", "status"),
    )

    equipment = relationship("Equipment")
    assigned_provider = relationship("Provider")
    quotes = relationship(
        "Quote",
        back_populates="service_request",
        order_by="Quote.created_at",
    )


class Quote(Base):
    __tablename__ = "quotes"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    service_request_id = Column(
        UUID(as_uuid=True), ForeignKey("service_requests.id"), nullable=False, index=True
    )
    provider_id = Column(UUID(as_uuid=True), ForeignKey("providers.id"), nullable=False, index=True)
    status = Column(String, default="pending", nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String, default="VND", nullable=False)
    valid_until = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    estimated_duration_days = Column(Integer, nullable=True)
    available_start_date = Column(DateTime, nullable=True)
    accepted_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    service_request = relationship("ServiceRequest", back_populates="quotes")
    provider = relationship("Provider")


class CompletionReport(Base):
    __tablename__ = "completion_reports"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    service_request_id = Column(
        UUID(as_uuid=True), ForeignKey("service_requests.id"), nullable=False, index=True
    )
    provider_id = Column(UUID(as_uuid=True), ForeignKey("providers.id"), nullable=False)
    submitted_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    work_description_vi = Column(Text, nullable=False)
    work_description_en = Column(Text, nullable=True)
    parts_replaced = Column(JSON, default=list)
    next_maintenance_recommendation = Column(Text, nullable=True)
    actual_hours = Column(Float, nullable=True)
    photo_urls = Column(JSON, default=list)
    actual_completion_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class ServiceRequestDecline(Base):
    __tablename__ = "service_request_declines"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    service_request_id = Column(
        UUID(as_uuid=True), ForeignKey("service_requests.id"), nullable=False, index=True
    )
    provider_id = Column(UUID(as_uuid=True), ForeignKey("providers.id"), nullable=False, index=True)
    declined_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    action = Column(String, nullable=False)
    resource_type = Column(String, nullable=False)
    resource_id = Column(UUID(as_uuid=True), index=True)
    previous_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret")
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path
from types import SimpleNamespace

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from medmarket.main import app
from medmarket.database import Base, get_db
from medmarket import models, notify, pubsub, rate_limit, schemas
from medmarket.auth import create_access_token
from medmarket.rbac import build_caller_context
from medmarket.services import quotes as quote_service
from medmarket.services import service_requests as request_service

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_medmarket.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def clean_collaborators():
    rate_limit.limiter.reset()
    notify.STATUS_EVENT_OUTBOX.clear()
    pubsub._redis = None
    yield
    notify.STATUS_EVENT_OUTBOX.clear()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def _user(db, label):
    user = models.User(email=f"{label}-{uuid.uuid4()}@example.com", full_name=label)
    db.add(user)
    db.flush()
    return user


def _organization(db, label, org_type):
    org = models.Organization(name=label, slug=f"{label}-{uuid.uuid4()}", org_type=org_type)
    db.add(org)
    db.flush()
    return org


def _member(db, org, user, role):
    db.add(models.OrganizationMembership(organization_id=org.id, user_id=user.id, role=role))


@pytest.fixture
def world(db):
    """
    A hospital with staff of every role, a second hospital and two providers.

    The ``creator`` is an owner so self-approval can be told apart from a
    missing role.
    """

    hospital = _organization(db, "benh-vien-cho-ray", "hospital")
    other_hospital = _organization(db, "benh-vien-bach-mai", "hospital")
    provider_org = _organization(db, "medtech-services", "provider")
    rival_org = _organization(db, "saigon-biomed", "provider")

    creator = _user(db, "creator")
    owner = _user(db, "owner")
    admin = _user(db, "admin")
    member = _user(db, "member")
    outsider = _user(db, "outsider")
    provider_user = _user(db, "provider")
    rival_user = _user(db, "rival")

    _member(db, hospital, creator, "owner")
    _member(db, hospital, owner, "owner")
    _member(db, hospital, admin, "admin")
    _member(db, hospital, member, "member")
    _member(db, other_hospital, outsider, "owner")
    _member(db, provider_org, provider_user, "owner")
    _member(db, rival_org, rival_user, "owner")

    equipment = models.Equipment(organization_id=hospital.id, name_vi="Máy siêu âm", name_en="Ultrasound")
    foreign_equipment = models.Equipment(organization_id=other_hospital.id, name_vi="Máy X-quang")
    provider = models.Provider(organization_id=provider_org.id, name_vi="MedTech", name_en="MedTech")
    rival = models.Provider(organization_id=rival_org.id, name_vi="Saigon Biomed")
    db.add_all([equipment, foreign_equipment, provider, rival])
    db.commit()

    return SimpleNamespace(
        hospital_id=hospital.id,
        other_hospital_id=other_hospital.id,
        provider_org_id=provider_org.id,
        rival_org_id=rival_org.id,
        creator_id=creator.id,
        owner_id=owner.id,
        admin_id=admin.id,
        member_id=member.id,
        outsider_id=outsider.id,
        provider_user_id=provider_user.id,
        rival_user_id=rival_user.id,
        equipment_id=equipment.id,
        foreign_equipment_id=foreign_equipment.id,
        provider_id=provider.id,
        rival_id=rival.id,
    )


def caller_for(db, user_id, organization_id):
    """Resolve a caller context the same way the API dependency does."""

    return build_caller_context(db, db.get(models.User, user_id), organization_id)


def auth_headers(db, user_id, organization_id=None):
    user = db.get(models.User, user_id)
    claims = {"sub": user.email}
    if organization_id is not None:
        claims["org_id"] = organization_id
    token = create_access_token(claims)
    return {"Authorization": f"Bearer {token}"}


def open_request(db, world, **overrides):
    payload = {
        "organization_id": world.hospital_id,
        "equipment_id": world.equipment_id,
        "type": "repair",
        "priority": "high",
        "description_vi": "Máy siêu âm không khởi động được",
    }
    payload.update(overrides)
    caller = caller_for(db, world.creator_id, world.hospital_id)
    result = request_service.create(db, caller, schemas.ServiceRequestCreate(**payload))
    return result.value.id


def submit_quote(db, world, service_request_id, *, rival=False, amount=1_500_000):
    user_id, org_id = (
        (world.rival_user_id, world.rival_org_id) if rival else (world.provider_user_id, world.provider_org_id)
    )
    caller = caller_for(db, user_id, org_id)
    payload = schemas.QuoteCreate(service_request_id=service_request_id, amount=amount, valid_until_days=14)
    return quote_service.submit(db, caller, payload).value.id


def accepted_request(db, world):
    """A request whose quote from ``world.provider_id`` was accepted by the owner."""

    request_id = open_request(db, world)
    quote_id = submit_quote(db, world, request_id)
    quote_service.accept(db, caller_for(db, world.owner_id, world.hospital_id), quote_id)
    return request_id

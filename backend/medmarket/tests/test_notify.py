import asyncio
import json
import uuid

from medmarket import notify, pubsub
from medmarket.services import quotes as quote_service
from .conftest import caller_for, open_request, submit_quote


def _event(**overrides):
    data = {
        "resource_type": "service_request",
        "resource_id": uuid.uuid4(),
        "from_status": "quoted",
        "to_status": "accepted",
        "organization_id": uuid.uuid4(),
    }
    data.update(overrides)
    return notify.StatusEvent(**data)


def test_event_reaches_hospital_and_provider(monkeypatch):
    published = []

    async def fake_publish(organization_id, event):
        published.append((organization_id, event))

    monkeypatch.setattr(pubsub, "publish_organization_event", fake_publish)
    provider_org = uuid.uuid4()
    event = _event(provider_organization_id=provider_org)

    asyncio.run(notify.dispatch_status_events([event]))

    assert [org for org, _ in published] == [event.organization_id, provider_org]
    assert published[0][1]["type"] == "service_request.status_changed"
    assert notify.STATUS_EVENT_OUTBOX[-1]["to_status"] == "accepted"


def test_publish_failure_is_logged_not_raised(monkeypatch, caplog):
    async def broken_publish(organization_id, event):
        raise ConnectionError("redis unavailable")

    monkeypatch.setattr(pubsub, "publish_organization_event", broken_publish)
    asyncio.run(notify.dispatch_status_events([_event()]))
    assert "Failed to publish service_request.status_changed" in caplog.text
    assert len(notify.STATUS_EVENT_OUTBOX) == 1


def test_serialized_event_is_json():
    event = _event()
    decoded = json.loads(pubsub.serialize_event(event.payload()))
    assert decoded["resource_id"] == str(event.resource_id)
    assert decoded["occurred_at"] == event.occurred_at.isoformat()
    assert pubsub.organization_channel(event.organization_id) == f"organization:{event.organization_id}"


def test_acceptance_events_name_the_provider_org(db, world):
    request_id = open_request(db, world)
    quote_id = submit_quote(db, world, request_id)
    result = quote_service.accept(db, caller_for(db, world.owner_id, world.hospital_id), quote_id)
    request_event = next(e for e in result.events if e.resource_type == "service_request")
    assert request_event.recipients() == [world.hospital_id, world.provider_org_id]
    assert request_event.actor_id == world.owner_id

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from . import pubsub

logger = logging.getLogger(__name__)

STATUS_EVENT_OUTBOX: list[dict] = []


@dataclass(frozen=True)
class StatusEvent:
    """A committed status change handed to the notifier."""

    resource_type: str
    resource_id: UUID
    from_status: str | None
    to_status: str
    organization_id: UUID
    actor_id: UUID | None = None
    provider_organization_id: UUID | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def recipients(self) -> list[UUID]:
        targets = [self.organization_id]
        if self.provider_organization_id and self.provider_organization_id != self.organization_id:
            targets.append(self.provider_organization_id)
        return targets

    def payload(self) -> dict:
        data = asdict(self)
        data["type"] = f"{self.resource_type}.status_changed"
        return data


async def dispatch_status_events(events: Iterable[StatusEvent]) -> None:
    """Publish committed status changes; a broken notifier never fails the caller."""

    for event in events:
        payload = event.payload()
        if os.getenv("TESTING") == "1":
            STATUS_EVENT_OUTBOX.append(payload)
        for organization_id in event.recipients():
            try:
                await pubsub.publish_organization_event(organization_id, payload)
            except Exception:
                logger.warning(
                    "Failed to publish %s for %s to organization %s",
                    payload["type"],
                    event.resource_id,
                    organization_id,
                    exc_info=True,
                )

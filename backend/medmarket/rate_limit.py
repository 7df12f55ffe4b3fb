"""Per-organization rate limiting for write-heavy workflow endpoints."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Mapping
from uuid import UUID

from limits import RateLimitItem, parse, storage, strategies
from prometheus_client import Counter

from .errors import ErrorCode, WorkflowError

logger = logging.getLogger(__name__)

RATE_LIMIT_STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")

RATE_LIMIT_CONFIGS: dict[str, str] = {
    "serviceRequests.create": "10/minute",
    "quotes.submit": "10/minute",
    "serviceRequests.updateProgress": "30/minute",
}

RATE_LIMIT_REJECTIONS = Counter(
    "rate_limit_rejections_total", "Requests rejected by the org rate limiter", ["endpoint"]
)
RATE_LIMIT_FAIL_OPEN = Counter(
    "rate_limit_fail_open_total", "Rate limit checks skipped after a store failure", ["endpoint"]
)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_ms: int | None = None


class RateLimiter:
    """Sliding-window limiter keyed by ``(organization, endpoint)``.

    Endpoints without a configured rule are always allowed. When the backing
    store fails the check fails open: the request is allowed and the failure
    is logged and counted.
    """

    def __init__(
        self,
        configs: Mapping[str, str] | None = None,
        storage_uri: str = RATE_LIMIT_STORAGE_URI,
    ) -> None:
        self._items: dict[str, RateLimitItem] = {
            endpoint: parse(rule) for endpoint, rule in (configs or RATE_LIMIT_CONFIGS).items()
        }
        self._storage = storage.storage_from_string(storage_uri)
        self._strategy = strategies.MovingWindowRateLimiter(self._storage)

    def check_limit(self, organization_id: UUID | str, endpoint: str) -> RateLimitDecision:
        item = self._items.get(endpoint)
        if item is None:
            return RateLimitDecision(allowed=True)
        key = str(organization_id)
        try:
            if self._strategy.hit(item, key, endpoint):
                return RateLimitDecision(allowed=True)
            stats = self._strategy.get_window_stats(item, key, endpoint)
        except Exception:
            RATE_LIMIT_FAIL_OPEN.labels(endpoint).inc()
            logger.warning(
                "Rate limit store unavailable for %s on %s; allowing request",
                key,
                endpoint,
                exc_info=True,
            )
            return RateLimitDecision(allowed=True)
        retry_after_ms = max(1, int((stats.reset_time - time.time()) * 1000))
        RATE_LIMIT_REJECTIONS.labels(endpoint).inc()
        logger.info("Rate limit hit for %s on %s (retry in %d ms)", key, endpoint, retry_after_ms)
        return RateLimitDecision(allowed=False, retry_after_ms=retry_after_ms)

    def enforce(self, organization_id: UUID | str, endpoint: str) -> None:
        decision = self.check_limit(organization_id, endpoint)
        if not decision.allowed:
            raise WorkflowError(
                ErrorCode.RATE_LIMITED,
                endpoint=endpoint,
                retry_after_ms=decision.retry_after_ms,
            )

    def reset(self) -> None:
        self._storage.reset()


limiter = RateLimiter()


def check_limit(organization_id: UUID | str, endpoint: str) -> RateLimitDecision:
    return limiter.check_limit(organization_id, endpoint)


def enforce(organization_id: UUID | str, endpoint: str) -> None:
    limiter.enforce(organization_id, endpoint)

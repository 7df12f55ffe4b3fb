"""Closed error taxonomy for the request / quote workflow."""

from __future__ import annotations

import enum
from typing import Any

# purpose: let callers branch on a stable code instead of parsing message text
# status: active
# related_docs: backend/medmarket/messages.py


class ErrorCode(str, enum.Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    NO_ACTIVE_ORGANIZATION = "NO_ACTIVE_ORGANIZATION"
    FORBIDDEN_ORG_TYPE = "FORBIDDEN_ORG_TYPE"
    FORBIDDEN = "FORBIDDEN"
    INSUFFICIENT_ROLE = "INSUFFICIENT_ROLE"
    SELF_APPROVAL_FORBIDDEN = "SELF_APPROVAL_FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    EQUIPMENT_ORG_MISMATCH = "EQUIPMENT_ORG_MISMATCH"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_QUOTE_STATUS = "INVALID_QUOTE_STATUS"
    INVALID_SERVICE_REQUEST_STATUS = "INVALID_SERVICE_REQUEST_STATUS"
    INVALID_REASON = "INVALID_REASON"
    RATE_LIMITED = "RATE_LIMITED"


HTTP_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.NO_ACTIVE_ORGANIZATION: 403,
    ErrorCode.FORBIDDEN_ORG_TYPE: 403,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INSUFFICIENT_ROLE: 403,
    ErrorCode.SELF_APPROVAL_FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.EQUIPMENT_ORG_MISMATCH: 400,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.INVALID_QUOTE_STATUS: 409,
    ErrorCode.INVALID_SERVICE_REQUEST_STATUS: 409,
    ErrorCode.INVALID_REASON: 422,
    ErrorCode.RATE_LIMITED: 429,
}


class WorkflowError(RuntimeError):
    """Raised by workflow operations; ``code`` is the machine-readable kind.

    ``context`` carries the offending values (current/target status, the
    missing resource, retry-after) so the message layer and API clients can
    render or branch on them.
    """

    def __init__(self, code: ErrorCode, **context: Any) -> None:
        self.code = code
        self.context = {key: value for key, value in context.items() if value is not None}
        super().__init__(f"{code.value}: {self.context}" if self.context else code.value)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE[self.code]

    @property
    def retry_after_ms(self) -> int | None:
        return self.context.get("retry_after_ms")


def not_found(resource: str, resource_id: Any = None) -> WorkflowError:
    return WorkflowError(
        ErrorCode.NOT_FOUND,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
    )

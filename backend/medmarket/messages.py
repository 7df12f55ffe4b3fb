"""Bilingual (Vietnamese / English) messages for workflow error codes."""

from __future__ import annotations

from typing import Any, Mapping

from .errors import ErrorCode

_RESOURCE_NAMES: dict[str, tuple[str, str]] = {
    "organization": ("tổ chức", "organization"),
    "equipment": ("thiết bị", "equipment"),
    "service_request": ("yêu cầu dịch vụ", "service request"),
    "quote": ("báo giá", "quote"),
    "provider": ("hồ sơ nhà cung cấp", "provider profile"),
}

_TEMPLATES: dict[ErrorCode, tuple[str, str]] = {
    ErrorCode.UNAUTHENTICATED: (
        "Bạn cần đăng nhập để thực hiện thao tác này.",
        "You must be signed in to perform this action.",
    ),
    ErrorCode.NO_ACTIVE_ORGANIZATION: (
        "Bạn chưa chọn tổ chức đang hoạt động.",
        "No active organization is selected.",
    ),
    ErrorCode.FORBIDDEN_ORG_TYPE: (
        "Loại tổ chức của bạn không được phép thực hiện thao tác này (cần: {expected}).",
        "Your organization type cannot perform this action (required: {expected}).",
    ),
    ErrorCode.FORBIDDEN: (
        "Bạn không có quyền truy cập tài nguyên này.",
        "You do not have permission to access this resource.",
    ),
    ErrorCode.INSUFFICIENT_ROLE: (
        "Chỉ chủ sở hữu hoặc quản trị viên mới được phê duyệt thao tác này.",
        "Only an owner or admin may approve this action.",
    ),
    ErrorCode.SELF_APPROVAL_FORBIDDEN: (
        "Người tạo yêu cầu không thể tự phê duyệt yêu cầu của mình.",
        "The creator of a request cannot approve it.",
    ),
    ErrorCode.NOT_FOUND: (
        "Không tìm thấy {resource_vi}.",
        "{resource_en} not found.",
    ),
    ErrorCode.EQUIPMENT_ORG_MISMATCH: (
        "Thiết bị không thuộc tổ chức này.",
        "Equipment does not belong to this organization.",
    ),
    ErrorCode.INVALID_TRANSITION: (
        'Không thể chuyển trạng thái từ "{current_status}" sang "{target_status}".',
        'Cannot transition from "{current_status}" to "{target_status}".',
    ),
    ErrorCode.INVALID_QUOTE_STATUS: (
        'Báo giá đang ở trạng thái "{current_status}", không thể xử lý.',
        'Quote is in status "{current_status}" and cannot be processed.',
    ),
    ErrorCode.INVALID_SERVICE_REQUEST_STATUS: (
        'Yêu cầu dịch vụ đang ở trạng thái "{current_status}", không thể thực hiện thao tác này.',
        'Service request is in status "{current_status}"; this action is not allowed.',
    ),
    ErrorCode.INVALID_REASON: (
        "Lý do phải có ít nhất {min_length} ký tự.",
        "Reason must be at least {min_length} characters.",
    ),
    ErrorCode.RATE_LIMITED: (
        "Quá nhiều yêu cầu. Vui lòng thử lại sau {retry_after_seconds} giây.",
        "Rate limit exceeded. Please try again in {retry_after_seconds} seconds.",
    ),
}


class _Defaults(dict):
    def __missing__(self, key: str) -> str:
        return "?"


def render(code: ErrorCode, context: Mapping[str, Any] | None = None) -> dict[str, str]:
    """Return the ``{"vi": ..., "en": ...}`` message for an error code."""

    values = _Defaults(context or {})
    resource = values.get("resource")
    if resource is not None:
        vi_name, en_name = _RESOURCE_NAMES.get(resource, (resource, resource))
        values["resource_vi"] = vi_name
        values["resource_en"] = en_name.capitalize()
    retry_after_ms = values.get("retry_after_ms")
    if retry_after_ms is not None:
        values["retry_after_seconds"] = max(1, -(-int(retry_after_ms) // 1000))
    vi_template, en_template = _TEMPLATES[code]
    return {
        "vi": vi_template.format_map(values),
        "en": en_template.format_map(values),
    }

"""Validation of submitted task payloads."""

from __future__ import annotations

import re
from typing import Any

_SAFE_TEXT = re.compile(r"[\w\s.,@!?\-]+")

_EMAIL_FIELDS = ("from", "to", "subject", "content")


class PayloadError(ValueError):
    """A task payload is missing a field or holds an unsafe value."""


def sanitize_input(text: str) -> bool:
    """Return True when ``text`` is non-empty and uses only safe characters."""
    return _SAFE_TEXT.fullmatch(text) is not None


def _lookup(payload: Any, field: str) -> tuple[bool, Any]:
    if isinstance(payload, dict) and field in payload:
        return True, payload[field]
    return False, None


def _is_safe_string(value: Any) -> bool:
    return isinstance(value, str) and sanitize_input(value)


def _check_media(payload: Any, source_field: str) -> None:
    present, value = _lookup(payload, source_field)
    if not present:
        raise PayloadError(f"Missing '{source_field}' field")
    if not _is_safe_string(value):
        raise PayloadError(f"Invalid or unsafe '{source_field}'")
    if not _lookup(payload, "resize_factor")[0]:
        raise PayloadError("Missing 'resize_factor' field")


def validate_payload(task_type: str, payload: Any) -> None:
    """Check ``payload`` against the rules for ``task_type``; raise PayloadError if it fails."""
    if task_type == "email":
        for field in _EMAIL_FIELDS:
            present, value = _lookup(payload, field)
            if not present:
                raise PayloadError(f"Missing field '{field}'")
            if not _is_safe_string(value):
                raise PayloadError(f"Invalid or unsafe value for field '{field}'")
    elif task_type == "image":
        _check_media(payload, "img_src")
    elif task_type == "video":
        _check_media(payload, "vid_src")
    else:
        raise PayloadError("Unsupported task type")
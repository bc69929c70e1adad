"""Records stored by the task queue, with JSON-compatible conversion."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat()
    return text[: -len("+00:00")] + "Z"


def _parse_timestamp(value: Any, field: str) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"field {field!r} must be a timestamp string")
    text = value[:-1] + "+00:00" if value[-1:] in ("Z", "z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"field {field!r} is not a valid timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        raise ValueError(f"field {field!r} has no time zone: {value!r}")
    return parsed.astimezone(timezone.utc)


def _parse_uuid(value: Any, field: str) -> uuid.UUID:
    if not isinstance(value, str):
        raise ValueError(f"field {field!r} must be a UUID string")
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ValueError(f"field {field!r} is not a valid UUID: {value!r}") from None


def _require(data: Mapping[str, Any], field: str) -> Any:
    if not isinstance(data, Mapping):
        raise ValueError("expected a JSON object")
    try:
        return data[field]
    except KeyError:
        raise ValueError(f"missing field {field!r}") from None


def _str(data: Mapping[str, Any], field: str) -> str:
    value = _require(data, field)
    if not isinstance(value, str):
        raise ValueError(f"field {field!r} must be a string")
    return value


def _int(data: Mapping[str, Any], field: str) -> int:
    value = _require(data, field)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {field!r} must be an integer")
    if not _I32_MIN <= value <= _I32_MAX:
        raise ValueError(f"field {field!r} is out of range")
    return value


def _optional(data: Mapping[str, Any], field: str) -> Any:
    if not isinstance(data, Mapping):
        raise ValueError("expected a JSON object")
    return data.get(field)


@dataclass
class Task:
    """A unit of work submitted to the queue."""

    id: uuid.UUID
    task_type: str
    payload: Any
    status: str
    priority: int
    progress: int
    attempts: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "task_type": self.task_type,
            "payload": self.payload,
            "status": self.status,
            "priority": self.priority,
            "progress": self.progress,
            "attempts": self.attempts,
            "created_at": _format_timestamp(self.created_at),
            "updated_at": _format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        return cls(
            id=_parse_uuid(_require(data, "id"), "id"),
            task_type=_str(data, "task_type"),
            payload=_require(data, "payload"),
            status=_str(data, "status"),
            priority=_int(data, "priority"),
            progress=_int(data, "progress"),
            attempts=_int(data, "attempts"),
            created_at=_parse_timestamp(_require(data, "created_at"), "created_at"),
            updated_at=_parse_timestamp(_require(data, "updated_at"), "updated_at"),
        )


@dataclass
class WorkerNode:
    """A worker process and the task it is currently running, if any."""

    node_id: str
    status: str
    last_health_check: datetime
    current_task_id: uuid.UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status,
            "last_health_check": _format_timestamp(self.last_health_check),
            "current_task_id": None if self.current_task_id is None else str(self.current_task_id),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkerNode":
        raw_task_id = _optional(data, "current_task_id")
        return cls(
            node_id=_str(data, "node_id"),
            status=_str(data, "status"),
            last_health_check=_parse_timestamp(
                _require(data, "last_health_check"), "last_health_check"
            ),
            current_task_id=None
            if raw_task_id is None
            else _parse_uuid(raw_task_id, "current_task_id"),
        )


@dataclass
class LogEntry:
    """A log line written by a worker node."""

    timestamp: datetime
    message: str
    worker_node_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": _format_timestamp(self.timestamp),
            "worker_node_id": self.worker_node_id,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LogEntry":
        node_id = _optional(data, "worker_node_id")
        if node_id is not None and not isinstance(node_id, str):
            raise ValueError("field 'worker_node_id' must be a string")
        return cls(
            timestamp=_parse_timestamp(_require(data, "timestamp"), "timestamp"),
            message=_str(data, "message"),
            worker_node_id=node_id,
        )
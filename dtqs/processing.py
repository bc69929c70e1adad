"""Task handlers run by workers, with progress and log bookkeeping."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Sequence
from typing import Any

import sqlalchemy as sa
from sqlalchemy.engine import Engine

from dtqs.database import logs, tasks

PROCESSING_DELAY = 3.0

log = logging.getLogger(__name__)


def _task_filter(task_id: Any) -> Any:
    """SQL condition matching the task whose id renders exactly as ``task_id``."""
    if not isinstance(task_id, str):
        return sa.false()
    try:
        key = uuid.UUID(task_id)
    except ValueError:
        return sa.false()
    if str(key) != task_id:
        return sa.false()
    return tasks.c.id == key


def update_progress(engine: Engine, task_id: str, progress: int) -> None:
    """Store ``progress`` for the task and touch its update time."""
    with engine.begin() as conn:
        conn.execute(
            sa.update(tasks)
            .where(_task_filter(task_id))
            .values(progress=progress, updated_at=sa.func.now())
        )


def log_message(engine: Engine, worker_node_id: str, message: str) -> None:
    """Append a log line on behalf of a worker node."""
    with engine.begin() as conn:
        conn.execute(sa.insert(logs).values(worker_node_id=worker_node_id, message=message))


def _require_task_id(task_data: Any, kind: str) -> str:
    task_id = task_data.get("task_id") if isinstance(task_data, dict) else None
    if not isinstance(task_id, str):
        raise ValueError(f"Missing task_id in {kind} task")
    return task_id


def _process(
    kind: str,
    stages: Sequence[int],
    sleep_before_final: bool,
    task_data: Any,
    engine: Engine,
    worker_id: str,
    delay: float,
) -> None:
    task_id = _require_task_id(task_data, kind)
    label = kind.capitalize()
    log.info("Worker %s: Processing %s task %s", worker_id, kind, task_id)
    log_message(engine, worker_id, f"Started {kind} task {task_id}")

    for progress in stages:
        time.sleep(delay)
        update_progress(engine, task_id, progress)
        log_message(engine, worker_id, f"{label} task {task_id} progress {progress}%")

    if sleep_before_final:
        time.sleep(delay)
    update_progress(engine, task_id, 100)
    log_message(engine, worker_id, f"Completed {kind} task {task_id}")


def process_email_task(
    task_data: Any, engine: Engine, worker_id: str, delay: float = PROCESSING_DELAY
) -> None:
    """Run an email task through 20/40/60/80/100 percent."""
    _process("email", (20, 40, 60, 80), False, task_data, engine, worker_id, delay)


def process_video_task(
    task_data: Any, engine: Engine, worker_id: str, delay: float = PROCESSING_DELAY
) -> None:
    """Run a video task through 25/50/75/100 percent."""
    _process("video", (25, 50, 75), False, task_data, engine, worker_id, delay)


def process_image_task(
    task_data: Any, engine: Engine, worker_id: str, delay: float = PROCESSING_DELAY
) -> None:
    """Run an image task through 50/100 percent."""
    _process("image", (50,), True, task_data, engine, worker_id, delay)
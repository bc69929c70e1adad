"""Worker process: consumes queued tasks and runs them by priority."""

from __future__ import annotations

import argparse
import enum
import functools
import json
import logging
import os
import threading
from collections.abc import Callable, Sequence
from typing import Any

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dtqs.config import Config
from dtqs.database import setup_database, tasks
from dtqs.messaging import create_rabbit_channel
from dtqs.processing import (
    PROCESSING_DELAY,
    _task_filter,
    process_email_task,
    process_image_task,
    process_video_task,
)
from dtqs.scheduler import ScheduledTask, Scheduler

QUEUE_NAME = "task_queue"
CONSUMER_TAG = "worker"
DEFAULT_PRIORITY = 5
MAX_ATTEMPTS = 5
CONCURRENCY = 4
POLL_INTERVAL = 0.1

log = logging.getLogger(__name__)

_HANDLERS: dict[str, Callable[[Any, Engine, str, float], None]] = {
    "email": process_email_task,
    "video": process_video_task,
    "image": process_image_task,
}


class Outcome(enum.Enum):
    """What became of a task, and so how its message is settled."""

    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    UNTRACKED = "untracked"

    @property
    def acknowledge(self) -> bool:
        """True to ack the message, False to nack it."""
        return self in (Outcome.COMPLETED, Outcome.FAILED)


def parse_delivery(body: bytes) -> tuple[int, Any]:
    """Decode a message body into its priority (0-255, default 5) and task data.

    Raises ValueError when the body is not valid JSON.
    """
    task_data = json.loads(body)
    raw = task_data.get("priority") if isinstance(task_data, dict) else None
    if isinstance(raw, int) and not isinstance(raw, bool) and raw >= 0:
        priority = raw % 256
    else:
        priority = DEFAULT_PRIORITY
    return priority, task_data


def _string_field(task_data: Any, field: str, default: str) -> str:
    value = task_data.get(field) if isinstance(task_data, dict) else None
    return value if isinstance(value, str) else default


def _record_failure(engine: Engine, task_id: str) -> Outcome:
    condition = _task_filter(task_id)
    try:
        with engine.begin() as conn:
            result = conn.execute(
                sa.update(tasks)
                .where(condition)
                .values(attempts=tasks.c.attempts + 1, updated_at=sa.func.now())
            )
            if result.rowcount == 0:
                raise LookupError(f"no task with id {task_id}")
            attempts = conn.execute(sa.select(tasks.c.attempts).where(condition)).scalar_one()
    except (SQLAlchemyError, LookupError) as exc:
        log.error("Failed to update attempt count for task %s: %r", task_id, exc)
        return Outcome.UNTRACKED

    if attempts < MAX_ATTEMPTS:
        log.error("Retrying task %s (attempt %s)", task_id, attempts)
        return Outcome.RETRY

    log.error("Max attempts reached for task %s. Marking as failed.", task_id)
    try:
        with engine.begin() as conn:
            conn.execute(
                sa.update(tasks)
                .where(condition)
                .values(status="failed", updated_at=sa.func.now())
            )
    except SQLAlchemyError as exc:
        log.error("Failed to mark task %s as failed: %r", task_id, exc)
    return Outcome.FAILED


def run_task(
    task_data: Any, engine: Engine, worker_id: str, delay: float = PROCESSING_DELAY
) -> Outcome:
    """Run one task, record the result in the database and report the outcome."""
    task_type = _string_field(task_data, "task_type", "")
    task_id = _string_field(task_data, "task_id", "unknown")
    handler = _HANDLERS.get(task_type)
    try:
        if handler is None:
            raise ValueError(f"Unknown task type: {task_type}")
        handler(task_data, engine, worker_id, delay)
    except Exception as exc:
        log.error("Processing failed for task %s: %r", task_id, exc)
        return _record_failure(engine, task_id)

    log.info("Task %s processed successfully", task_id)
    try:
        with engine.begin() as conn:
            conn.execute(
                sa.update(tasks)
                .where(_task_filter(task_id))
                .values(status="completed", progress=100, updated_at=sa.func.now())
            )
    except SQLAlchemyError as exc:
        log.error("Failed to mark task %s as completed: %r", task_id, exc)
    return Outcome.COMPLETED


def _settle(channel: Any, delivery_tag: int, outcome: Outcome) -> None:
    if outcome.acknowledge:
        channel.basic_ack(delivery_tag=delivery_tag)
    else:
        channel.basic_nack(delivery_tag=delivery_tag, requeue=False)


def main(argv: Sequence[str] | None = None) -> int:
    """Consume tasks from the queue and process up to four at a time."""
    parser = argparse.ArgumentParser(
        description="Process queued tasks. Reads DATABASE_URL, RABBITMQ_URL and WORKER_ID."
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    config = Config.from_env()
    worker_id = os.environ["WORKER_ID"]
    engine = setup_database(config.database_url)
    channel = create_rabbit_channel(config.rabbitmq_url)
    connection = channel.connection

    channel.queue_declare(queue=QUEUE_NAME)
    scheduler = Scheduler()
    slots = threading.BoundedSemaphore(CONCURRENCY)

    def on_message(ch: Any, method: Any, properties: Any, body: bytes) -> None:
        try:
            priority, task_data = parse_delivery(body)
        except ValueError as exc:
            log.error("Failed to parse task: %r", exc)
            ch.basic_ack(delivery_tag=method.delivery_tag)
            return
        scheduler.add_task(ScheduledTask(priority, method.delivery_tag, task_data))

    def handle(scheduled: ScheduledTask) -> None:
        try:
            outcome = run_task(scheduled.task_data, engine, worker_id)
            connection.add_callback_threadsafe(
                functools.partial(_settle, channel, scheduled.delivery, outcome)
            )
        finally:
            slots.release()

    channel.basic_consume(
        queue=QUEUE_NAME, on_message_callback=on_message, consumer_tag=CONSUMER_TAG
    )

    try:
        while True:
            connection.process_data_events(time_limit=POLL_INTERVAL)
            while slots.acquire(blocking=False):
                scheduled = scheduler.get_next()
                if scheduled is None:
                    slots.release()
                    break
                threading.Thread(target=handle, args=(scheduled,), daemon=True).start()
    except KeyboardInterrupt:
        return 0
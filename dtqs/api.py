"""HTTP API: task submission, status streaming and a metrics endpoint."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from aiohttp import web
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dtqs.config import Config
from dtqs.database import setup_database, tasks
from dtqs.messaging import create_rabbit_channel, publish_message
from dtqs.validation import PayloadError, validate_payload

QUEUE_NAME = "task_queue"
DEFAULT_PRIORITY = 5
POLL_INTERVAL = 2.0
KEEP_ALIVE_INTERVAL = 15.0
METRICS_BODY = "prometheus_metrics_placeholder"

log = logging.getLogger(__name__)


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def create_task(
    engine: Engine,
    channel: Any,
    task_type: str,
    payload: Any,
    priority: int | None = None,
) -> dict[str, str]:
    """Validate, store and enqueue a new task; return the submission response.

    Raises PayloadError for an invalid task and RuntimeError when the task
    cannot be published.
    """
    if priority is not None and (
        isinstance(priority, bool) or not isinstance(priority, int) or not 0 <= priority <= 255
    ):
        raise PayloadError("Invalid priority")
    try:
        validate_payload(task_type, payload)
    except PayloadError as exc:
        log.error("Payload validation failed: %s", exc)
        raise

    task_id = uuid.uuid4()
    now = datetime.now(timezone.utc)
    effective_priority = DEFAULT_PRIORITY if priority is None else priority

    with engine.begin() as conn:
        conn.execute(
            sa.insert(tasks).values(
                id=task_id,
                task_type=task_type,
                payload=payload,
                status="pending",
                priority=effective_priority,
                progress=0,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
        )

    message = {
        "task_id": str(task_id),
        "task_type": task_type,
        "payload": payload,
        "priority": effective_priority,
    }
    try:
        publish_message(channel, QUEUE_NAME, _dumps(message).encode())
    except Exception as exc:
        log.error("Failed to publish task %s: %r", task_id, exc)
        raise RuntimeError("An error occurred when publishing task.") from exc

    log.info("Task %s submitted successfully", task_id)
    return {
        "task_id": str(task_id),
        "status": "submitted",
        "sse_url": f"/sse?task_id={task_id}",
    }


def task_status_event(engine: Engine, task_id: str) -> dict[str, Any] | None:
    """Return the task's status once it has left 'pending', else None.

    Raises ValueError when ``task_id`` is not a UUID.
    """
    key = uuid.UUID(task_id)
    try:
        with engine.connect() as conn:
            record = conn.execute(
                sa.select(tasks.c.status, tasks.c.progress).where(tasks.c.id == key)
            ).one_or_none()
    except SQLAlchemyError as exc:
        log.error("Error fetching task status: %r", exc)
        return None
    if record is None or record.status == "pending":
        return None
    return {"task_id": task_id, "status": record.status, "progress": record.progress}


def _parse_new_task(body: Any) -> tuple[str, Any, int | None]:
    if not isinstance(body, dict):
        raise PayloadError("Request body must be a JSON object")
    task_type = body.get("task_type")
    if not isinstance(task_type, str):
        raise PayloadError("Missing or invalid 'task_type'")
    if "payload" not in body:
        raise PayloadError("Missing 'payload'")
    return task_type, body["payload"], body.get("priority")


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


def create_app(engine: Engine, channel: Any, poll_interval: float = POLL_INTERVAL) -> web.Application:
    """Build the web application serving /submit, /sse and /metrics."""
    publish_lock = asyncio.Lock()

    async def submit(request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "Request body is not valid JSON")
        try:
            task_type, payload, priority = _parse_new_task(body)
            async with publish_lock:
                response = await asyncio.to_thread(
                    create_task, engine, channel, task_type, payload, priority
                )
        except PayloadError as exc:
            return _error(400, str(exc))
        except RuntimeError as exc:
            return _error(500, str(exc))
        except SQLAlchemyError as exc:
            log.error("DB insertion failed: %r", exc)
            return _error(500, "DB insertion failed.")
        return web.json_response(response)

    async def sse(request: web.Request) -> web.StreamResponse:
        task_id = request.query.get("task_id")
        if task_id is None:
            return _error(400, "Missing task_id")
        try:
            uuid.UUID(task_id)
        except ValueError:
            return _error(400, "Invalid task_id")

        response = web.StreamResponse(
            headers={"Content-Type": "text/event-stream", "Cache-Control": "no-cache"}
        )
        await response.prepare(request)
        loop = asyncio.get_running_loop()
        last_sent = loop.time()
        try:
            while True:
                event = await asyncio.to_thread(task_status_event, engine, task_id)
                now = loop.time()
                if event is not None:
                    await response.write(f"data: {_dumps(event)}\n\n".encode())
                    last_sent = now
                elif now - last_sent >= KEEP_ALIVE_INTERVAL:
                    await response.write(b":\n\n")
                    last_sent = now
                await asyncio.sleep(poll_interval)
        except ConnectionResetError:
            pass
        return response

    async def metrics(request: web.Request) -> web.Response:
        return web.Response(text=METRICS_BODY)

    app = web.Application()
    app.router.add_post("/submit", submit)
    app.router.add_get("/sse", sse)
    app.router.add_get("/metrics", metrics)
    return app


def main(argv: Sequence[str] | None = None) -> int:
    """Serve the API on all interfaces at the configured port."""
    parser = argparse.ArgumentParser(
        description="Run the task API. Reads DATABASE_URL, RABBITMQ_URL and SERVER_PORT."
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    config = Config.from_env()
    engine = setup_database(config.database_url)
    channel = create_rabbit_channel(config.rabbitmq_url)
    web.run_app(create_app(engine, channel), host="0.0.0.0", port=config.server_port)
    return 0
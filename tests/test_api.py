import json
import uuid

import pytest
import sqlalchemy as sa
from aiohttp import test_utils

from dtqs.api import create_app, create_task, task_status_event
from dtqs.database import setup_database, tasks
from dtqs.validation import PayloadError

EMAIL = {
    "from": "sender@example.com",
    "to": "receiver@example.com",
    "subject": "Hello",
    "content": "Just a test",
}


class RecordingChannel:
    def __init__(self):
        self.published = []

    def basic_publish(self, exchange, routing_key, body, properties=None):
        self.published.append((exchange, routing_key, body))


class BrokenChannel:
    def basic_publish(self, exchange, routing_key, body, properties=None):
        raise RuntimeError("broker down")


@pytest.fixture
def engine(tmp_path):
    return setup_database(f"sqlite:///{tmp_path / 'dtqs.db'}")


def stored(engine, task_id):
    with engine.connect() as conn:
        return conn.execute(sa.select(tasks).where(tasks.c.id == uuid.UUID(task_id))).one()


def set_status(engine, task_id, status, progress):
    with engine.begin() as conn:
        conn.execute(
            sa.update(tasks)
            .where(tasks.c.id == uuid.UUID(task_id))
            .values(status=status, progress=progress)
        )


def test_create_task_stores_and_publishes(engine):
    channel = RecordingChannel()
    response = create_task(engine, channel, "email", EMAIL, 3)
    task_id = response["task_id"]
    assert response["status"] == "submitted"
    assert response["sse_url"] == f"/sse?task_id={task_id}"

    record = stored(engine, task_id)
    assert (record.task_type, record.status, record.priority) == ("email", "pending", 3)
    assert (record.progress, record.attempts) == (0, 0)
    assert record.payload == EMAIL

    [(exchange, queue, body)] = channel.published
    assert (exchange, queue) == ("", "task_queue")
    assert json.loads(body) == {
        "task_id": task_id,
        "task_type": "email",
        "payload": EMAIL,
        "priority": 3,
    }


def test_create_task_default_priority(engine):
    channel = RecordingChannel()
    response = create_task(engine, channel, "image", {"img_src": "cat.png", "resize_factor": 2})
    assert stored(engine, response["task_id"]).priority == 5
    assert json.loads(channel.published[0][2])["priority"] == 5


def test_create_task_rejects_invalid_payload(engine):
    channel = RecordingChannel()
    with pytest.raises(PayloadError, match="Missing 'vid_src' field"):
        create_task(engine, channel, "video", {"resize_factor": 2})
    assert channel.published == []


@pytest.mark.parametrize("priority", [-1, 256, 1.5, True])
def test_create_task_rejects_bad_priority(engine, priority):
    with pytest.raises(PayloadError):
        create_task(engine, RecordingChannel(), "email", EMAIL, priority)


def test_create_task_publish_failure(engine):
    with pytest.raises(RuntimeError, match="An error occurred when publishing task."):
        create_task(engine, BrokenChannel(), "email", EMAIL)


def test_status_event_waits_for_non_pending(engine):
    task_id = create_task(engine, RecordingChannel(), "email", EMAIL)["task_id"]
    assert task_status_event(engine, task_id) is None
    set_status(engine, task_id, "completed", 100)
    assert task_status_event(engine, task_id) == {
        "task_id": task_id,
        "status": "completed",
        "progress": 100,
    }


def test_status_event_unknown_and_invalid(engine):
    assert task_status_event(engine, str(uuid.uuid4())) is None
    with pytest.raises(ValueError):
        task_status_event(engine, "not-a-uuid")


@pytest.mark.asyncio
async def test_metrics_endpoint(engine):
    app = create_app(engine, RecordingChannel())
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/metrics")
        assert resp.status == 200
        assert await resp.text() == "prometheus_metrics_placeholder"


@pytest.mark.asyncio
async def test_submit_endpoint(engine):
    channel = RecordingChannel()
    app = create_app(engine, channel)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.post("/submit", json={"task_type": "email", "payload": EMAIL})
        assert resp.status == 200
        body = await resp.json()
        assert body["sse_url"] == f"/sse?task_id={body['task_id']}"
        assert stored(engine, body["task_id"]).status == "pending"
        assert len(channel.published) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "request_body",
    [
        {"task_type": "fax", "payload": {}},
        {"payload": EMAIL},
        {"task_type": "email"},
        [1, 2],
    ],
)
async def test_submit_endpoint_rejects(engine, request_body):
    channel = RecordingChannel()
    app = create_app(engine, channel)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.post("/submit", json=request_body)
        assert resp.status == 400
        assert channel.published == []


@pytest.mark.asyncio
async def test_sse_requires_task_id(engine):
    app = create_app(engine, RecordingChannel())
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/sse")
        assert resp.status == 400
        assert (await resp.json())["error"] == "Missing task_id"


@pytest.mark.asyncio
async def test_sse_streams_status(engine):
    task_id = create_task(engine, RecordingChannel(), "email", EMAIL)["task_id"]
    set_status(engine, task_id, "in_progress", 40)
    app = create_app(engine, RecordingChannel(), poll_interval=0.01)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/sse", params={"task_id": task_id})
        assert resp.status == 200
        assert resp.headers["Content-Type"] == "text/event-stream"
        line = await resp.content.readline()
        assert line.startswith(b"data: ")
        assert json.loads(line[len(b"data: "):]) == {
            "task_id": task_id,
            "status": "in_progress",
            "progress": 40,
        }
        resp.close()
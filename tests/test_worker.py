import uuid

import pytest
import sqlalchemy as sa

from dtqs.database import setup_database, tasks
from dtqs.worker import MAX_ATTEMPTS, Outcome, parse_delivery, run_task


@pytest.fixture
def engine(tmp_path):
    return setup_database(f"sqlite:///{tmp_path / 'dtqs.db'}")


def add_task(engine, task_type="email", attempts=0):
    task_id = uuid.uuid4()
    with engine.begin() as conn:
        conn.execute(
            sa.insert(tasks).values(
                id=task_id,
                task_type=task_type,
                payload={},
                status="pending",
                priority=5,
                progress=0,
                attempts=attempts,
            )
        )
    return str(task_id)


def row(engine, task_id):
    with engine.connect() as conn:
        return conn.execute(
            sa.select(tasks.c.status, tasks.c.progress, tasks.c.attempts).where(
                tasks.c.id == uuid.UUID(task_id)
            )
        ).one()


def test_parse_delivery_reads_priority():
    priority, data = parse_delivery(b'{"priority": 2, "task_type": "email"}')
    assert priority == 2
    assert data == {"priority": 2, "task_type": "email"}


@pytest.mark.parametrize(
    "body",
    [b'{"task_type": "email"}', b'{"priority": -1}', b'{"priority": "1"}', b'{"priority": 1.5}', b"[1, 2]"],
)
def test_parse_delivery_defaults_priority(body):
    assert parse_delivery(body)[0] == 5


def test_parse_delivery_truncates_to_byte():
    assert parse_delivery(b'{"priority": 300}')[0] == 44


def test_parse_delivery_rejects_bad_json():
    with pytest.raises(ValueError):
        parse_delivery(b"{not json")


def test_outcome_acknowledgement(engine):
    done = add_task(engine)
    retried = add_task(engine, task_type="audio")
    failed = add_task(engine, task_type="audio", attempts=MAX_ATTEMPTS - 1)

    completed_outcome = run_task({"task_id": done, "task_type": "email"}, engine, "w1", delay=0)
    retry_outcome = run_task({"task_id": retried, "task_type": "audio"}, engine, "w1", delay=0)
    failed_outcome = run_task({"task_id": failed, "task_type": "audio"}, engine, "w1", delay=0)
    untracked_outcome = run_task({"task_type": "email"}, engine, "w1", delay=0)

    assert completed_outcome is Outcome.COMPLETED
    assert completed_outcome.acknowledge
    assert failed_outcome is Outcome.FAILED
    assert failed_outcome.acknowledge
    assert retry_outcome is Outcome.RETRY
    assert not retry_outcome.acknowledge
    assert untracked_outcome is Outcome.UNTRACKED
    assert not untracked_outcome.acknowledge


def test_successful_task_is_completed(engine):
    task_id = add_task(engine)
    outcome = run_task({"task_id": task_id, "task_type": "email"}, engine, "w1", delay=0)
    assert outcome is Outcome.COMPLETED
    assert tuple(row(engine, task_id)) == ("completed", 100, 0)


def test_unknown_type_is_retried(engine):
    task_id = add_task(engine, task_type="audio")
    outcome = run_task({"task_id": task_id, "task_type": "audio"}, engine, "w1", delay=0)
    assert outcome is Outcome.RETRY
    assert tuple(row(engine, task_id)) == ("pending", 0, 1)


def test_last_attempt_marks_failed(engine):
    task_id = add_task(engine, task_type="audio", attempts=MAX_ATTEMPTS - 1)
    outcome = run_task({"task_id": task_id, "task_type": "audio"}, engine, "w1", delay=0)
    assert outcome is Outcome.FAILED
    status, _, attempts = row(engine, task_id)
    assert status == "failed"
    assert attempts == MAX_ATTEMPTS


def test_failure_for_unknown_task_is_untracked(engine):
    outcome = run_task(
        {"task_id": str(uuid.uuid4()), "task_type": "audio"}, engine, "w1", delay=0
    )
    assert outcome is Outcome.UNTRACKED


def test_missing_task_id_is_untracked(engine):
    assert run_task({"task_type": "email"}, engine, "w1", delay=0) is Outcome.UNTRACKED
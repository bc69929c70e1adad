"""Database schema and connection setup."""

from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

log = logging.getLogger(__name__)

metadata = sa.MetaData()

tasks = sa.Table(
    "tasks",
    metadata,
    sa.Column("id", sa.Uuid, primary_key=True),
    sa.Column("task_type", sa.String(64), nullable=False),
    sa.Column("payload", sa.JSON, nullable=False),
    sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
    sa.Column("priority", sa.Integer, nullable=False, server_default="5"),
    sa.Column("progress", sa.Integer, server_default="0"),
    sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
)

worker_nodes = sa.Table(
    "worker_nodes",
    metadata,
    sa.Column("node_id", sa.String(128), primary_key=True),
    sa.Column("status", sa.String(32), nullable=False),
    sa.Column(
        "last_health_check", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    ),
    sa.Column("current_task_id", sa.Uuid, sa.ForeignKey("tasks.id"), nullable=True),
)

logs = sa.Table(
    "logs",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.Column("worker_node_id", sa.String(128), nullable=True),
    sa.Column("message", sa.Text, nullable=False),
)


def setup_database(database_url: str) -> Engine:
    """Connect to ``database_url`` and make sure the schema exists.

    Raises RuntimeError when the database cannot be reached or the schema
    cannot be created.
    """
    try:
        engine = sa.create_engine(database_url)
        with engine.connect():
            pass
    except SQLAlchemyError as exc:
        raise RuntimeError("Failed to connect to database.") from exc

    try:
        metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise RuntimeError("Failed to run database migrations") from exc
    log.info("Database migrations complete")
    return engine
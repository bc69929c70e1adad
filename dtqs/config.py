"""Runtime configuration read from the environment."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_SERVER_PORT = 8080

_PORT_PATTERN = re.compile(r"\+?[0-9]+")
_MAX_PORT = 65535


def _require(environ: Mapping[str, str], name: str) -> str:
    try:
        return environ[name]
    except KeyError:
        raise KeyError(f"environment variable {name} is not set") from None


def _parse_port(value: str | None) -> int:
    if value is None or not _PORT_PATTERN.fullmatch(value):
        return DEFAULT_SERVER_PORT
    port = int(value)
    return port if port <= _MAX_PORT else DEFAULT_SERVER_PORT


@dataclass(frozen=True)
class Config:
    """Connection settings shared by the API server, the worker and the dashboard."""

    database_url: str
    rabbitmq_url: str
    server_port: int = DEFAULT_SERVER_PORT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Config":
        """Build a config from ``environ`` (the process environment by default).

        ``DATABASE_URL`` and ``RABBITMQ_URL`` are required; ``SERVER_PORT``
        falls back to 8080 when it is missing or not a valid port.
        """
        env = os.environ if environ is None else environ
        return cls(
            database_url=_require(env, "DATABASE_URL"),
            rabbitmq_url=_require(env, "RABBITMQ_URL"),
            server_port=_parse_port(env.get("SERVER_PORT")),
        )
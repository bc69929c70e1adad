"""Message broker connection and publishing with exponential-backoff retries."""

from __future__ import annotations

import logging
from typing import Any

import pika
from pika.exceptions import AMQPError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

MAX_RETRIES = 5
DELAY_MS = 100

log = logging.getLogger(__name__)


def _retrying() -> Retrying:
    # Delays grow as DELAY_MS ** n milliseconds: 0.1 s, 10 s, 1000 s, ...
    return Retrying(
        stop=stop_after_attempt(MAX_RETRIES + 1),
        wait=wait_exponential(multiplier=DELAY_MS / 1000, exp_base=DELAY_MS),
        retry=retry_if_exception_type(AMQPError),
        reraise=True,
    )


def create_rabbit_channel(rabbitmq_url: str) -> Any:
    """Connect to the broker at ``rabbitmq_url`` and open a channel."""
    parameters = pika.URLParameters(rabbitmq_url)
    for attempt in _retrying():
        with attempt:
            connection = pika.BlockingConnection(parameters)
    channel = connection.channel()
    log.info("RabbitMQ channel created")
    return channel


def publish_message(channel: Any, queue: str, payload: bytes) -> None:
    """Publish ``payload`` to ``queue`` on the default exchange, retrying on broker errors."""
    for attempt in _retrying():
        with attempt:
            channel.basic_publish(
                exchange="",
                routing_key=queue,
                body=payload,
                properties=pika.BasicProperties(),
            )
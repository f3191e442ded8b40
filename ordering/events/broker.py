"""
Broker adapters used by the outbox publisher.

Every adapter exposes `publish(message)` and `close()`. `publish` raises
PublishFailure when the broker does not accept the message; the publisher
treats that (and any other exception, including timeouts) as a failed attempt.
"""
import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ordering.core.config import BROKER_STREAM_MAXLEN, BROKER_STREAM_PREFIX, BROKER_URL
from ordering.core.exceptions import PublishFailure

log = logging.getLogger("ordering.broker")


def message_key(message: Dict[str, Any]) -> str:
    """Partition key: consumers see one aggregate's events under one key."""
    return f"{message['aggregate_type']}:{message['aggregate_id']}"


class Broker(ABC):
    @abstractmethod
    async def publish(self, message: Dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        pass


class InMemoryBroker(Broker):
    """
    Keeps the most recent published messages in memory. Used for local development and tests.

    `fail_times` makes the next N publish calls raise PublishFailure, to
    simulate an unavailable broker.
    """

    def __init__(self, fail_times: int = 0, keep: int = 10000):
        self.messages: Deque[Dict[str, Any]] = deque(maxlen=keep)
        self.fail_times = fail_times

    async def publish(self, message: Dict[str, Any]) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise PublishFailure("broker unavailable")
        self.messages.append(message)
        log.info(f"Published {message['event_type']} for {message_key(message)}")

    @property
    def event_ids(self) -> List[str]:
        return [message["id"] for message in self.messages]


class RedisStreamBroker(Broker):
    """Appends each event to a Redis stream named `<prefix>.<aggregate type>`."""

    def __init__(
        self,
        client: aioredis.Redis,
        stream_prefix: str = BROKER_STREAM_PREFIX,
        maxlen: Optional[int] = BROKER_STREAM_MAXLEN,
    ):
        self.client = client
        self.stream_prefix = stream_prefix
        self.maxlen = maxlen

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisStreamBroker":
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def stream_for(self, message: Dict[str, Any]) -> str:
        return f"{self.stream_prefix}.{message['aggregate_type'].lower()}"

    async def publish(self, message: Dict[str, Any]) -> None:
        fields = {
            "key": message_key(message),
            "event_id": message["id"],
            "event_type": message["event_type"],
            "body": json.dumps(message, default=str),
        }
        try:
            await self.client.xadd(self.stream_for(message), fields, maxlen=self.maxlen, approximate=True)
        except RedisError as e:
            raise PublishFailure(f"redis: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


def build_broker(url: str = BROKER_URL) -> Broker:
    if not url or url.startswith("memory://"):
        return InMemoryBroker()
    if url.startswith(("redis://", "rediss://")):
        return RedisStreamBroker.from_url(url)
    raise ValueError(f"Unsupported broker URL: {url}")

import json

import fakeredis
import pytest
from unittest.mock import AsyncMock
from redis.exceptions import ConnectionError as RedisConnectionError

from ordering.core.exceptions import PublishFailure
from ordering.events.broker import Broker, InMemoryBroker, RedisStreamBroker, build_broker, message_key

MESSAGE = {
    "id": "3f0b5c1e-0000-0000-0000-000000000001",
    "aggregate_type": "ORDER",
    "aggregate_id": "order-1",
    "event_type": "OrderCreated",
    "payload": {"order": {"total_amount": "20.00"}},
    "created_at": "2024-01-01T12:00:00",
}


def test_message_key_groups_by_aggregate():
    assert message_key(MESSAGE) == "ORDER:order-1"


@pytest.mark.asyncio
async def test_in_memory_broker_fails_then_recovers():
    broker = InMemoryBroker(fail_times=1)

    with pytest.raises(PublishFailure):
        await broker.publish(MESSAGE)
    await broker.publish(MESSAGE)

    assert broker.event_ids == [MESSAGE["id"]]


@pytest.mark.asyncio
async def test_redis_stream_broker_appends_to_aggregate_stream():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    broker = RedisStreamBroker(client, stream_prefix="events", maxlen=100)

    await broker.publish(MESSAGE)

    entries = await client.xrange("events.order")
    assert len(entries) == 1
    _, fields = entries[0]
    assert fields["key"] == "ORDER:order-1"
    assert fields["event_type"] == "OrderCreated"
    assert json.loads(fields["body"])["payload"] == MESSAGE["payload"]
    await broker.close()


@pytest.mark.asyncio
async def test_redis_errors_become_publish_failures():
    client = AsyncMock()
    client.xadd.side_effect = RedisConnectionError("connection refused")
    broker = RedisStreamBroker(client)

    with pytest.raises(PublishFailure) as excinfo:
        await broker.publish(MESSAGE)

    assert "connection refused" in str(excinfo.value)


def test_build_broker_from_url():
    assert isinstance(build_broker("memory://"), InMemoryBroker)
    assert isinstance(build_broker(""), InMemoryBroker)
    assert isinstance(build_broker("redis://localhost:6379/0"), RedisStreamBroker)
    with pytest.raises(ValueError):
        build_broker("kafka://localhost:9092")


def test_broker_requires_a_publish_implementation():
    with pytest.raises(TypeError):
        Broker()

    class Incomplete(Broker):
        pass

    with pytest.raises(TypeError):
        Incomplete()

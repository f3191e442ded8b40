import asyncio

import pytest

from ordering.consumers.outbox_publisher import OutboxPublisher
from ordering.core.db import read_session, unit_of_work
from ordering.core.exceptions import PublishFailure
from ordering.events.broker import Broker, InMemoryBroker
from ordering.models.order import OrderStatus
from ordering.models.outbox import OutboxStatus
from ordering.services.order_service import create_order, transition_status
from ordering.stores.outbox_store import OutboxStore


class Crash(BaseException):
    """Simulates the process dying: not an Exception, so nothing inside the publisher catches it."""


class CrashingBroker(InMemoryBroker):
    def __init__(self, crash_after: int):
        super().__init__()
        self.crash_after = crash_after

    async def publish(self, message):
        if len(self.messages) >= self.crash_after:
            raise Crash()
        await super().publish(message)


class SelectiveBroker(InMemoryBroker):
    """Rejects every message for one aggregate."""

    def __init__(self, poisoned_aggregate: str):
        super().__init__()
        self.poisoned_aggregate = poisoned_aggregate

    async def publish(self, message):
        if message["aggregate_id"] == self.poisoned_aggregate:
            raise PublishFailure("rejected")
        await super().publish(message)


class SlowBroker(Broker):
    async def publish(self, message):
        await asyncio.sleep(1)


async def all_events():
    async with read_session() as session:
        store = OutboxStore(session)
        events = []
        for status in OutboxStatus:
            events.extend(await store.list_by_status(status, limit=1000))
        return events


async def statuses():
    return {event.id: event.status for event in await all_events()}


@pytest.mark.asyncio
async def test_committed_events_are_published_after_restart(db, items):
    """Order committed, process died before publishing: a new publisher still finds the event."""
    order = await create_order("user-1", items)
    await transition_status(order.id, OrderStatus.PAYMENT_PENDING)

    broker = InMemoryBroker()
    report = await OutboxPublisher(broker).publish_pending()

    assert report.fetched == 2
    assert report.processed == 2
    assert [m["event_type"] for m in broker.messages] == ["OrderCreated", "OrderPaymentPending"]
    assert broker.messages[0]["aggregate_id"] == str(order.id)
    assert set((await statuses()).values()) == {OutboxStatus.PROCESSED}


@pytest.mark.asyncio
async def test_processed_events_are_not_republished(db, items):
    await create_order("user-1", items)
    broker = InMemoryBroker()
    publisher = OutboxPublisher(broker)

    await publisher.publish_pending()
    second = await publisher.publish_pending()

    assert second.fetched == 0
    assert len(broker.messages) == 1


@pytest.mark.asyncio
async def test_failures_retry_then_escalate_to_failed(db, items):
    await create_order("user-1", items)
    publisher = OutboxPublisher(InMemoryBroker(fail_times=10), max_retries=3)

    reports = [await publisher.publish_pending() for _ in range(4)]

    assert [r.retried for r in reports[:2]] == [1, 1]
    assert reports[2].failed == 1
    assert reports[3].fetched == 0

    [event] = await all_events()
    assert event.status == OutboxStatus.FAILED
    assert event.retry_count == 3
    assert "broker unavailable" in event.error_message


@pytest.mark.asyncio
async def test_transient_failure_recovers_on_next_cycle(db, items):
    await create_order("user-1", items)
    broker = InMemoryBroker(fail_times=1)
    publisher = OutboxPublisher(broker, max_retries=3)

    first = await publisher.publish_pending()
    second = await publisher.publish_pending()

    assert first.retried == 1
    assert second.processed == 1
    [event] = await all_events()
    assert event.status == OutboxStatus.PROCESSED
    assert event.retry_count == 1


@pytest.mark.asyncio
async def test_one_failing_event_does_not_block_the_batch(db, items):
    bad = await create_order("user-bad", items)
    good = await create_order("user-good", items)
    broker = SelectiveBroker(poisoned_aggregate=str(bad.id))

    report = await OutboxPublisher(broker).publish_pending()

    assert report.processed == 1
    assert report.retried == 1
    assert [m["aggregate_id"] for m in broker.messages] == [str(good.id)]


@pytest.mark.asyncio
async def test_publish_timeout_counts_as_failure(db, items):
    await create_order("user-1", items)
    publisher = OutboxPublisher(SlowBroker(), publish_timeout=0.05)

    report = await publisher.publish_pending()

    assert report.retried == 1
    [event] = await all_events()
    assert event.status == OutboxStatus.PENDING
    assert "timed out" in event.error_message


@pytest.mark.asyncio
async def test_crash_mid_batch_loses_no_event(db, items):
    for n in range(4):
        await create_order(f"user-{n}", items)

    with pytest.raises(Crash):
        await OutboxPublisher(CrashingBroker(crash_after=2)).publish_pending()

    after_crash = await statuses()
    assert list(after_crash.values()).count(OutboxStatus.PROCESSED) == 2
    assert list(after_crash.values()).count(OutboxStatus.PENDING) == 2

    broker = InMemoryBroker()
    await OutboxPublisher(broker).publish_pending()

    assert len(broker.messages) == 2
    assert set((await statuses()).values()) == {OutboxStatus.PROCESSED}


@pytest.mark.asyncio
async def test_failed_event_can_be_requeued_by_operator(db, items):
    await create_order("user-1", items)
    await OutboxPublisher(InMemoryBroker(fail_times=1), max_retries=1).publish_pending()
    [event] = await all_events()
    assert event.status == OutboxStatus.FAILED

    async with unit_of_work() as session:
        await OutboxStore(session).requeue(event.id)
    broker = InMemoryBroker()
    await OutboxPublisher(broker).publish_pending()

    assert broker.event_ids == [str(event.id)]


@pytest.mark.asyncio
async def test_background_loop_publishes_and_stops(db, items):
    broker = InMemoryBroker()
    publisher = OutboxPublisher(broker, poll_interval=0.01)
    publisher.start()
    assert publisher.running

    await create_order("user-1", items)
    for _ in range(200):
        if broker.messages:
            break
        await asyncio.sleep(0.01)

    await publisher.stop()
    assert not publisher.running
    assert len(broker.messages) == 1


@pytest.mark.asyncio
async def test_loop_survives_a_failing_cycle(db, monkeypatch):
    publisher = OutboxPublisher(InMemoryBroker(), poll_interval=0.01)
    cycles = []

    async def broken_cycle():
        cycles.append(1)
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(publisher, "publish_pending", broken_cycle)
    publisher.start()
    for _ in range(200):
        if len(cycles) >= 3:
            break
        await asyncio.sleep(0.01)
    await publisher.stop()

    assert len(cycles) >= 3


@pytest.mark.asyncio
async def test_error_marking_one_event_processed_does_not_abort_the_batch(db, items, monkeypatch):
    for n in range(3):
        await create_order(f"user-{n}", items)

    original = OutboxStore.mark_processed
    calls = []

    async def flaky_mark_processed(self, event_id):
        calls.append(event_id)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return await original(self, event_id)

    monkeypatch.setattr(OutboxStore, "mark_processed", flaky_mark_processed)
    broker = InMemoryBroker()
    report = await OutboxPublisher(broker).publish_pending()

    assert len(broker.messages) == 3
    assert report.processed == 2
    assert report.skipped == 1
    assert list((await statuses()).values()).count(OutboxStatus.PENDING) == 1

    # The event whose outcome was lost is delivered again on the next cycle
    monkeypatch.setattr(OutboxStore, "mark_processed", original)
    report = await OutboxPublisher(broker).publish_pending()
    assert report.processed == 1
    assert len(broker.messages) == 4
    assert set((await statuses()).values()) == {OutboxStatus.PROCESSED}


@pytest.mark.asyncio
async def test_error_recording_a_failure_does_not_abort_the_batch(db, items, monkeypatch):
    for n in range(3):
        await create_order(f"user-{n}", items)

    async def broken_record_failure(self, event_id, error, max_retries):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(OutboxStore, "record_failure", broken_record_failure)
    broker = InMemoryBroker(fail_times=3)
    report = await OutboxPublisher(broker).publish_pending()

    # Every event got its publish attempt
    assert broker.fail_times == 0
    assert report.skipped == 3
    assert set((await statuses()).values()) == {OutboxStatus.PENDING}

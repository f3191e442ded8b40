import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ordering.core.config import BATCH_SIZE, BROKER_URL, LOG_LEVEL, MAX_RETRIES, POLLING_INTERVAL, PUBLISH_TIMEOUT
from ordering.core.db import close_db, init_db, read_session, unit_of_work
from ordering.events.broker import Broker, build_broker
from ordering.models.outbox import OutboxEvent, OutboxStatus
from ordering.stores.outbox_store import OutboxStore

log = logging.getLogger("ordering.publisher")


@dataclass
class PublishReport:
    """What one polling cycle did."""
    fetched: int = 0
    processed: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0  # outcome could not be recorded; retried next cycle


class OutboxPublisher:
    """
    Relays PENDING outbox events to the broker.

    Each cycle reads a batch oldest first, publishes the events one by one and
    records the outcome per event in its own short transaction. No database
    transaction is open while a publish call is in flight.
    """

    def __init__(
        self,
        broker: Broker,
        batch_size: int = BATCH_SIZE,
        poll_interval: float = POLLING_INTERVAL,
        max_retries: int = MAX_RETRIES,
        publish_timeout: float = PUBLISH_TIMEOUT,
    ):
        self.broker = broker
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.max_retries = max_retries
        self.publish_timeout = publish_timeout
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def publish_pending(self) -> PublishReport:
        """Runs one polling cycle."""
        report = PublishReport()
        async with read_session() as session:
            events = await OutboxStore(session).fetch_pending(self.batch_size)

        report.fetched = len(events)
        for event in events:
            # Isolate failures: one bad event must not stop the rest of the batch
            try:
                await self._publish_one(event, report)
            except Exception:
                report.skipped += 1
                log.exception(f"Recording the outcome of event {event.event_type} ({event.id}) failed; it stays PENDING.")

        return report

    async def _publish_one(self, event: OutboxEvent, report: PublishReport):
        try:
            await asyncio.wait_for(self.broker.publish(event.to_message()), timeout=self.publish_timeout)
        except Exception as e:
            status = await self._record_failure(event, e)
            if status == OutboxStatus.FAILED:
                report.failed += 1
            elif status == OutboxStatus.PENDING:
                report.retried += 1
            return

        async with unit_of_work() as session:
            await OutboxStore(session).mark_processed(event.id)
        report.processed += 1
        log.info(f"Event {event.event_type} ({event.id}) published.")

    async def _record_failure(self, event: OutboxEvent, exc: Exception) -> Optional[OutboxStatus]:
        if isinstance(exc, asyncio.TimeoutError):
            error = f"publish timed out after {self.publish_timeout}s"
        else:
            error = f"{type(exc).__name__}: {exc}"

        async with unit_of_work() as session:
            status = await OutboxStore(session).record_failure(event.id, error, self.max_retries)

        if status == OutboxStatus.FAILED:
            log.error(f"Event {event.event_type} ({event.id}) marked FAILED after {self.max_retries} attempts: {error}")
        else:
            log.warning(f"Publishing event {event.event_type} ({event.id}) failed, will retry: {error}")
        return status

    async def run_forever(self):
        """Main loop for the publisher. Returns once stop() is requested."""
        log.info("--- Outbox Publisher Started ---")
        while not self._stopping.is_set():
            try:
                report = await self.publish_pending()
                if report.fetched:
                    log.debug(f"Publisher cycle: {report}")
            except Exception:
                log.exception("Publisher cycle failed; retrying after the poll interval.")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        log.info("--- Outbox Publisher Stopped ---")

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stopping.clear()
        self._task = asyncio.create_task(self.run_forever(), name="outbox-publisher")
        return self._task

    async def stop(self):
        """Lets the current cycle finish, then waits for the loop to exit."""
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None


async def start_outbox_publisher():
    """Runs the publisher as a standalone worker process."""
    await init_db()
    broker = build_broker(BROKER_URL)
    publisher = OutboxPublisher(broker)
    try:
        await publisher.run_forever()
    finally:
        await broker.close()
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    try:
        asyncio.run(start_outbox_publisher())
    except KeyboardInterrupt:
        log.info("Publisher service stopped.")

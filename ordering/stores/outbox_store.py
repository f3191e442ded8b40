from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ordering.core.db import utcnow
from ordering.models.outbox import OutboxEvent, OutboxStatus


class OutboxStore:
    """
    Pending and processed domain events, ordered by creation time.

    Status updates are guarded on the current status, so repeating one (for
    example two publisher replicas marking the same event) is a no-op.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, event: OutboxEvent) -> OutboxEvent:
        self.session.add(event)
        await self.session.flush()
        return event

    async def get(self, event_id: UUID) -> Optional[OutboxEvent]:
        return await self.session.get(OutboxEvent, event_id)

    async def fetch_pending(self, limit: int, older_than: Optional[datetime] = None) -> List[OutboxEvent]:
        """Up to `limit` PENDING events created at or before `older_than`, oldest first."""
        older_than = older_than or utcnow()
        result = await self.session.execute(
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.PENDING, OutboxEvent.created_at <= older_than)
            .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_processed(self, event_id: UUID) -> bool:
        result = await self.session.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id, OutboxEvent.status == OutboxStatus.PENDING)
            .values(status=OutboxStatus.PROCESSED, processed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def mark_failed(self, event_id: UUID, error: str) -> bool:
        """Moves a PENDING event straight to FAILED."""
        result = await self.session.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id, OutboxEvent.status == OutboxStatus.PENDING)
            .values(
                status=OutboxStatus.FAILED,
                error_message=error,
                retry_count=OutboxEvent.retry_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def record_failure(self, event_id: UUID, error: str, max_retries: int) -> Optional[OutboxStatus]:
        """
        Counts one failed publish attempt. The event stays PENDING until
        `retry_count` reaches `max_retries`, then becomes FAILED.

        Returns the resulting status, or None if the event was no longer PENDING.
        """
        event = await self.session.get(OutboxEvent, event_id, with_for_update=True)
        if event is None or event.status != OutboxStatus.PENDING:
            return None

        event.retry_count += 1
        event.error_message = error
        if not event.can_retry(max_retries):
            event.status = OutboxStatus.FAILED
        await self.session.flush()
        return event.status

    async def requeue(self, event_id: UUID) -> Optional[OutboxEvent]:
        """Operator re-drive: puts a FAILED event back to PENDING with a fresh retry budget."""
        event = await self.session.get(OutboxEvent, event_id, with_for_update=True)
        if event is None or event.status != OutboxStatus.FAILED:
            return None

        event.status = OutboxStatus.PENDING
        event.retry_count = 0
        event.error_message = None
        await self.session.flush()
        return event

    async def find_by_aggregate(self, aggregate_type: str, aggregate_id: str) -> List[OutboxEvent]:
        result = await self.session.execute(
            select(OutboxEvent)
            .where(OutboxEvent.aggregate_type == aggregate_type, OutboxEvent.aggregate_id == aggregate_id)
            .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
        )
        return list(result.scalars().all())

    async def list_by_status(self, status: OutboxStatus, limit: int = 100) -> List[OutboxEvent]:
        result = await self.session.execute(
            select(OutboxEvent)
            .where(OutboxEvent.status == status)
            .order_by(OutboxEvent.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_status(self) -> Dict[str, int]:
        result = await self.session.execute(
            select(OutboxEvent.status, func.count()).group_by(OutboxEvent.status)
        )
        counts = {status.value: 0 for status in OutboxStatus}
        for status, count in result.all():
            counts[OutboxStatus(status).value] = count
        return counts

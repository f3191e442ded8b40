import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ordering.models.outbox import OutboxEvent, OutboxStatus


class OutboxEventResponse(BaseModel):
    """Operator view of one outbox row."""
    id: uuid.UUID
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: OutboxStatus
    retry_count: int
    error_message: Optional[str] = None
    payload: Dict[str, Any]
    created_at: datetime
    processed_at: Optional[datetime] = None

    @classmethod
    def from_event(cls, event: OutboxEvent) -> "OutboxEventResponse":
        return cls(
            id=event.id,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id,
            event_type=event.event_type,
            status=event.status,
            retry_count=event.retry_count,
            error_message=event.error_message,
            payload=event.payload,
            created_at=event.created_at,
            processed_at=event.processed_at,
        )

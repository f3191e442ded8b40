import logging
from fastapi import APIRouter, HTTPException, Query, status
from ordering.core.db import read_session, unit_of_work
from ordering.models.outbox import OutboxStatus
from ordering.schemas.outbox import OutboxEventResponse
from ordering.schemas.response import SuccessResponse
from ordering.stores.outbox_store import OutboxStore
from uuid import UUID

router = APIRouter()
log = logging.getLogger("ordering.api")


@router.get("/events", response_model=SuccessResponse)
async def list_events_endpoint(
    event_status: OutboxStatus = Query(OutboxStatus.FAILED, alias="status"),
    limit: int = Query(100, ge=1, le=500),
):
    """Lists outbox events by status. FAILED events need an operator."""
    async with read_session() as session:
        events = await OutboxStore(session).list_by_status(event_status, limit=limit)
    data = [OutboxEventResponse.from_event(event).model_dump(mode="json") for event in events]
    return SuccessResponse(data=data)


@router.get("/stats", response_model=SuccessResponse)
async def outbox_stats_endpoint():
    """Number of outbox events per status."""
    async with read_session() as session:
        counts = await OutboxStore(session).count_by_status()
    return SuccessResponse(data=counts)


@router.post("/events/{event_id}/requeue", response_model=SuccessResponse)
async def requeue_event_endpoint(event_id: UUID):
    """Puts a FAILED event back to PENDING so the publisher retries it."""
    async with unit_of_work() as session:
        event = await OutboxStore(session).requeue(event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No FAILED outbox event with ID {event_id}.",
        )
    log.info(f"Outbox event {event_id} requeued by operator.")
    return SuccessResponse(data=OutboxEventResponse.from_event(event).model_dump(mode="json"))

"""
Webhook API routes.

Producer-facing delivery logs, replay and test deliveries, plus operator
triggers for a delivery pass and a backfill run.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.config import settings
from hookrelay.database import AsyncSessionLocal, get_db
from hookrelay.dependencies.auth import get_current_producer, require_admin, TokenPayload
from hookrelay.exceptions import ReplayError
from hookrelay.models.endpoint import WebhookEndpoint
from hookrelay.models.job import DeliveryJob
from hookrelay.models.webhook import DeliveryLogEntry
from hookrelay.services.delivery_log import DeliveryLogStore
from hookrelay.services.delivery_worker import run_delivery_pass
from hookrelay.services.endpoint_registry import EndpointRegistry
from hookrelay.services.job_store import DeliveryJobStore
from hookrelay.services.mock_payloads import EVENT_TYPES, TEST_EVENT_TYPE
from hookrelay.services.reconciler import Reconciler
from hookrelay.services.replay_service import ReplayService
from hookrelay.worker import trigger_delivery_pass


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for routes that run worker passes inline."""
    return AsyncSessionLocal


class ReplayRequest(BaseModel):
    """Request model for replaying a logged delivery."""
    event_log_id: str


class TestDeliveryRequest(BaseModel):
    """Request model for a synthetic test delivery."""
    event_type: str = TEST_EVENT_TYPE


class DeliveryLogResponse(BaseModel):
    """Response model for a delivery log entry."""
    id: str
    endpoint_id: str
    job_id: str | None = None
    event_type: str
    status: str
    attempt_number: int
    response_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    payload: dict
    created_at: str


class DeliveryJobResponse(BaseModel):
    """Response model for a delivery job."""
    id: str
    webhook_endpoint_id: str
    transaction_event_id: str | None = None
    event_type: str
    status: str
    attempts: int
    max_attempts: int
    next_attempt_at: str
    is_replay: bool
    last_error: str | None = None
    created_at: str


def log_to_response(entry: DeliveryLogEntry) -> DeliveryLogResponse:
    """Convert DeliveryLogEntry model to DeliveryLogResponse."""
    return DeliveryLogResponse(
        id=entry.id,
        endpoint_id=entry.endpoint_id,
        job_id=entry.job_id,
        event_type=entry.event_type,
        status=entry.status,
        attempt_number=entry.attempt_number,
        response_status=entry.response_status,
        response_body=entry.response_body,
        error_message=entry.error_message,
        payload=entry.payload,
        created_at=entry.created_at.isoformat(),
    )


def job_to_response(job: DeliveryJob) -> DeliveryJobResponse:
    """Convert DeliveryJob model to DeliveryJobResponse."""
    return DeliveryJobResponse(
        id=job.id,
        webhook_endpoint_id=job.webhook_endpoint_id,
        transaction_event_id=job.transaction_event_id,
        event_type=job.event_type,
        status=job.status.value,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        next_attempt_at=job.next_attempt_at.isoformat(),
        is_replay=job.is_replay,
        last_error=job.last_error,
        created_at=job.created_at.isoformat(),
    )


async def get_owned_endpoint(
    endpoint_id: str,
    producer: TokenPayload,
    db: AsyncSession,
) -> WebhookEndpoint:
    """Get an endpoint owned by the producer, or raise 404."""
    endpoint = await EndpointRegistry(db).get_endpoint_for_producer(endpoint_id, producer.sub)
    if not endpoint:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found or not authorized"
        )
    return endpoint


@router.get("/{endpoint_id}/logs", response_model=list[DeliveryLogResponse])
async def list_delivery_logs(
    endpoint_id: str,
    producer: TokenPayload = Depends(get_current_producer),
    db: AsyncSession = Depends(get_db)
):
    """List the newest 100 delivery attempts for an endpoint."""
    endpoint = await get_owned_endpoint(endpoint_id, producer, db)
    entries = await DeliveryLogStore(db).list_for_endpoint(endpoint.id, limit=100)
    return [log_to_response(entry) for entry in entries]


@router.get("/{endpoint_id}/jobs", response_model=list[DeliveryJobResponse])
async def list_delivery_jobs(
    endpoint_id: str,
    producer: TokenPayload = Depends(get_current_producer),
    db: AsyncSession = Depends(get_db)
):
    """List recent delivery jobs for an endpoint."""
    endpoint = await get_owned_endpoint(endpoint_id, producer, db)
    jobs = await DeliveryJobStore(db).list_jobs_for_endpoint(endpoint.id)
    return [job_to_response(job) for job in jobs]


@router.post("/{endpoint_id}/replay", response_model=dict)
async def replay_delivery(
    endpoint_id: str,
    request: ReplayRequest,
    producer: TokenPayload = Depends(get_current_producer),
    db: AsyncSession = Depends(get_db)
):
    """
    Replay a logged delivery to its endpoint.

    Creates a single-shot job and asks the worker for a pass.
    """
    try:
        job = await ReplayService(db, settings).replay_log_entry(
            producer.sub, endpoint_id, request.event_log_id
        )
    except ReplayError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    triggered = await trigger_delivery_pass()

    return {
        "message": "Webhook replay initiated successfully",
        "job_id": job.id,
        "event_type": job.event_type,
        "delivery_triggered": triggered,
    }


@router.post("/{endpoint_id}/test", response_model=dict)
async def send_test_delivery(
    endpoint_id: str,
    request: TestDeliveryRequest,
    producer: TokenPayload = Depends(get_current_producer),
    db: AsyncSession = Depends(get_db)
):
    """Queue a mock delivery of an event type to an endpoint."""
    if request.event_type != TEST_EVENT_TYPE and request.event_type not in EVENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown event type: {request.event_type}"
        )

    try:
        job = await ReplayService(db, settings).send_test_event(
            producer.sub, endpoint_id, request.event_type
        )
    except ReplayError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    triggered = await trigger_delivery_pass()

    return {
        "message": "Test webhook queued",
        "job_id": job.id,
        "event_type": job.event_type,
        "delivery_triggered": triggered,
    }


@router.post("/deliveries/process", response_model=dict)
async def process_deliveries(
    admin: TokenPayload = Depends(require_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
):
    """Run one delivery pass over every producer's due jobs and return its counters."""
    result = await run_delivery_pass(session_factory, settings)
    return {
        "message": "Webhook delivery processing completed",
        **result.to_dict(),
    }


@router.post("/backfill", response_model=dict)
async def backfill_deliveries(
    admin: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create jobs for recent events that never produced one."""
    report = await Reconciler(db, settings).backfill()
    return report.to_dict()

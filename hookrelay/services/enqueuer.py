"""
Job producer.

Turns a transaction event into one delivery job per matching active endpoint.
Creation is idempotent per (endpoint, event) pair while a job is still open.
"""
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.config import Settings, settings as default_settings
from hookrelay.logging_config import get_logger
from hookrelay.models.base import utcnow
from hookrelay.models.endpoint import WebhookEndpoint
from hookrelay.models.event import TransactionEvent
from hookrelay.models.job import DeliveryJob
from hookrelay.routes.metrics import track_job_enqueued
from hookrelay.services.endpoint_registry import EndpointRegistry
from hookrelay.services.job_store import DeliveryJobStore


log = get_logger(component="job_producer")


def build_event_payload(event: TransactionEvent) -> dict:
    """Build the delivery document for an event. Stored on the job as-is."""
    return {
        "event_id": event.id,
        "event_type": event.event_type,
        "sale_id": event.sale_id,
        "created_at": event.created_at.isoformat() if event.created_at else None,
        "data": dict(event.event_metadata or {}),
    }


class JobProducer:
    """Creates delivery jobs for transaction events."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or default_settings
        self.registry = EndpointRegistry(db)
        self.jobs = DeliveryJobStore(db)

    async def enqueue_event(self, event: TransactionEvent) -> list[DeliveryJob]:
        """
        Create one job per active endpoint of the event's producer.

        Calling this again for the same event while its jobs are open is a
        no-op.

        Args:
            event: Transaction event to fan out

        Returns:
            Jobs created by this call (already-open pairs are skipped)
        """
        endpoints = await self.registry.list_active_endpoints(
            event.event_type,
            product_id=event.product_id,
            producer_id=event.producer_id,
        )

        # Plain values only from here: a rollback expires loaded instances
        event_id = event.id
        event_type = event.event_type
        payload = build_event_payload(event)
        endpoint_ids = [endpoint.id for endpoint in endpoints]

        created = []
        for endpoint_id in endpoint_ids:
            job = await self.create_job(endpoint_id, event_id, event_type, payload)
            if job is not None:
                created.append(job)

        # A conflict rollback expires jobs created earlier in the loop
        for job in created:
            if inspect(job).expired_attributes:
                await self.db.refresh(job)

        log.info(
            "event_enqueued",
            event_id=event_id,
            event_type=event_type,
            endpoints=len(endpoint_ids),
            jobs_created=len(created),
        )
        return created

    async def create_job_for_endpoint(
        self,
        endpoint: WebhookEndpoint,
        event: TransactionEvent,
        source: str = "event",
    ) -> DeliveryJob | None:
        """Create the delivery job for one (endpoint, event) pair."""
        return await self.create_job(
            endpoint.id,
            event.id,
            event.event_type,
            build_event_payload(event),
            source=source,
        )

    async def create_job(
        self,
        endpoint_id: str,
        event_id: str,
        event_type: str,
        payload: dict,
        source: str = "event",
    ) -> DeliveryJob | None:
        """
        Create an organic delivery job unless one is already open for the pair.

        Args:
            endpoint_id: Target endpoint
            event_id: Source transaction event
            event_type: Event type name
            payload: Document built by build_event_payload
            source: Metrics label ("event" or "backfill")

        Returns:
            The new job, or None if an open job already exists for the pair
        """
        existing = await self.jobs.find_open_job(endpoint_id, event_id)
        if existing is not None:
            log.debug("job_already_open", endpoint_id=endpoint_id, event_id=event_id, job_id=existing.id)
            return None

        try:
            job = await self.jobs.create_job(
                webhook_endpoint_id=endpoint_id,
                transaction_event_id=event_id,
                event_type=event_type,
                payload=payload,
                max_attempts=self.settings.WEBHOOK_MAX_ATTEMPTS,
                now=utcnow(),
            )
        except IntegrityError:
            # Another producer inserted the open job first
            await self.db.rollback()
            log.info("job_insert_conflict", endpoint_id=endpoint_id, event_id=event_id)
            return None

        track_job_enqueued(source)
        log.info(
            "job_created",
            job_id=job.id,
            endpoint_id=endpoint_id,
            event_id=event_id,
            event_type=event_type,
            source=source,
        )
        return job

"""
Replay Service

Manual re-delivery of a logged event and synthetic test deliveries. Both only
create a single-shot job; delivery itself is left to the worker.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.config import Settings, settings as default_settings
from hookrelay.exceptions import EndpointAccessError, LogEntryNotFoundError
from hookrelay.logging_config import get_logger
from hookrelay.models.base import utcnow
from hookrelay.models.endpoint import WebhookEndpoint
from hookrelay.models.job import DeliveryJob
from hookrelay.routes.metrics import track_job_enqueued
from hookrelay.services.delivery_log import DeliveryLogStore
from hookrelay.services.endpoint_registry import EndpointRegistry
from hookrelay.services.event_log import EventLog
from hookrelay.services.job_store import DeliveryJobStore
from hookrelay.services.mock_payloads import build_test_payload


log = get_logger(component="replay")


class ReplayService:
    """Creates replay and test delivery jobs on behalf of a producer."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or default_settings
        self.registry = EndpointRegistry(db)
        self.logs = DeliveryLogStore(db)
        self.events = EventLog(db)
        self.jobs = DeliveryJobStore(db)

    async def replay_log_entry(self, producer_id: str, endpoint_id: str, log_entry_id: str) -> DeliveryJob:
        """
        Re-deliver the payload recorded in a delivery log entry.

        Args:
            producer_id: Producer making the request
            endpoint_id: Endpoint that must own the log entry
            log_entry_id: Log entry to replay

        Returns:
            New single-shot replay job

        Raises:
            EndpointAccessError: endpoint missing or owned by another producer
            LogEntryNotFoundError: entry missing or recorded for another endpoint
        """
        endpoint = await self._get_owned_endpoint(producer_id, endpoint_id)

        entry = await self.logs.get_entry_for_endpoint(log_entry_id, endpoint.id)
        if entry is None:
            raise LogEntryNotFoundError(log_entry_id)

        transaction_event_id = await self._find_source_event_id(entry.event_type, entry.payload)

        job = await self._create_replay_job(
            endpoint,
            event_type=entry.event_type,
            payload=entry.payload,
            transaction_event_id=transaction_event_id,
            source="replay",
        )
        log.info(
            "replay_created",
            job_id=job.id,
            endpoint_id=endpoint.id,
            log_entry_id=entry.id,
            event_type=entry.event_type,
            transaction_event_id=transaction_event_id,
        )
        return job

    async def send_test_event(self, producer_id: str, endpoint_id: str, event_type: str) -> DeliveryJob:
        """
        Queue a mock delivery of `event_type` to an endpoint.

        Raises:
            EndpointAccessError: endpoint missing or owned by another producer
        """
        endpoint = await self._get_owned_endpoint(producer_id, endpoint_id)

        job = await self._create_replay_job(
            endpoint,
            event_type=event_type,
            payload=build_test_payload(event_type),
            transaction_event_id=None,
            source="test",
        )
        log.info("test_delivery_created", job_id=job.id, endpoint_id=endpoint.id, event_type=event_type)
        return job

    async def _get_owned_endpoint(self, producer_id: str, endpoint_id: str) -> WebhookEndpoint:
        endpoint = await self.registry.get_endpoint_for_producer(endpoint_id, producer_id)
        if endpoint is None:
            raise EndpointAccessError(endpoint_id)
        return endpoint

    async def _find_source_event_id(self, event_type: str, payload: dict) -> str | None:
        """Link the replay to the latest event for the same sale, when known."""
        sale_id = payload.get("sale_id") if isinstance(payload, dict) else None
        if not sale_id:
            return None
        event = await self.events.find_latest_for_sale(event_type, sale_id)
        return event.id if event else None

    async def _create_replay_job(
        self,
        endpoint: WebhookEndpoint,
        event_type: str,
        payload: dict,
        transaction_event_id: str | None,
        source: str,
    ) -> DeliveryJob:
        job = await self.jobs.create_job(
            webhook_endpoint_id=endpoint.id,
            event_type=event_type,
            payload=payload,
            max_attempts=self.settings.WEBHOOK_REPLAY_MAX_ATTEMPTS,
            transaction_event_id=transaction_event_id,
            is_replay=True,
            now=utcnow(),
        )
        track_job_enqueued(source)
        return job

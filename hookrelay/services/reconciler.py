"""
Backfill reconciler.

Finds (endpoint, event) pairs in the recent event log that never produced a
delivery job and creates the missing jobs through the job producer. Safe to
re-run: pairs that already have a job are skipped.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.config import Settings, settings as default_settings
from hookrelay.logging_config import get_logger
from hookrelay.models.base import utcnow
from hookrelay.routes.metrics import track_backfill
from hookrelay.sentry_config import capture_exception
from hookrelay.services.endpoint_registry import EndpointRegistry
from hookrelay.services.enqueuer import JobProducer, build_event_payload
from hookrelay.services.event_log import EventLog
from hookrelay.services.job_store import DeliveryJobStore


log = get_logger(component="reconciler")


@dataclass
class BackfillReport:
    """Summary of one backfill run."""
    since: datetime
    events_scanned: int = 0
    pairs_checked: int = 0
    jobs_created: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "since": self.since.isoformat(),
            "events_scanned": self.events_scanned,
            "pairs_checked": self.pairs_checked,
            "jobs_created": self.jobs_created,
            "errors": self.errors,
        }


class Reconciler:
    """Creates delivery jobs that the event fan-out missed."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.clock = clock
        self.events = EventLog(db)
        self.registry = EndpointRegistry(db)
        self.jobs = DeliveryJobStore(db)
        self.producer = JobProducer(db, self.settings)

    async def backfill(self, since: datetime | None = None) -> BackfillReport:
        """
        Create missing jobs for events created at or after `since`.

        Args:
            since: Window start (defaults to WEBHOOK_BACKFILL_WINDOW_HOURS ago)

        Returns:
            BackfillReport with counts and per-pair errors
        """
        if since is None:
            since = self.clock() - timedelta(hours=self.settings.WEBHOOK_BACKFILL_WINDOW_HOURS)

        report = BackfillReport(since=since)
        events = await self.events.read_events(since)
        report.events_scanned = len(events)

        # Plain values only: a rollback below expires every loaded instance
        scanned = [
            (event.id, event.event_type, event.product_id, event.producer_id, build_event_payload(event))
            for event in events
        ]

        for event_id, event_type, product_id, producer_id, payload in scanned:
            try:
                endpoints = await self.registry.list_active_endpoints(
                    event_type,
                    product_id=product_id,
                    producer_id=producer_id,
                )
                endpoint_ids = [endpoint.id for endpoint in endpoints]
            except Exception as e:
                await self._record_error(report, None, event_id, e)
                continue

            for endpoint_id in endpoint_ids:
                report.pairs_checked += 1
                try:
                    if await self.jobs.has_job_for(endpoint_id, event_id):
                        continue
                    job = await self.producer.create_job(
                        endpoint_id, event_id, event_type, payload, source="backfill"
                    )
                    if job is not None:
                        report.jobs_created += 1
                except Exception as e:
                    await self._record_error(report, endpoint_id, event_id, e)

        track_backfill(report.jobs_created, len(report.errors))
        log.info(
            "backfill_completed",
            since=since.isoformat(),
            events_scanned=report.events_scanned,
            pairs_checked=report.pairs_checked,
            jobs_created=report.jobs_created,
            errors=len(report.errors),
        )
        return report

    async def _record_error(
        self,
        report: BackfillReport,
        endpoint_id: str | None,
        event_id: str,
        error: Exception,
    ):
        """Roll back, log and report one failed gap; the run continues."""
        await self.db.rollback()
        log.error(
            "backfill_pair_failed",
            endpoint_id=endpoint_id,
            event_id=event_id,
            error=str(error),
            exc_info=True,
        )
        capture_exception(error)
        report.errors.append({
            "endpoint_id": endpoint_id,
            "event_id": event_id,
            "error": str(error),
        })

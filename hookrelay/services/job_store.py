"""
Delivery job store.

Every state change after creation is a conditional UPDATE keyed by job id, so
independent worker processes can share the table without an in-process lock.
"""
from datetime import datetime
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.models.base import utcnow
from hookrelay.models.job import DeliveryJob, DeliveryStatus, OPEN_STATUSES
from hookrelay.models.webhook import DeliveryLogEntry


class DeliveryJobStore:
    """Service for managing webhook delivery jobs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_job(
        self,
        webhook_endpoint_id: str,
        event_type: str,
        payload: dict,
        max_attempts: int,
        transaction_event_id: str | None = None,
        is_replay: bool = False,
        now: datetime | None = None,
    ) -> DeliveryJob:
        """
        Create a new job in PENDING status, due immediately.

        Args:
            webhook_endpoint_id: Target endpoint
            event_type: Event type name (e.g. "compra.aprovada")
            payload: Document to deliver, frozen from now on
            max_attempts: Total delivery attempts allowed (>= 1)
            transaction_event_id: Source event, None for test deliveries
            is_replay: Manual replay jobs skip the open-pair uniqueness rule
            now: Creation time (defaults to current UTC time)

        Returns:
            Newly created DeliveryJob

        Raises:
            sqlalchemy.exc.IntegrityError: if an open organic job already
                exists for the pair
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        now = now or utcnow()
        job = DeliveryJob(
            webhook_endpoint_id=webhook_endpoint_id,
            transaction_event_id=transaction_event_id,
            event_type=event_type,
            payload=payload,
            status=DeliveryStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts,
            next_attempt_at=now,
            is_replay=is_replay,
            created_at=now,
            updated_at=now,
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)
        return job

    async def get_job(self, job_id: str) -> DeliveryJob | None:
        """Get job by ID."""
        stmt = (
            select(DeliveryJob)
            .where(DeliveryJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_open_job(self, webhook_endpoint_id: str, transaction_event_id: str) -> DeliveryJob | None:
        """Get the pending or delivering organic job for an (endpoint, event) pair."""
        stmt = select(DeliveryJob).where(
            DeliveryJob.webhook_endpoint_id == webhook_endpoint_id,
            DeliveryJob.transaction_event_id == transaction_event_id,
            DeliveryJob.is_replay.is_(False),
            DeliveryJob.status.in_(list(OPEN_STATUSES)),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def has_job_for(self, webhook_endpoint_id: str, transaction_event_id: str) -> bool:
        """Check whether any organic job, in any status, exists for the pair."""
        stmt = select(DeliveryJob.id).where(
            DeliveryJob.webhook_endpoint_id == webhook_endpoint_id,
            DeliveryJob.transaction_event_id == transaction_event_id,
            DeliveryJob.is_replay.is_(False),
        ).limit(1)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_jobs_for_endpoint(self, webhook_endpoint_id: str, limit: int = 50) -> list[DeliveryJob]:
        """Get the most recent jobs for an endpoint."""
        stmt = (
            select(DeliveryJob)
            .where(DeliveryJob.webhook_endpoint_id == webhook_endpoint_id)
            .order_by(DeliveryJob.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def claim_job(self, job_id: str, now: datetime) -> bool:
        """
        Mark a job as DELIVERING (claim it for processing).

        The update only matches while the row is still PENDING, so at most
        one caller wins.

        Returns:
            True if this caller claimed the job
        """
        stmt = (
            update(DeliveryJob)
            .where(
                DeliveryJob.id == job_id,
                DeliveryJob.status == DeliveryStatus.PENDING,
            )
            .values(status=DeliveryStatus.DELIVERING, claimed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

    async def claim_due_jobs(self, batch_size: int, now: datetime) -> list[DeliveryJob]:
        """
        Claim up to batch_size due jobs, oldest due first.

        Args:
            batch_size: Maximum number of jobs to claim
            now: Current time; jobs with next_attempt_at <= now are due

        Returns:
            Jobs claimed by this caller, in due order
        """
        stmt = (
            select(DeliveryJob.id)
            .where(
                DeliveryJob.status == DeliveryStatus.PENDING,
                DeliveryJob.next_attempt_at <= now,
            )
            .order_by(DeliveryJob.next_attempt_at.asc(), DeliveryJob.created_at.asc())
            .limit(batch_size)
        )
        result = await self.db.execute(stmt)
        candidate_ids = list(result.scalars().all())

        claimed_ids = [job_id for job_id in candidate_ids if await self.claim_job(job_id, now)]
        if not claimed_ids:
            return []

        stmt = (
            select(DeliveryJob)
            .where(DeliveryJob.id.in_(claimed_ids))
            .order_by(DeliveryJob.next_attempt_at.asc(), DeliveryJob.created_at.asc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def release_stale_claims(self, older_than: datetime, now: datetime) -> int:
        """
        Return jobs stuck in DELIVERING since before older_than to PENDING.

        Attempts are left untouched: the interrupted attempt may or may not
        have reached the endpoint.

        Returns:
            Number of jobs released
        """
        stmt = (
            update(DeliveryJob)
            .where(
                DeliveryJob.status == DeliveryStatus.DELIVERING,
                DeliveryJob.claimed_at < older_than,
            )
            .values(
                status=DeliveryStatus.PENDING,
                claimed_at=None,
                next_attempt_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount

    async def mark_succeeded(self, job: DeliveryJob, attempts: int, now: datetime, log_entry: DeliveryLogEntry) -> bool:
        """Mark a claimed job as SUCCEEDED, recording the attempt."""
        return await self._finish_attempt(job, log_entry, {
            "status": DeliveryStatus.SUCCEEDED,
            "attempts": attempts,
            "last_attempt_at": now,
            "last_error": None,
        }, now)

    async def mark_retry(
        self,
        job: DeliveryJob,
        attempts: int,
        next_attempt_at: datetime,
        error_message: str,
        now: datetime,
        log_entry: DeliveryLogEntry,
    ) -> bool:
        """Return a claimed job to PENDING, due at next_attempt_at."""
        return await self._finish_attempt(job, log_entry, {
            "status": DeliveryStatus.PENDING,
            "attempts": attempts,
            "next_attempt_at": next_attempt_at,
            "last_attempt_at": now,
            "last_error": error_message,
        }, now)

    async def mark_exhausted(
        self,
        job: DeliveryJob,
        error_message: str,
        now: datetime,
        log_entry: DeliveryLogEntry,
    ) -> bool:
        """Mark a claimed job as EXHAUSTED after its last attempt."""
        return await self._finish_attempt(job, log_entry, {
            "status": DeliveryStatus.EXHAUSTED,
            "attempts": job.max_attempts,
            "last_attempt_at": now,
            "last_error": error_message,
        }, now)

    async def mark_failed(
        self,
        job: DeliveryJob,
        error_message: str,
        now: datetime,
        log_entry: DeliveryLogEntry,
    ) -> bool:
        """Mark a claimed job as FAILED (configuration error, no attempt made)."""
        return await self._finish_attempt(job, log_entry, {
            "status": DeliveryStatus.FAILED,
            "last_error": error_message,
        }, now)

    async def _finish_attempt(
        self,
        job: DeliveryJob,
        log_entry: DeliveryLogEntry,
        values: dict,
        now: datetime,
    ) -> bool:
        """
        Append the log entry and apply the outcome in one transaction.

        The outcome only applies while this claim is still current (status
        DELIVERING with the same claimed_at). The log entry is written either
        way since the attempt did happen.

        Returns:
            True if the job row was updated
        """
        self.db.add(log_entry)
        stmt = (
            update(DeliveryJob)
            .where(
                DeliveryJob.id == job.id,
                DeliveryJob.status == DeliveryStatus.DELIVERING,
                DeliveryJob.claimed_at == job.claimed_at,
            )
            .values(claimed_at=None, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

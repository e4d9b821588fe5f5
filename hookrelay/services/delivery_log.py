"""
Delivery log store.

Append-only audit trail of delivery attempts. Entries keep a payload
snapshot so they can be replayed.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.models.webhook import DeliveryLogEntry


# Stored response bodies are truncated to this many characters
RESPONSE_BODY_LIMIT = 1000


def build_log_entry(
    endpoint_id: str,
    job_id: str | None,
    event_type: str,
    payload: dict,
    status: str,
    attempt_number: int,
    response_status: int | None = None,
    response_body: str | None = None,
    error_message: str | None = None,
) -> DeliveryLogEntry:
    """Build an unsaved log entry, truncating the response body."""
    return DeliveryLogEntry(
        endpoint_id=endpoint_id,
        job_id=job_id,
        event_type=event_type,
        payload=payload,
        status=status,
        attempt_number=attempt_number,
        response_status=response_status,
        response_body=response_body[:RESPONSE_BODY_LIMIT] if response_body else None,
        error_message=error_message[:RESPONSE_BODY_LIMIT] if error_message else None,
    )


class DeliveryLogStore:
    """Service for reading and appending delivery log entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, entry: DeliveryLogEntry) -> DeliveryLogEntry:
        """Persist a log entry."""
        self.db.add(entry)
        await self.db.commit()
        await self.db.refresh(entry)
        return entry

    async def get_entry(self, entry_id: str) -> DeliveryLogEntry | None:
        """Get log entry by ID."""
        stmt = select(DeliveryLogEntry).where(DeliveryLogEntry.id == entry_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_entry_for_endpoint(self, entry_id: str, endpoint_id: str) -> DeliveryLogEntry | None:
        """Get log entry by ID, only if it was recorded for the given endpoint."""
        stmt = select(DeliveryLogEntry).where(
            DeliveryLogEntry.id == entry_id,
            DeliveryLogEntry.endpoint_id == endpoint_id
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_endpoint(self, endpoint_id: str, limit: int = 100) -> list[DeliveryLogEntry]:
        """Get the newest log entries for an endpoint."""
        stmt = (
            select(DeliveryLogEntry)
            .where(DeliveryLogEntry.endpoint_id == endpoint_id)
            .order_by(DeliveryLogEntry.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_for_job(self, job_id: str) -> list[DeliveryLogEntry]:
        """Get every attempt recorded for a job, oldest first."""
        stmt = (
            select(DeliveryLogEntry)
            .where(DeliveryLogEntry.job_id == job_id)
            .order_by(DeliveryLogEntry.created_at.asc(), DeliveryLogEntry.attempt_number.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

"""
Event log access.

The payment pipeline appends transaction events; the delivery subsystem reads
them to fan out jobs and to backfill gaps.
"""
from datetime import datetime
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.models.event import TransactionEvent


class EventLog:
    """Service for the append-only transaction event log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append_event(
        self,
        producer_id: str,
        event_type: str,
        metadata: dict | None = None,
        sale_id: str | None = None,
        product_id: str | None = None,
        created_at: datetime | None = None,
    ) -> TransactionEvent:
        """
        Record a business event.

        Args:
            producer_id: Producer that owns the sale
            event_type: Event type name (e.g. "compra.aprovada")
            metadata: Event details, copied into delivery payloads
            sale_id: Related sale, if any
            product_id: Product the event is scoped to, if any
            created_at: Override for the event time (defaults to now)

        Returns:
            Newly created TransactionEvent
        """
        event = TransactionEvent(
            producer_id=producer_id,
            event_type=event_type,
            event_metadata=metadata or {},
            sale_id=sale_id,
            product_id=product_id,
        )
        if created_at is not None:
            event.created_at = created_at
            event.updated_at = created_at
        self.db.add(event)
        await self.db.commit()
        await self.db.refresh(event)
        return event

    async def get_event(self, event_id: str) -> TransactionEvent | None:
        """Get event by ID."""
        stmt = select(TransactionEvent).where(TransactionEvent.id == event_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def read_events(
        self,
        since: datetime,
        event_type: str | None = None,
        producer_id: str | None = None,
    ) -> list[TransactionEvent]:
        """Get events created at or after `since`, oldest first."""
        stmt = select(TransactionEvent).where(TransactionEvent.created_at >= since)
        if event_type:
            stmt = stmt.where(TransactionEvent.event_type == event_type)
        if producer_id:
            stmt = stmt.where(TransactionEvent.producer_id == producer_id)
        stmt = stmt.order_by(TransactionEvent.created_at.asc())

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_latest_for_sale(self, event_type: str, sale_id: str) -> TransactionEvent | None:
        """Get the most recent event of a type for a sale."""
        stmt = (
            select(TransactionEvent)
            .where(
                TransactionEvent.event_type == event_type,
                TransactionEvent.sale_id == sale_id
            )
            .order_by(TransactionEvent.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

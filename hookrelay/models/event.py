"""
Transaction event model.

Append-only log of business events (sale state transitions) written by the
payment pipeline. Rows are immutable once written.
"""
import uuid
from sqlalchemy import String, Index
from sqlalchemy.orm import Mapped, mapped_column
from hookrelay.models.base import Base, TimestampMixin, JSONType


class TransactionEvent(Base, TimestampMixin):
    """A business occurrence, e.g. a sale being approved."""
    __tablename__ = "transaction_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    producer_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    sale_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    product_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_transaction_events_type_created", "event_type", "created_at"),
    )

    def __repr__(self):
        return f"<TransactionEvent(id={self.id}, type={self.event_type}, sale={self.sale_id})>"

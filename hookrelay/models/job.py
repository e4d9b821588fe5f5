"""
Delivery job model.

One row per "deliver this payload to this endpoint". Rows are claimed and
updated by the delivery worker through conditional updates only.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import (
    String, Text, Integer, Boolean, DateTime, ForeignKey, Index, CheckConstraint,
    Enum as SQLEnum, text,
)
from sqlalchemy.orm import Mapped, mapped_column
from hookrelay.models.base import Base, TimestampMixin, JSONType, utcnow


class DeliveryStatus(str, enum.Enum):
    """Delivery job status enum."""
    PENDING = "pending"
    DELIVERING = "delivering"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    DeliveryStatus.SUCCEEDED,
    DeliveryStatus.FAILED,
    DeliveryStatus.EXHAUSTED,
})

OPEN_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.DELIVERING})

# At most one open organic job per (endpoint, event) pair
_OPEN_ORGANIC_JOB = text("status IN ('pending', 'delivering') AND NOT is_replay")


class DeliveryJob(Base, TimestampMixin):
    """
    Delivery job for one endpoint.

    The payload is frozen at enqueue time; the worker sends it verbatim.
    """
    __tablename__ = "webhook_delivery_jobs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    webhook_endpoint_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("webhook_endpoints.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    transaction_event_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("transaction_events.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(
            DeliveryStatus,
            native_enum=False,
            create_constraint=False,
            length=20,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=DeliveryStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    is_replay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_webhook_delivery_jobs_attempts_nonnegative"),
        CheckConstraint("max_attempts >= 1", name="ck_webhook_delivery_jobs_max_attempts_positive"),
        CheckConstraint("attempts <= max_attempts", name="ck_webhook_delivery_jobs_attempts_bounded"),
        Index("ix_webhook_delivery_jobs_due", "status", "next_attempt_at"),
        Index(
            "uq_webhook_delivery_jobs_open_pair",
            "webhook_endpoint_id",
            "transaction_event_id",
            unique=True,
            postgresql_where=_OPEN_ORGANIC_JOB,
            sqlite_where=_OPEN_ORGANIC_JOB,
        ),
    )

    def __repr__(self):
        return (
            f"<DeliveryJob(id={self.id}, endpoint={self.webhook_endpoint_id}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_attempts})>"
        )

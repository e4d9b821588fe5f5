"""
Webhook Delivery Log Model

Append-only audit trail, one row per delivery attempt.
"""
import uuid
from sqlalchemy import Column, String, Integer, DateTime, Text, Index
from hookrelay.models.base import Base, JSONType, utcnow


class LogStatus:
    """Outcome recorded for a single attempt."""
    SUCCESS = "success"
    FAILED = "failed"  # endpoint answered with a non-2xx status
    ERROR = "error"    # transport error or pre-flight configuration error


class DeliveryLogEntry(Base):
    """Webhook delivery attempt record."""
    __tablename__ = "webhook_event_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    endpoint_id = Column(String(36), nullable=False, index=True)
    job_id = Column(String(36), nullable=True, index=True)
    event_type = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False)  # success, failed, error
    payload = Column(JSONType, nullable=False)
    attempt_number = Column(Integer, nullable=False, default=0)
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_webhook_event_logs_endpoint_created", "endpoint_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<DeliveryLogEntry(id={self.id}, job={self.job_id}, "
            f"status={self.status}, response_status={self.response_status})>"
        )

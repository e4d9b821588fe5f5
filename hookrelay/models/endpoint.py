"""
Webhook endpoint model.

Producer-registered HTTP destinations. Owned by the endpoint registry; the
delivery subsystem only reads these rows.
"""
import uuid
from sqlalchemy import String, Text, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column
from hookrelay.models.base import Base, TimestampMixin, JSONType


# Subscribes an endpoint to every event type
WILDCARD_EVENT = "*"


class WebhookEndpoint(Base, TimestampMixin):
    """
    Webhook endpoint registered by a producer.

    The secret is only ever read by the signer.
    """
    __tablename__ = "webhook_endpoints"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    producer_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    url: Mapped[str] = mapped_column(Text, nullable=False)
    secret: Mapped[str] = mapped_column(String(255), nullable=False)
    event_types: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    product_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_webhook_endpoints_producer_active", "producer_id", "is_active"),
    )

    def subscribes_to(self, event_type: str) -> bool:
        """Check whether this endpoint listens for the given event type."""
        event_types = self.event_types or []
        return WILDCARD_EVENT in event_types or event_type in event_types

    def matches_product(self, product_id: str | None) -> bool:
        """Endpoints without a product receive events for every product."""
        return self.product_id is None or product_id is None or self.product_id == product_id

    def __repr__(self):
        # Never include the secret
        return f"<WebhookEndpoint(id={self.id}, producer={self.producer_id}, url={self.url})>"

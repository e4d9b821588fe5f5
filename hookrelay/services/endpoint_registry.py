"""
Endpoint registry reads.

Endpoint CRUD lives elsewhere; delivery only needs to look endpoints up.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.models.endpoint import WebhookEndpoint


class EndpointRegistry:
    """Read-only access to producer webhook endpoints."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active_endpoints(
        self,
        event_type: str,
        product_id: str | None = None,
        producer_id: str | None = None,
    ) -> list[WebhookEndpoint]:
        """
        Get active endpoints subscribed to an event type.

        Args:
            event_type: Event type name, matched against event_types or "*"
            product_id: When set, only endpoints for this product or for all
                products match
            producer_id: When set, only this producer's endpoints match

        Returns:
            Matching endpoints, oldest first
        """
        stmt = select(WebhookEndpoint).where(WebhookEndpoint.is_active.is_(True))
        if producer_id:
            stmt = stmt.where(WebhookEndpoint.producer_id == producer_id)
        stmt = stmt.order_by(WebhookEndpoint.created_at.asc())

        result = await self.db.execute(stmt)
        endpoints = result.scalars().all()

        # event_types is a JSON list, filtered here to stay portable across backends
        return [
            endpoint for endpoint in endpoints
            if endpoint.subscribes_to(event_type) and endpoint.matches_product(product_id)
        ]

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        """Get endpoint by ID, active or not."""
        stmt = select(WebhookEndpoint).where(WebhookEndpoint.id == endpoint_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_endpoint_for_producer(self, endpoint_id: str, producer_id: str) -> WebhookEndpoint | None:
        """Get endpoint by ID within a producer's account."""
        stmt = select(WebhookEndpoint).where(
            WebhookEndpoint.id == endpoint_id,
            WebhookEndpoint.producer_id == producer_id
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

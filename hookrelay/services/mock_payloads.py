"""
Mock payloads for test deliveries.

Every event type gets the same envelope; a few types override fields so the
receiver sees a realistic document.
"""
import uuid
from datetime import datetime

from hookrelay.models.base import utcnow


TEST_EVENT_TYPE = "webhook.test"

EVENT_TYPES = [
    "boleto.gerado",
    "pix.gerado",
    "carrinho.abandonado",
    "compra.recusada",
    "compra.aprovada",
    "reembolso",
    "chargeback",
    "assinatura.cancelada",
    "assinatura.atrasada",
    "assinatura.renovada",
]


def build_test_payload(event_type: str, now: datetime | None = None) -> dict:
    """
    Build a mock delivery document for an event type.

    The shape is fixed per event type; identifiers and timestamps are fresh
    on every call. The body carries "test": true.
    """
    now = now or utcnow()
    timestamp = now.isoformat()

    data = {
        "order_id": str(uuid.uuid4()),
        "order_status": "paid",
        "payment_method": "credit_card",
        "installments": 1,
        "created_at": timestamp,
        "approved_date": timestamp,
        "webhook_event_type": event_type,
        "Product": {
            "product_id": str(uuid.uuid4()),
            "product_name": "Produto de Exemplo (Teste)",
        },
        "Customer": {
            "full_name": "João da Silva (Teste)",
            "email": "cliente+teste@exemplo.com",
            "mobile": "+5511999998888",
        },
        "Commissions": {
            "charge_amount": 9990,
            "product_base_price": 9990,
            "platform_fee": 990,
            "settlement_amount": 9000,
            "currency": "BRL",
            "my_commission": 9000,
        },
        "Subscription": None,
    }

    if event_type == "assinatura.cancelada":
        data["order_status"] = "canceled"
        data["Subscription"] = {
            "id": str(uuid.uuid4()),
            "status": "canceled",
            "plan": {
                "name": "Plano Mensal de Exemplo",
                "frequency": "monthly",
            },
            "canceled_at": timestamp,
        }
    elif event_type != "compra.aprovada":
        data["Customer"]["full_name"] = f"Evento de Teste: {event_type}"

    return {
        "event_id": f"evt_{uuid.uuid4()}",
        "event_type": event_type,
        "created_at": timestamp,
        "test": True,
        "data": data,
    }

"""Tests for the webhook management API."""
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import OTHER_PRODUCER_ID, PRODUCER_ID

from hookrelay.database import get_db
from hookrelay.main import app
from hookrelay.models.webhook import LogStatus
from hookrelay.routes import webhooks as webhook_routes
from hookrelay.services.delivery_log import DeliveryLogStore, build_log_entry
from hookrelay.services.jwt_service import JWTService


def auth(producer_id=PRODUCER_ID, role="producer"):
    token = JWTService().create_token(producer_id, role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def trigger(monkeypatch):
    mock = AsyncMock(return_value=True)
    monkeypatch.setattr(webhook_routes, "trigger_delivery_pass", mock)
    return mock


@pytest.fixture
async def client(session_factory, trigger):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[webhook_routes.get_session_factory] = lambda: session_factory
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def add_log_entry(db, endpoint_id, attempt_number=1, status=LogStatus.FAILED):
    entry = build_log_entry(
        endpoint_id=endpoint_id,
        job_id=None,
        event_type="compra.aprovada",
        payload={"event_type": "compra.aprovada", "sale_id": "sale-1", "data": {}},
        status=status,
        attempt_number=attempt_number,
        response_status=500,
        response_body="receiver exploded",
    )
    return await DeliveryLogStore(db).append(entry)


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_invalid_token_is_rejected(client, make_endpoint):
    endpoint = await make_endpoint()
    response = await client.get(
        f"/api/webhooks/{endpoint.id}/logs",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == 401


async def test_list_logs(client, db, make_endpoint):
    endpoint = await make_endpoint()
    await add_log_entry(db, endpoint.id, attempt_number=1)
    await add_log_entry(db, endpoint.id, attempt_number=2)

    response = await client.get(f"/api/webhooks/{endpoint.id}/logs", headers=auth())

    assert response.status_code == 200
    body = response.json()
    assert [entry["attempt_number"] for entry in body] == [2, 1]
    assert body[0]["status"] == "failed"
    assert body[0]["response_status"] == 500


async def test_logs_of_other_producer_are_hidden(client, make_endpoint):
    endpoint = await make_endpoint(producer_id=OTHER_PRODUCER_ID)

    response = await client.get(f"/api/webhooks/{endpoint.id}/logs", headers=auth())

    assert response.status_code == 404


async def test_replay_creates_job_and_triggers_pass(client, db, trigger, make_endpoint):
    endpoint = await make_endpoint()
    entry = await add_log_entry(db, endpoint.id)

    response = await client.post(
        f"/api/webhooks/{endpoint.id}/replay",
        json={"event_log_id": entry.id},
        headers=auth(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["event_type"] == "compra.aprovada"
    assert body["delivery_triggered"] is True
    trigger.assert_awaited_once()

    jobs = (await client.get(f"/api/webhooks/{endpoint.id}/jobs", headers=auth())).json()
    assert [job["id"] for job in jobs] == [body["job_id"]]
    assert jobs[0]["is_replay"] is True
    assert jobs[0]["max_attempts"] == 1
    assert jobs[0]["status"] == "pending"


async def test_replay_unknown_entry_is_404(client, trigger, make_endpoint):
    endpoint = await make_endpoint()

    response = await client.post(
        f"/api/webhooks/{endpoint.id}/replay",
        json={"event_log_id": "missing"},
        headers=auth(),
    )

    assert response.status_code == 404
    trigger.assert_not_awaited()


async def test_send_test_delivery(client, make_endpoint):
    endpoint = await make_endpoint()

    response = await client.post(
        f"/api/webhooks/{endpoint.id}/test",
        json={"event_type": "pix.gerado"},
        headers=auth(),
    )

    assert response.status_code == 200
    assert response.json()["event_type"] == "pix.gerado"


async def test_send_test_delivery_rejects_unknown_type(client, make_endpoint):
    endpoint = await make_endpoint()

    response = await client.post(
        f"/api/webhooks/{endpoint.id}/test",
        json={"event_type": "nao.existe"},
        headers=auth(),
    )

    assert response.status_code == 400


async def test_process_deliveries_requires_admin(client):
    response = await client.post("/api/webhooks/deliveries/process", headers=auth())
    assert response.status_code == 403


async def test_process_deliveries_with_nothing_due(client):
    response = await client.post("/api/webhooks/deliveries/process", headers=auth(role="admin"))

    assert response.status_code == 200
    assert response.json()["claimed"] == 0


async def test_backfill_requires_admin(client):
    response = await client.post("/api/webhooks/backfill", headers=auth())
    assert response.status_code == 403


async def test_backfill_as_admin(client, make_endpoint, make_event):
    await make_endpoint()
    await make_event()

    response = await client.post("/api/webhooks/backfill", headers=auth(role="admin"))

    assert response.status_code == 200
    body = response.json()
    assert body["jobs_created"] == 1
    assert body["errors"] == []


async def test_metrics_exposes_delivery_counters(client):
    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "webhook_jobs_enqueued_total" in response.text

"""Tests for the job producer (event fan-out)."""
from datetime import timedelta

from conftest import OTHER_PRODUCER_ID

from hookrelay.models.base import utcnow
from hookrelay.models.job import DeliveryStatus
from hookrelay.services.enqueuer import JobProducer, build_event_payload
from hookrelay.services.job_store import DeliveryJobStore


async def test_payload_carries_event_fields(make_event):
    event = await make_event(metadata={"amount": 100}, sale_id="sale-9")

    payload = build_event_payload(event)

    assert payload == {
        "event_id": event.id,
        "event_type": "compra.aprovada",
        "sale_id": "sale-9",
        "created_at": event.created_at.isoformat(),
        "data": {"amount": 100},
    }


async def test_one_job_per_matching_endpoint(db, test_settings, make_endpoint, make_event):
    first = await make_endpoint(event_types=["compra.aprovada"])
    wildcard = await make_endpoint(event_types=["*"])
    await make_endpoint(event_types=["reembolso"])
    await make_endpoint(is_active=False)
    await make_endpoint(producer_id=OTHER_PRODUCER_ID)
    event = await make_event()

    jobs = await JobProducer(db, test_settings).enqueue_event(event)

    assert {job.webhook_endpoint_id for job in jobs} == {first.id, wildcard.id}
    for job in jobs:
        assert job.status == DeliveryStatus.PENDING
        assert job.transaction_event_id == event.id
        assert job.max_attempts == test_settings.WEBHOOK_MAX_ATTEMPTS
        assert job.payload == build_event_payload(event)


async def test_product_scoped_endpoints(db, test_settings, make_endpoint, make_event):
    matching = await make_endpoint(product_id="product-a")
    await make_endpoint(product_id="product-b")
    unscoped = await make_endpoint()
    event = await make_event(product_id="product-a")

    jobs = await JobProducer(db, test_settings).enqueue_event(event)

    assert {job.webhook_endpoint_id for job in jobs} == {matching.id, unscoped.id}


async def test_enqueue_is_idempotent_while_open(db, test_settings, make_endpoint, make_event):
    endpoint = await make_endpoint()
    event = await make_event()
    producer = JobProducer(db, test_settings)

    first = await producer.enqueue_event(event)
    second = await producer.enqueue_event(event)

    assert len(first) == 1
    assert second == []
    assert len(await DeliveryJobStore(db).list_jobs_for_endpoint(endpoint.id)) == 1


async def test_no_endpoints_creates_nothing(db, test_settings, make_event):
    event = await make_event(event_type="chargeback")

    assert await JobProducer(db, test_settings).enqueue_event(event) == []


async def test_insert_conflict_is_a_noop(db, test_settings, make_endpoint, make_event, monkeypatch):
    endpoint = await make_endpoint()
    event = await make_event()
    producer = JobProducer(db, test_settings)
    await producer.enqueue_event(event)
    endpoint_id, event_id, payload = endpoint.id, event.id, build_event_payload(event)

    # Simulate a racing producer that passed the lookup before the insert
    async def no_open_job(*args, **kwargs):
        return None

    monkeypatch.setattr(producer.jobs, "find_open_job", no_open_job)

    job = await producer.create_job(endpoint_id, event_id, "compra.aprovada", payload)

    assert job is None
    assert len(await DeliveryJobStore(db).list_jobs_for_endpoint(endpoint_id)) == 1


async def test_conflict_mid_fanout_keeps_earlier_jobs_loaded(db, test_settings, make_endpoint, make_event, monkeypatch):
    first = await make_endpoint(name="First")
    second = await make_endpoint(name="Second", created_at=utcnow() + timedelta(seconds=1))
    event = await make_event()
    first_id, second_id = first.id, second.id
    await DeliveryJobStore(db).create_job(
        webhook_endpoint_id=second_id,
        event_type="compra.aprovada",
        payload=build_event_payload(event),
        max_attempts=3,
        transaction_event_id=event.id,
    )
    producer = JobProducer(db, test_settings)

    # The second insert hits the open-pair index and rolls the session back
    async def no_open_job(*args, **kwargs):
        return None

    monkeypatch.setattr(producer.jobs, "find_open_job", no_open_job)

    jobs = await producer.enqueue_event(event)

    assert len(jobs) == 1
    assert jobs[0].webhook_endpoint_id == first_id
    assert jobs[0].status == DeliveryStatus.PENDING
    assert len(await DeliveryJobStore(db).list_jobs_for_endpoint(second_id)) == 1

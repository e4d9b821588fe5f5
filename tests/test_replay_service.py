"""Tests for manual replays and test deliveries."""
import pytest
from conftest import OTHER_PRODUCER_ID, PRODUCER_ID, Clock, Receiver

from hookrelay.exceptions import EndpointAccessError, LogEntryNotFoundError
from hookrelay.models.job import DeliveryStatus
from hookrelay.models.webhook import LogStatus
from hookrelay.services.delivery_log import DeliveryLogStore, build_log_entry
from hookrelay.services.delivery_worker import DeliveryWorker
from hookrelay.services.enqueuer import JobProducer, build_event_payload
from hookrelay.services.job_store import DeliveryJobStore
from hookrelay.services.replay_service import ReplayService
from hookrelay.services.signer import serialize_payload, sign


async def log_failed_delivery(db, endpoint, event):
    entry = build_log_entry(
        endpoint_id=endpoint.id,
        job_id=None,
        event_type=event.event_type,
        payload=build_event_payload(event),
        status=LogStatus.FAILED,
        attempt_number=3,
        response_status=500,
        response_body="receiver exploded",
        error_message="HTTP 500: receiver exploded",
    )
    return await DeliveryLogStore(db).append(entry)


class TestReplayLogEntry:
    async def test_creates_single_shot_replay_job(self, db, test_settings, make_endpoint, make_event):
        endpoint = await make_endpoint()
        event = await make_event(sale_id="sale-42")
        entry = await log_failed_delivery(db, endpoint, event)

        job = await ReplayService(db, test_settings).replay_log_entry(PRODUCER_ID, endpoint.id, entry.id)

        assert job.is_replay is True
        assert job.max_attempts == 1
        assert job.status == DeliveryStatus.PENDING
        assert job.payload == entry.payload
        assert job.event_type == "compra.aprovada"
        assert job.transaction_event_id == event.id

    async def test_replay_allowed_while_organic_job_is_open(self, db, test_settings, make_endpoint, make_event):
        endpoint = await make_endpoint()
        event = await make_event()
        [organic] = await JobProducer(db, test_settings).enqueue_event(event)
        entry = await log_failed_delivery(db, endpoint, event)

        replay = await ReplayService(db, test_settings).replay_log_entry(PRODUCER_ID, endpoint.id, entry.id)

        assert replay.id != organic.id
        assert len(await DeliveryJobStore(db).list_jobs_for_endpoint(endpoint.id)) == 2

    async def test_failed_replay_exhausts_after_one_attempt(
        self, session_factory, db, test_settings, make_endpoint, make_event
    ):
        endpoint = await make_endpoint()
        event = await make_event()
        entry = await log_failed_delivery(db, endpoint, event)
        job = await ReplayService(db, test_settings).replay_log_entry(PRODUCER_ID, endpoint.id, entry.id)
        receiver = Receiver(500)
        worker = DeliveryWorker(session_factory, receiver.client(), test_settings, clock=Clock(), rand=lambda: 0.0)

        result = await worker.run_pass()

        assert result.exhausted == 1
        assert len(receiver.requests) == 1
        async with session_factory() as session:
            stored = await DeliveryJobStore(session).get_job(job.id)
        assert stored.status == DeliveryStatus.EXHAUSTED
        assert stored.attempts == 1

    async def test_other_producers_endpoint_is_rejected(self, db, test_settings, make_endpoint, make_event):
        endpoint = await make_endpoint(producer_id=OTHER_PRODUCER_ID)
        event = await make_event(producer_id=OTHER_PRODUCER_ID)
        entry = await log_failed_delivery(db, endpoint, event)

        with pytest.raises(EndpointAccessError):
            await ReplayService(db, test_settings).replay_log_entry(PRODUCER_ID, endpoint.id, entry.id)

    async def test_entry_from_another_endpoint_is_not_found(self, db, test_settings, make_endpoint, make_event):
        mine = await make_endpoint()
        other = await make_endpoint(url="https://other.example.com/hooks")
        event = await make_event()
        entry = await log_failed_delivery(db, other, event)

        with pytest.raises(LogEntryNotFoundError):
            await ReplayService(db, test_settings).replay_log_entry(PRODUCER_ID, mine.id, entry.id)

    async def test_unknown_entry_is_not_found(self, db, test_settings, make_endpoint):
        endpoint = await make_endpoint()

        with pytest.raises(LogEntryNotFoundError):
            await ReplayService(db, test_settings).replay_log_entry(PRODUCER_ID, endpoint.id, "missing")


class TestSendTestEvent:
    async def test_queues_mock_payload(self, db, test_settings, make_endpoint):
        endpoint = await make_endpoint()

        job = await ReplayService(db, test_settings).send_test_event(PRODUCER_ID, endpoint.id, "assinatura.cancelada")

        assert job.is_replay is True
        assert job.max_attempts == 1
        assert job.transaction_event_id is None
        assert job.payload["test"] is True
        assert job.payload["event_type"] == "assinatura.cancelada"

    async def test_test_delivery_is_signed(self, session_factory, db, test_settings, make_endpoint):
        endpoint = await make_endpoint(secret="whsec_other")
        job = await ReplayService(db, test_settings).send_test_event(PRODUCER_ID, endpoint.id, "webhook.test")
        receiver = Receiver(200)
        worker = DeliveryWorker(session_factory, receiver.client(), test_settings, clock=Clock())

        result = await worker.run_pass()

        assert result.succeeded == 1
        [request] = receiver.requests
        assert request.headers["X-Webhook-Signature"] == sign("whsec_other", serialize_payload(job.payload))
        assert request.headers["X-Webhook-Event-Type"] == "webhook.test"
        assert "X-Webhook-Event-Id" not in request.headers

    async def test_other_producers_endpoint_is_rejected(self, db, test_settings, make_endpoint):
        endpoint = await make_endpoint(producer_id=OTHER_PRODUCER_ID)

        with pytest.raises(EndpointAccessError):
            await ReplayService(db, test_settings).send_test_event(PRODUCER_ID, endpoint.id, "webhook.test")

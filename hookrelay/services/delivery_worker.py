"""
Webhook Delivery Worker

Drains the delivery job table in bounded passes: release stale claims, claim
due jobs, then sign and POST each job independently. Every attempt is written
to the delivery log in the same transaction as the job's new state.
"""
import time
import random
import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.config import Settings, settings as default_settings
from hookrelay.exceptions import (
    DeliveryConfigurationError,
    EndpointInactiveError,
    EndpointNotFoundError,
    InvalidEndpointURLError,
    MissingSecretError,
)
from hookrelay.logging_config import get_logger
from hookrelay.models.base import utcnow
from hookrelay.models.endpoint import WebhookEndpoint
from hookrelay.models.job import DeliveryJob, DeliveryStatus
from hookrelay.models.webhook import LogStatus
from hookrelay.routes.metrics import track_delivery, track_outcome_conflict, track_pass
from hookrelay.sentry_config import capture_exception
from hookrelay.services.backoff import compute_backoff
from hookrelay.services.delivery_log import build_log_entry
from hookrelay.services.endpoint_registry import EndpointRegistry
from hookrelay.services.job_store import DeliveryJobStore
from hookrelay.services.signer import serialize_payload, sign


log = get_logger(component="delivery_worker")

ALLOWED_SCHEMES = ("http", "https")


class Outcome:
    """Per-job result of a worker pass."""
    SUCCEEDED = "succeeded"
    RETRIED = "retried"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    ERROR = "error"  # outcome not recorded, job left for the watchdog


@dataclass
class DeliveryPassResult:
    """Counters for one worker pass."""
    claimed: int = 0
    released: int = 0
    succeeded: int = 0
    retried: int = 0
    exhausted: int = 0
    failed: int = 0
    errors: int = 0

    def record(self, outcome: str):
        if outcome == Outcome.SUCCEEDED:
            self.succeeded += 1
        elif outcome == Outcome.RETRIED:
            self.retried += 1
        elif outcome == Outcome.EXHAUSTED:
            self.exhausted += 1
        elif outcome == Outcome.FAILED:
            self.failed += 1
        else:
            self.errors += 1

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AttemptResult:
    """What happened on the wire for one attempt."""
    response_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.response_status is not None and 200 <= self.response_status < 300


def check_endpoint(endpoint: WebhookEndpoint | None, endpoint_id: str) -> WebhookEndpoint:
    """
    Validate an endpoint before any network call.

    Raises:
        DeliveryConfigurationError: subclass describing the problem
    """
    if endpoint is None:
        raise EndpointNotFoundError(endpoint_id)
    if not endpoint.is_active:
        raise EndpointInactiveError(endpoint.id)
    if not endpoint.secret:
        raise MissingSecretError()

    try:
        url = httpx.URL(endpoint.url)
    except httpx.InvalidURL as e:
        raise InvalidEndpointURLError(endpoint.url, str(e)) from e
    if url.scheme not in ALLOWED_SCHEMES:
        raise InvalidEndpointURLError(endpoint.url, f"unsupported scheme '{url.scheme}'")
    if not url.host:
        raise InvalidEndpointURLError(endpoint.url, "missing host")

    return endpoint


class DeliveryWorker:
    """
    Executes delivery passes.

    Safe to run concurrently with other passes (in this or another process):
    the only coordination is the per-job conditional claim in the job store.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: httpx.AsyncClient,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        rand: Callable[[], float] = random.random,
    ):
        self.session_factory = session_factory
        self.http_client = http_client
        self.settings = settings or default_settings
        self.clock = clock
        self.rand = rand

    async def run_pass(self) -> DeliveryPassResult:
        """
        Run one bounded delivery pass.

        Returns:
            Counters for claimed, released and per-outcome jobs
        """
        now = self.clock()
        stale_before = now - timedelta(seconds=self.settings.WEBHOOK_STALE_CLAIM_SECONDS)

        async with self.session_factory() as db:
            store = DeliveryJobStore(db)
            released = await store.release_stale_claims(stale_before, now)
            jobs = await store.claim_due_jobs(self.settings.WEBHOOK_BATCH_SIZE, now)

        result = DeliveryPassResult(claimed=len(jobs), released=released)
        if released:
            log.warning("stale_claims_released", count=released)

        semaphore = asyncio.Semaphore(self.settings.WEBHOOK_CONCURRENCY)

        async def run_one(job: DeliveryJob) -> str:
            async with semaphore:
                return await self._run_job(job)

        outcomes = await asyncio.gather(*(run_one(job) for job in jobs))
        for outcome in outcomes:
            result.record(outcome)

        track_pass(result.claimed, result.released)
        log.info("delivery_pass_completed", **result.to_dict())
        return result

    async def _run_job(self, job: DeliveryJob) -> str:
        """
        Process one job; never raises.

        An unexpected exception counts as a transport error for the job,
        unless an outcome was already recorded for this claim. If nothing can
        be recorded the job stays DELIVERING for the stale-claim watchdog.
        """
        job_log = log.bind(job_id=job.id, endpoint_id=job.webhook_endpoint_id)
        try:
            return await self.process_job(job)
        except Exception as e:
            job_log.error("delivery_job_crashed", error=str(e), exc_info=True)
            capture_exception(e)
            attempt = AttemptResult(error_message=f"Unexpected error: {str(e)[:200]}")

        try:
            async with self.session_factory() as db:
                current = await DeliveryJobStore(db).get_job(job.id)
            if not self._claim_is_current(job, current):
                job_log.warning("delivery_outcome_already_recorded")
                return Outcome.ERROR
            return await self._record_failure(job, attempt, job.attempts + 1, 0.0, job_log)
        except Exception as e:
            job_log.error("delivery_outcome_not_recorded", error=str(e), exc_info=True)
            capture_exception(e)
            return Outcome.ERROR

    async def process_job(self, job: DeliveryJob) -> str:
        """
        Deliver a claimed job and record the outcome.

        Args:
            job: Job in DELIVERING status claimed by this pass

        Returns:
            One of the Outcome values
        """
        job_log = log.bind(
            job_id=job.id,
            endpoint_id=job.webhook_endpoint_id,
            event_type=job.event_type,
        )

        # No session stays open across the HTTP call
        async with self.session_factory() as db:
            endpoint = await EndpointRegistry(db).get_endpoint(job.webhook_endpoint_id)

        try:
            check_endpoint(endpoint, job.webhook_endpoint_id)
            body = serialize_payload(job.payload)
            signature = sign(endpoint.secret, body)
        except DeliveryConfigurationError as e:
            return await self._record_failed(job, e, job_log)

        attempt_number = job.attempts + 1
        job_log.info(
            "delivery_attempt_started",
            attempt=attempt_number,
            max_attempts=job.max_attempts,
        )

        started = time.monotonic()
        attempt = await self._post(endpoint, job, body, signature, attempt_number)
        duration = time.monotonic() - started

        if attempt.ok:
            return await self._record_success(job, attempt, attempt_number, duration, job_log)
        return await self._record_failure(job, attempt, attempt_number, duration, job_log)

    def build_headers(self, job: DeliveryJob, signature: str, attempt_number: int) -> dict:
        """Headers sent with every attempt, test and replay deliveries included."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.WEBHOOK_USER_AGENT,
            self.settings.WEBHOOK_SIGNATURE_HEADER: signature,
            "X-Webhook-Event-Type": job.event_type,
            "X-Webhook-Delivery-Id": job.id,
            "X-Webhook-Delivery-Attempt": str(attempt_number),
        }
        if job.transaction_event_id:
            headers["X-Webhook-Event-Id"] = job.transaction_event_id
        return headers

    async def _post(
        self,
        endpoint: WebhookEndpoint,
        job: DeliveryJob,
        body: bytes,
        signature: str,
        attempt_number: int,
    ) -> AttemptResult:
        """POST the signed body. Transport problems become an AttemptResult."""
        timeout = self.settings.WEBHOOK_TIMEOUT_SECONDS
        try:
            response = await self.http_client.post(
                endpoint.url,
                content=body,
                headers=self.build_headers(job, signature, attempt_number),
                timeout=timeout,
            )
        except httpx.TimeoutException:
            return AttemptResult(error_message=f"Request timeout ({timeout}s)")
        except httpx.RequestError as e:
            return AttemptResult(error_message=f"Request error: {str(e)[:200]}")

        attempt = AttemptResult(
            response_status=response.status_code,
            response_body=response.text,
        )
        if not attempt.ok:
            attempt.error_message = f"HTTP {response.status_code}: {response.text[:500]}"
        return attempt

    async def _record_success(
        self,
        job: DeliveryJob,
        attempt: AttemptResult,
        attempt_number: int,
        duration: float,
        job_log,
    ) -> str:
        now = self.clock()
        entry = build_log_entry(
            endpoint_id=job.webhook_endpoint_id,
            job_id=job.id,
            event_type=job.event_type,
            payload=job.payload,
            status=LogStatus.SUCCESS,
            attempt_number=attempt_number,
            response_status=attempt.response_status,
            response_body=attempt.response_body,
        )
        async with self.session_factory() as db:
            applied = await DeliveryJobStore(db).mark_succeeded(job, attempt_number, now, entry)
        if not applied:
            self._claim_lost(job_log)

        track_delivery(Outcome.SUCCEEDED, duration)
        job_log.info(
            "delivery_succeeded",
            attempt=attempt_number,
            status_code=attempt.response_status,
            duration_ms=round(duration * 1000, 2),
        )
        return Outcome.SUCCEEDED

    async def _record_failure(
        self,
        job: DeliveryJob,
        attempt: AttemptResult,
        attempt_number: int,
        duration: float,
        job_log,
    ) -> str:
        now = self.clock()
        entry = build_log_entry(
            endpoint_id=job.webhook_endpoint_id,
            job_id=job.id,
            event_type=job.event_type,
            payload=job.payload,
            status=LogStatus.FAILED if attempt.response_status is not None else LogStatus.ERROR,
            attempt_number=attempt_number,
            response_status=attempt.response_status,
            response_body=attempt.response_body,
            error_message=attempt.error_message,
        )

        if attempt_number < job.max_attempts:
            delay = compute_backoff(
                attempt_number,
                base_seconds=self.settings.WEBHOOK_BACKOFF_BASE_SECONDS,
                max_seconds=self.settings.WEBHOOK_BACKOFF_MAX_SECONDS,
                jitter=self.settings.WEBHOOK_BACKOFF_JITTER,
                rand=self.rand,
            )
            next_attempt_at = now + delay
            async with self.session_factory() as db:
                applied = await DeliveryJobStore(db).mark_retry(
                    job, attempt_number, next_attempt_at, attempt.error_message, now, entry
                )
            outcome = Outcome.RETRIED
            job_log.warning(
                "delivery_failed_will_retry",
                attempt=attempt_number,
                max_attempts=job.max_attempts,
                status_code=attempt.response_status,
                error=attempt.error_message,
                next_attempt_at=next_attempt_at.isoformat(),
            )
        else:
            async with self.session_factory() as db:
                applied = await DeliveryJobStore(db).mark_exhausted(job, attempt.error_message, now, entry)
            outcome = Outcome.EXHAUSTED
            job_log.error(
                "delivery_exhausted",
                attempts=attempt_number,
                status_code=attempt.response_status,
                error=attempt.error_message,
            )

        if not applied:
            self._claim_lost(job_log)
        track_delivery(outcome, duration)
        return outcome

    async def _record_failed(
        self,
        job: DeliveryJob,
        error: DeliveryConfigurationError,
        job_log,
    ) -> str:
        now = self.clock()
        entry = build_log_entry(
            endpoint_id=job.webhook_endpoint_id,
            job_id=job.id,
            event_type=job.event_type,
            payload=job.payload,
            status=LogStatus.ERROR,
            attempt_number=job.attempts,
            error_message=error.message,
        )
        async with self.session_factory() as db:
            applied = await DeliveryJobStore(db).mark_failed(job, error.message, now, entry)
        if not applied:
            self._claim_lost(job_log)

        track_delivery(Outcome.FAILED)
        job_log.error("delivery_configuration_error", code=error.code, error=error.message)
        return Outcome.FAILED

    @staticmethod
    def _claim_is_current(job: DeliveryJob, current: DeliveryJob | None) -> bool:
        """Check that no outcome has been written for this claim yet."""
        return (
            current is not None
            and current.status == DeliveryStatus.DELIVERING
            and current.claimed_at == job.claimed_at
        )

    @staticmethod
    def _claim_lost(job_log):
        track_outcome_conflict()
        job_log.warning("delivery_claim_lost")


async def run_delivery_pass(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> DeliveryPassResult:
    """
    Run one pass with a short-lived HTTP client unless one is supplied.

    Used by the ARQ task and by the manual trigger route.
    """
    settings = settings or default_settings
    if http_client is not None:
        return await DeliveryWorker(session_factory, http_client, settings).run_pass()

    async with httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS) as client:
        return await DeliveryWorker(session_factory, client, settings).run_pass()

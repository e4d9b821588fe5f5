"""
ARQ Background Worker for HookRelay.

Runs webhook delivery passes and backfill on a schedule, and fans out new
transaction events on demand. Delivery retries are tracked in the job table,
not by ARQ.
"""
import asyncio

import httpx
from arq import cron, create_pool
from arq.connections import RedisSettings

from hookrelay.config import settings
from hookrelay.database import AsyncSessionLocal
from hookrelay.logging_config import configure_logging, get_logger
from hookrelay.sentry_config import configure_sentry
from hookrelay.services.delivery_worker import run_delivery_pass
from hookrelay.services.enqueuer import JobProducer
from hookrelay.services.event_log import EventLog
from hookrelay.services.reconciler import Reconciler


log = get_logger(component="arq_worker")


async def startup(ctx: dict):
    """Create shared resources for the worker process."""
    configure_logging()
    configure_sentry()
    ctx["http_client"] = httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    log.info("worker_started", redis=settings.REDIS_URL.split("@")[-1])


async def shutdown(ctx: dict):
    """Release shared resources."""
    client = ctx.get("http_client")
    if client is not None:
        await client.aclose()
    log.info("worker_stopped")


async def process_webhook_deliveries(ctx: dict) -> dict:
    """Run one delivery pass."""
    result = await run_delivery_pass(AsyncSessionLocal, settings, ctx.get("http_client"))
    return result.to_dict()


async def backfill_webhook_jobs(ctx: dict) -> dict:
    """Create jobs for recent events that never produced one."""
    async with AsyncSessionLocal() as db:
        report = await Reconciler(db, settings).backfill()
    return report.to_dict()


async def enqueue_event_jobs(ctx: dict, event_id: str) -> dict:
    """Fan out a newly recorded transaction event to its endpoints."""
    async with AsyncSessionLocal() as db:
        event = await EventLog(db).get_event(event_id)
        if event is None:
            log.warning("event_not_found", event_id=event_id)
            return {"event_id": event_id, "jobs_created": 0}

        jobs = await JobProducer(db, settings).enqueue_event(event)

    if jobs:
        await trigger_delivery_pass()
    return {"event_id": event_id, "jobs_created": len(jobs)}


# Register functions for ARQ
ARQ_FUNCTIONS = [
    process_webhook_deliveries,
    backfill_webhook_jobs,
    enqueue_event_jobs,
]


async def _enqueue(function_name: str, *args) -> bool:
    try:
        redis = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
        try:
            await redis.enqueue_job(function_name, *args)
        finally:
            await redis.close()
        return True
    except Exception as e:
        log.warning("enqueue_failed", function=function_name, error=str(e))
        return False


async def trigger_delivery_pass() -> bool:
    """
    Ask the worker for an immediate delivery pass.

    Returns False if Redis is unavailable; the next cron pass picks the jobs
    up anyway.
    """
    return await _enqueue("process_webhook_deliveries")


async def enqueue_event_processing(event_id: str) -> bool:
    """Queue fan-out for a transaction event. Backfill covers failures."""
    return await _enqueue("enqueue_event_jobs", event_id)


async def main():
    """Run the worker using arq cli."""
    print("Use: arq hookrelay.worker.WorkerSettings")
    print(f"Redis: {settings.REDIS_URL}")


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq hookrelay.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    functions = ARQ_FUNCTIONS
    cron_jobs = [
        cron(process_webhook_deliveries, second=0),
        cron(backfill_webhook_jobs, minute={0, 15, 30, 45}, second=30),
    ]
    on_startup = startup
    on_shutdown = shutdown
    job_timeout = 300
    max_tries = 1


if __name__ == "__main__":
    asyncio.run(main())

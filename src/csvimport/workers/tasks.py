"""Celery tasks that run the CSV import pipeline outside the web process."""

import asyncio

import structlog
from celery import shared_task

logger = structlog.get_logger()


def run_async(coro):
    """Run async function in sync context for Celery."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@shared_task(bind=True, name="csvimport.workers.tasks.drain_csv_jobs")
def drain_csv_jobs(self):
    """
    Process every queued CSV job, then return.

    Builds its own engine and clients so nothing is shared with an event
    loop from a previous run.
    """
    from csvimport.models.database import create_engine, create_session_maker
    from csvimport.services.batch_processor import BatchProcessor
    from csvimport.services.storage import ObjectStorage
    from csvimport.services.user_service import UserServiceClient
    from csvimport.workers.scheduler import JobScheduler

    async def _drain():
        engine = create_engine()
        session_maker = create_session_maker(engine)
        user_service = UserServiceClient()
        scheduler = JobScheduler(
            session_maker=session_maker,
            processor=BatchProcessor(session_maker, ObjectStorage(), user_service),
        )
        try:
            return await scheduler.drain()
        finally:
            await user_service.close()
            await engine.dispose()

    processed = run_async(_drain())
    logger.info("Drained queued CSV jobs", jobs_processed=processed, celery_task_id=self.request.id)
    return {"success": True, "jobs_processed": processed}

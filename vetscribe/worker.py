"""Celery worker configuration and tasks."""

import asyncio
import logging

from celery import Celery
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from vetscribe.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "vetscribe_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.pipeline_time_limit_seconds,
    task_soft_time_limit=settings.pipeline_time_limit_seconds - 30,
    worker_prefetch_multiplier=1,  # Fetch one task at a time
    task_acks_late=False,  # At most one run per consultation
    task_default_queue="pipeline",
    task_routes={
        "vetscribe.worker.process_consultation_task": {"queue": "pipeline"},
    },
)

# The pipeline times itself out before Celery's soft limit fires.
RUN_TIMEOUT_SECONDS = settings.pipeline_time_limit_seconds - 60


def _create_engine():
    # Each task runs in a fresh event loop, so pooled connections cannot be reused.
    return create_async_engine(settings.database_url, poolclass=NullPool)


async def _run_pipeline(consultation_id: str):
    from vetscribe.services.pipeline import process_consultation

    engine = _create_engine()
    try:
        session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        return await process_consultation(
            consultation_id,
            session_factory=session_factory,
            timeout_seconds=RUN_TIMEOUT_SECONDS,
        )
    finally:
        await engine.dispose()


async def _mark_failed(consultation_id: str) -> bool:
    from vetscribe.services.pipeline import mark_failed

    engine = _create_engine()
    try:
        session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        return await mark_failed(consultation_id, session_factory)
    finally:
        await engine.dispose()


@celery_app.task(name="vetscribe.worker.process_consultation_task")
def process_consultation_task(consultation_id: str) -> dict:
    """
    Run the processing pipeline for one consultation.

    No retries: a failed consultation stays failed and needs a new recording.
    Anything escaping the pipeline (including Celery's soft time limit, which
    is raised outside the coroutine) still moves the consultation to failed.
    """
    try:
        status = asyncio.run(_run_pipeline(consultation_id))
    except BaseException:
        logger.exception(f"Pipeline crashed for consultation {consultation_id}")
        try:
            asyncio.run(_mark_failed(consultation_id))
        except Exception:
            logger.exception(f"Could not mark consultation {consultation_id} as failed")
        raise

    return {
        "consultation_id": consultation_id,
        "status": status.value if status else None,
    }


def enqueue_consultation(consultation_id: str) -> None:
    """Queue the pipeline for a freshly created consultation."""
    process_consultation_task.apply_async(args=[consultation_id], queue="pipeline")
    logger.info(f"Enqueued pipeline for consultation {consultation_id}")

"""Producer-side helpers: enqueue jobs and look at the queue."""

import logging
from typing import Optional

from django.db import transaction

from .models import Job
from .serializers import JobSubmissionSerializer
from .store import DjangoJobStore

logger = logging.getLogger(__name__)


def submit_job(payload, *, max_attempts: Optional[int] = None, backoff_ms: Optional[int] = None) -> Job:
    """Validate a job payload, persist it and enqueue it once the row commits.

    Raises rest_framework.exceptions.ValidationError for a bad payload.
    """
    from .tasks import process_reel

    serializer = JobSubmissionSerializer(data=payload)
    serializer.is_valid(raise_exception=True)

    overrides = {}
    if max_attempts is not None:
        overrides["max_attempts"] = max_attempts
    if backoff_ms is not None:
        overrides["backoff_ms"] = backoff_ms

    with transaction.atomic():
        job = serializer.save(**overrides)
        transaction.on_commit(lambda: process_reel.delay(str(job.id)))

    logger.info("Queued job %s for reel %s", job.id, job.correlation_id)
    return job


def queue_counts() -> dict:
    return DjangoJobStore().counts()


def worker_status(ping=None) -> dict:
    """Liveness of the worker pool plus per-state job counts."""
    if ping is None:
        from reel_pipeline.celery import celery_app

        ping = celery_app.control.ping

    try:
        replies = ping(timeout=1.0) or []
    except Exception as e:
        logger.warning("Worker ping failed: %s", e)
        replies = []
    return {"running": bool(replies), "counts": queue_counts()}

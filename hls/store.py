"""Job state transitions persisted through the ORM."""

import logging
from datetime import datetime
from typing import Optional

from django.core.exceptions import ValidationError
from django.db.models import Count, Q
from django.utils import timezone

from .models import Job

logger = logging.getLogger(__name__)

# Older failure reasons are dropped once the history grows past this.
MAX_ERROR_HISTORY = 16000

QUEUE_STATES = ("active", "waiting", "failed", "delayed", "completed")


def prepend_error(history: str, attempt: int, reason: str) -> str:
    entry = f"[attempt {attempt}] {reason}".rstrip()
    combined = f"{entry}\n{history}" if history else entry
    return combined[:MAX_ERROR_HISTORY]


def _update(job: Job, **fields) -> None:
    for name, value in fields.items():
        setattr(job, name, value)
    job.save(update_fields=[*fields.keys(), "updated_at"])


class DjangoJobStore:
    def __init__(self, *, discard_completed: bool = True):
        self.discard_completed = discard_completed

    def get(self, job_id) -> Optional[Job]:
        try:
            return Job.objects.filter(pk=job_id).first()
        except ValidationError:
            logger.warning("Ignoring malformed job id %r", job_id)
            return None

    def mark_active(self, job: Job) -> None:
        _update(job, status=Job.Status.ACTIVE, started_at=timezone.now(), next_attempt_at=None)

    def mark_completed(self, job: Job, outputs: dict) -> None:
        _update(job, status=Job.Status.COMPLETED, outputs=outputs, finished_at=timezone.now())
        if self.discard_completed:
            Job.objects.filter(pk=job.pk).delete()
            logger.debug("Discarded completed job %s", job.pk)

    def record_stall(self, job: Job) -> None:
        _update(job, stalled_count=job.stalled_count + 1)

    def schedule_retry(self, job: Job, reason: str, retry_at: datetime) -> None:
        attempt = job.attempts_made + 1
        _update(
            job,
            status=Job.Status.QUEUED,
            attempts_made=attempt,
            error=prepend_error(job.error, attempt, reason),
            next_attempt_at=retry_at,
        )

    def mark_failed(self, job: Job, reason: str) -> None:
        # Failed jobs are kept for operators; nothing here deletes them.
        attempt = job.attempts_made + 1
        _update(
            job,
            status=Job.Status.FAILED,
            attempts_made=attempt,
            error=prepend_error(job.error, attempt, reason),
            next_attempt_at=None,
            finished_at=timezone.now(),
        )

    def counts(self, now: Optional[datetime] = None) -> dict:
        now = now or timezone.now()
        queued = Q(status=Job.Status.QUEUED)
        delayed = queued & Q(next_attempt_at__gt=now)
        agg = Job.objects.aggregate(
            active=Count("pk", filter=Q(status=Job.Status.ACTIVE)),
            waiting=Count("pk", filter=queued & ~Q(next_attempt_at__gt=now)),
            delayed=Count("pk", filter=delayed),
            failed=Count("pk", filter=Q(status=Job.Status.FAILED)),
            completed=Count("pk", filter=Q(status=Job.Status.COMPLETED)),
        )
        return {state: agg[state] or 0 for state in QUEUE_STATES}

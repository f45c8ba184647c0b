import logging
from functools import lru_cache

from celery import shared_task
from celery.signals import worker_ready
from django.conf import settings

from .coordinator import JobOutcome, OutcomeState, build_coordinator
from .errors import JobFailed
from .workspace import sweep_stale_workspaces

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_coordinator():
    return build_coordinator()


def apply_outcome(task, outcome: JobOutcome) -> dict:
    """Turn a coordinator outcome into what the broker should do next."""
    if outcome.state == OutcomeState.RETRY:
        raise task.retry(
            exc=JobFailed(outcome.error or "attempt failed"),
            countdown=outcome.delay_seconds,
        )
    if outcome.state == OutcomeState.FAILED:
        raise JobFailed(outcome.error or f"job {outcome.job_id} failed")
    return outcome.as_dict()


@shared_task(
    bind=True, acks_late=True, reject_on_worker_lost=True, acks_on_failure_or_timeout=False, max_retries=None,
)
def process_reel(self, job_id: str):
    outcome = get_coordinator().process(job_id)
    return apply_outcome(self, outcome)


@worker_ready.connect
def sweep_scratch_on_start(sender=None, **kwargs):
    # Anything older than the hard time limit belongs to a dead worker.
    removed = sweep_stale_workspaces(settings.HLS_SCRATCH_ROOT, older_than=settings.CELERY_TASK_TIME_LIMIT)
    logger.info("Worker ready; swept %d stale workspace(s)", removed)

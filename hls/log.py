"""Per-job logging context.

Every record emitted while a job runs carries the job id and the reel
(correlation) id, so interleaved worker output can be told apart.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional

_job_id: ContextVar[Optional[str]] = ContextVar("hls_job_id", default=None)
_correlation_id: ContextVar[Optional[str]] = ContextVar("hls_correlation_id", default=None)


@contextmanager
def job_context(job_id, correlation_id=None):
    """Bind job/reel ids to log records for the duration of the block."""
    job_token = _job_id.set(str(job_id))
    corr_token = _correlation_id.set(str(correlation_id) if correlation_id is not None else None)
    try:
        yield
    finally:
        _correlation_id.reset(corr_token)
        _job_id.reset(job_token)


class JobContextFilter(logging.Filter):
    """Logging filter that adds job_id / correlation_id to all records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = _job_id.get() or "-"
        record.correlation_id = _correlation_id.get() or "-"
        return True

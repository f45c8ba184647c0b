"""Worker coordination: one dequeued job in, one typed outcome out.

The coordinator owns the attempt accounting and the retry decision. The
queue (Celery) only redelivers: it schedules the retry the outcome asks for
and redelivers messages of workers that died mid-job.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from django.conf import settings
from django.utils import timezone

from .errors import PipelineError, StalledJobError
from .ffmpeg import FFmpeg, Segmenter, ThumbnailExtractor, Transcoder
from .fetch import Fetcher
from .ladder import load_ladder
from .log import job_context
from .pipeline import HLSPipeline, source_name
from .probe import MediaProber
from .retry import JOB_RETRY, RetryConfig
from .s3 import ObjectStore, Uploader
from .status import STATUS_DONE, STATUS_FAILED, StatusReporter
from .store import DjangoJobStore
from .workspace import ScratchWorkspace

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    ACTIVE = "active"
    STALLED = "stalled"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class LifecycleEvent:
    kind: EventKind
    job_id: str
    correlation_id: str
    attempt: int
    detail: str = ""
    at: datetime = field(default_factory=timezone.now)


class OutcomeState(str, Enum):
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class JobOutcome:
    job_id: str
    state: OutcomeState
    attempts_made: int = 0
    delay_seconds: Optional[float] = None
    error: Optional[str] = None
    result: Optional[dict] = None
    events: list[LifecycleEvent] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "attempts_made": self.attempts_made,
            "delay_seconds": self.delay_seconds,
            "error": self.error,
            "result": self.result,
        }


EventSubscriber = Callable[[LifecycleEvent], None]


def log_event(event: LifecycleEvent) -> None:
    """Default subscriber: lifecycle events end up in the worker log."""
    level = {
        EventKind.STALLED: logging.WARNING,
        EventKind.RETRYING: logging.WARNING,
        EventKind.FAILED: logging.ERROR,
    }.get(event.kind, logging.INFO)
    logger.log(level, "Job %s %s (attempt %d)%s", event.job_id, event.kind.value, event.attempt,
               f": {event.detail.splitlines()[0]}" if event.detail else "")


def retry_delay(backoff_ms: int, attempt: int) -> float:
    """Seconds to wait after failed attempt ``attempt``: backoff, 2x backoff, 4x ..."""
    config = RetryConfig(
        max_attempts=attempt + 1,
        initial_delay=backoff_ms / 1000.0,
        max_delay=JOB_RETRY.max_delay,
        backoff_multiplier=JOB_RETRY.backoff_multiplier,
    )
    return config.calculate_delay(attempt)


def describe_failure(exc: BaseException) -> str:
    if isinstance(exc, PipelineError):
        return exc.describe()
    return f"unexpected {type(exc).__name__}: {exc}"


class WorkerCoordinator:
    def __init__(
        self,
        store,
        pipeline: HLSPipeline,
        reporter: StatusReporter,
        *,
        scratch_root: Path,
        subscribers: Optional[list[EventSubscriber]] = None,
        clock: Callable[[], datetime] = timezone.now,
        max_stalled: int = 1,
    ):
        self.store = store
        self.pipeline = pipeline
        self.reporter = reporter
        self.scratch_root = Path(scratch_root)
        self.subscribers: list[EventSubscriber] = list(subscribers) if subscribers is not None else [log_event]
        self.clock = clock
        self.max_stalled = max_stalled

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self.subscribers.append(subscriber)

    def _emit(self, outcome: JobOutcome, kind: EventKind, job, detail: str = "") -> None:
        event = LifecycleEvent(
            kind=kind,
            job_id=str(job.id),
            correlation_id=str(job.correlation_id),
            attempt=job.attempts_made + (1 if kind in (EventKind.ACTIVE, EventKind.STALLED) else 0),
            detail=detail,
            at=self.clock(),
        )
        outcome.events.append(event)
        for subscriber in self.subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.error("Lifecycle subscriber error: %s", e)

    def process(self, job_id) -> JobOutcome:
        """Run one delivery of a job through the pipeline."""
        job = self.store.get(job_id)
        if job is None:
            logger.warning("Job %s not found; dropping delivery", job_id)
            return JobOutcome(job_id=str(job_id), state=OutcomeState.SKIPPED, error="job not found")
        if job.is_terminal:
            logger.info("Job %s already %s; dropping duplicate delivery", job.id, job.status)
            return JobOutcome(job_id=str(job.id), state=OutcomeState.SKIPPED, attempts_made=job.attempts_made)

        outcome = JobOutcome(job_id=str(job.id), state=OutcomeState.SKIPPED, attempts_made=job.attempts_made)
        with job_context(job.id, job.correlation_id):
            if job.status == job.Status.ACTIVE:
                # The previous delivery never finished: its worker died.
                self.store.record_stall(job)
                self._emit(outcome, EventKind.STALLED, job, f"redelivered after worker loss ({job.stalled_count})")
                if job.stalled_count > self.max_stalled:
                    lost = StalledJobError(f"worker lost {job.stalled_count} times while processing")
                    self._on_failure(outcome, job, lost)
                    return outcome

            self.store.mark_active(job)
            self._emit(outcome, EventKind.ACTIVE, job)

            workspace = None
            try:
                workspace = ScratchWorkspace.create(self.scratch_root, job.id, source_name(job.source_url)[1])
                result = self.pipeline.run(job, workspace)
            except Exception as exc:
                self._on_failure(outcome, job, exc)
            else:
                self._on_success(outcome, job, result.as_dict())
            finally:
                if workspace is not None:
                    workspace.cleanup()
        return outcome

    def _on_success(self, outcome: JobOutcome, job, result: dict) -> None:
        self.store.mark_completed(job, result)
        self.reporter.report(job.correlation_id, STATUS_DONE)
        outcome.state = OutcomeState.COMPLETED
        outcome.result = result
        outcome.attempts_made = job.attempts_made
        self._emit(outcome, EventKind.COMPLETED, job)

    def _on_failure(self, outcome: JobOutcome, job, exc: BaseException) -> None:
        reason = describe_failure(exc)
        if isinstance(exc, PipelineError):
            logger.error("Attempt %d failed: %s", job.attempts_made + 1, reason)
        else:
            logger.exception("Attempt %d failed unexpectedly", job.attempts_made + 1)

        outcome.error = reason
        if job.attempts_left > 1:
            delay = retry_delay(job.backoff_ms, job.attempts_made + 1)
            self.store.schedule_retry(job, reason, self.clock() + timedelta(seconds=delay))
            outcome.state = OutcomeState.RETRY
            outcome.delay_seconds = delay
            outcome.attempts_made = job.attempts_made
            self._emit(outcome, EventKind.RETRYING, job, reason)
            return

        self.store.mark_failed(job, reason)
        self.reporter.report(job.correlation_id, STATUS_FAILED, reason)
        outcome.state = OutcomeState.FAILED
        outcome.attempts_made = job.attempts_made
        self._emit(outcome, EventKind.FAILED, job, reason)


def build_pipeline() -> HLSPipeline:
    ffmpeg = FFmpeg(settings.FFMPEG_PATH)
    store = ObjectStore(part_size=settings.HLS_UPLOAD_PART_SIZE)
    return HLSPipeline(
        fetcher=Fetcher(timeout=settings.HLS_FETCH_TIMEOUT, max_bytes=settings.HLS_MAX_SOURCE_BYTES),
        prober=MediaProber(settings.FFPROBE_PATH),
        thumbnails=ThumbnailExtractor(ffmpeg),
        transcoder=Transcoder(ffmpeg, keyframe_seconds=settings.HLS_SEGMENT_SECONDS),
        segmenter=Segmenter(ffmpeg, segment_seconds=settings.HLS_SEGMENT_SECONDS),
        uploader=Uploader(store, workers=settings.HLS_UPLOAD_WORKERS, publish_mp4=settings.HLS_PUBLISH_RENDITION_MP4),
        ladder=load_ladder(settings.HLS_QUALITY_LADDER),
    )


def build_coordinator() -> WorkerCoordinator:
    """Wire production collaborators from Django settings."""
    return WorkerCoordinator(
        store=DjangoJobStore(discard_completed=settings.HLS_DISCARD_COMPLETED),
        pipeline=build_pipeline(),
        reporter=StatusReporter(settings.HLS_STATUS_CALLBACK_URL, timeout=settings.HLS_STATUS_TIMEOUT),
        scratch_root=settings.HLS_SCRATCH_ROOT,
        max_stalled=settings.HLS_MAX_STALLED,
    )

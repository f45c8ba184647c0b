"""Failure taxonomy for the HLS packaging pipeline.

Every stage raises a subclass of PipelineError. The coordinator treats any of
them as a failed attempt; StatusCallbackError never leaves the status reporter.
"""

from typing import Optional

# Keep stored error text bounded (job.error, broker results).
MAX_DETAIL_CHARS = 4000


def tail(text, limit: int = MAX_DETAIL_CHARS) -> str:
    """Return the last ``limit`` characters of subprocess output."""
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="ignore")
    text = text.strip()
    return text[-limit:]


class PipelineError(Exception):
    """A stage failed; the job attempt is aborted."""

    stage = "pipeline"

    def __init__(self, message: str, *, detail: str = ""):
        super().__init__(message)
        self.detail = detail

    def describe(self) -> str:
        msg = f"{self.stage}: {self}"
        if self.detail:
            msg = f"{msg}\n{self.detail}"
        return msg[:MAX_DETAIL_CHARS]


class DownloadError(PipelineError):
    stage = "download"


class ProbeError(PipelineError):
    stage = "probe"


class EncodeError(PipelineError):
    stage = "encode"

    def __init__(self, message: str, *, quality: Optional[str] = None, detail: str = ""):
        super().__init__(message, detail=detail)
        self.quality = quality


class SegmentError(PipelineError):
    stage = "segment"

    def __init__(self, message: str, *, quality: Optional[str] = None, detail: str = ""):
        super().__init__(message, detail=detail)
        self.quality = quality


class StalledJobError(PipelineError):
    """The job kept losing its worker mid-run."""

    stage = "stalled"


class UploadError(PipelineError):
    stage = "upload"

    def __init__(self, message: str, *, key: Optional[str] = None, detail: str = ""):
        super().__init__(message, detail=detail)
        self.key = key


class StatusCallbackError(Exception):
    """Best-effort notification failed. Logged, never propagated."""


class JobFailed(Exception):
    """Raised by the worker task once a job has exhausted its attempts."""

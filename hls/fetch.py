"""Stream a remote source video into the scratch workspace."""

import logging
import time
from pathlib import Path
from typing import Callable, Optional

import requests

from .errors import DownloadError
from .retry import NETWORK_RETRY, RetryConfig, call_with_retry

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class TransientDownloadError(Exception):
    """Failure worth another attempt (network hiccup, 5xx, throttling)."""


class Fetcher:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        timeout: float = 60,
        max_bytes: Optional[int] = None,
        retry: RetryConfig = NETWORK_RETRY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.retry = retry
        self.sleep = sleep

    def fetch(self, url: str, dest: Path) -> Path:
        """Download ``url`` to ``dest``; raises DownloadError when retries run out."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        try:
            size = call_with_retry(
                lambda: self._download_once(url, dest),
                config=self.retry,
                retry_on=(TransientDownloadError,),
                description=f"Download of {url}",
                sleep=self.sleep,
            )
        except TransientDownloadError as e:
            raise DownloadError(f"Download failed after {self.retry.max_attempts} attempts: {url}", detail=str(e)) from e

        logger.info("Downloaded %s (%d bytes) to %s", url, size, dest.name)
        return dest

    def _download_once(self, url: str, dest: Path) -> int:
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                if resp.status_code in RETRYABLE_STATUS:
                    raise TransientDownloadError(f"HTTP {resp.status_code}")
                if resp.status_code >= 400:
                    raise DownloadError(f"HTTP {resp.status_code} fetching {url}")
                self._check_declared_size(resp, url)
                return self._write_body(resp, url, dest)
        except (requests.ConnectionError, requests.Timeout, requests.exceptions.ChunkedEncodingError) as e:
            dest.unlink(missing_ok=True)
            raise TransientDownloadError(str(e)) from e
        except requests.RequestException as e:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"Request for {url} failed: {e}") from e
        except (TransientDownloadError, DownloadError):
            dest.unlink(missing_ok=True)
            raise

    def _check_declared_size(self, resp, url: str) -> None:
        if not self.max_bytes:
            return
        declared = resp.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            raise DownloadError(f"Source is {declared} bytes, limit is {self.max_bytes}: {url}")

    def _write_body(self, resp, url: str, dest: Path) -> int:
        written = 0
        with open(dest, "wb") as f:
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                written += len(chunk)
                if self.max_bytes and written > self.max_bytes:
                    raise DownloadError(f"Source exceeds {self.max_bytes} bytes: {url}")
                f.write(chunk)
        return written

"""Best-effort terminal status notification to the system of record."""

import logging
import time
from typing import Callable, Optional

import requests

from .errors import MAX_DETAIL_CHARS, StatusCallbackError
from .retry import NETWORK_RETRY, RetryConfig, call_with_retry

logger = logging.getLogger(__name__)

STATUS_DONE = "done"
STATUS_FAILED = "failed"


class StatusReporter:
    def __init__(
        self,
        url: Optional[str],
        session: Optional[requests.Session] = None,
        *,
        timeout: float = 10,
        retry: RetryConfig = NETWORK_RETRY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retry = retry
        self.sleep = sleep

    @staticmethod
    def build_payload(correlation_id, status: str, error: Optional[str] = None) -> dict:
        payload = {"correlationId": correlation_id, "status": status}
        if error:
            payload["error"] = error[:MAX_DETAIL_CHARS]
        return payload

    def _post(self, payload: dict) -> None:
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise StatusCallbackError(str(e)) from e

    def report(self, correlation_id, status: str, error: Optional[str] = None) -> bool:
        """POST the outcome. Returns False instead of raising on failure."""
        if not self.url:
            logger.debug("No status callback configured; skipping %s for reel %s", status, correlation_id)
            return False

        payload = self.build_payload(correlation_id, status, error)
        try:
            call_with_retry(
                lambda: self._post(payload),
                config=self.retry,
                retry_on=(StatusCallbackError,),
                description=f"Status callback for reel {correlation_id}",
                sleep=self.sleep,
            )
        except StatusCallbackError as e:
            logger.error("Could not report status %r for reel %s: %s", status, correlation_id, e)
            return False

        logger.info("Reported status %r for reel %s", status, correlation_id)
        return True

"""Poll a remote transcription job until it reaches a terminal status.

While the job is queued or processing the provider gives no progress figure,
so the watcher reports an *estimated* in-phase percentage derived from
elapsed time. The estimate is capped below 100; only a ``completed`` status
produces the authoritative 100.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from threading import Event
from typing import Protocol

from yt_transcripts.errors import PipelineCancelled, TranscriptionError, TranscriptionStalledError
from yt_transcripts.types import TranscriptionJob

logger = logging.getLogger(__name__)

ESTIMATE_CAP_PERCENT = 90.0

_ALLOWED_TRANSITIONS: dict[str | None, frozenset[str]] = {
    None: frozenset({"queued", "processing", "completed", "error"}),
    "queued": frozenset({"queued", "processing", "completed", "error"}),
    "processing": frozenset({"processing", "completed", "error"}),
}


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class JobPoller(Protocol):
    def poll(self, job_id: str) -> TranscriptionJob: ...


ProgressCallback = Callable[[float, str], None]
LogCallback = Callable[[str], None]


def estimated_progress(elapsed_seconds: float, baseline_seconds: float) -> float:
    if baseline_seconds <= 0:
        return ESTIMATE_CAP_PERCENT
    return min(ESTIMATE_CAP_PERCENT, 100.0 * max(elapsed_seconds, 0.0) / baseline_seconds)


class PollingWatcher:
    def __init__(
        self,
        provider: JobPoller,
        *,
        clock: Clock | None = None,
        poll_interval_seconds: float = 2.0,
        status_log_interval_seconds: float = 10.0,
        baseline_seconds: float = 120.0,
        max_wait_seconds: float | None = 3600.0,
    ) -> None:
        self.provider = provider
        self.clock = clock or SystemClock()
        self.poll_interval_seconds = poll_interval_seconds
        self.status_log_interval_seconds = status_log_interval_seconds
        self.baseline_seconds = baseline_seconds
        self.max_wait_seconds = max_wait_seconds or None

    def watch(
        self,
        job_id: str,
        *,
        on_progress: ProgressCallback | None = None,
        on_log: LogCallback | None = None,
        cancel: Event | None = None,
    ) -> str:
        started = self.clock.monotonic()
        last_log: float | None = None
        status: str | None = None

        while True:
            if cancel is not None and cancel.is_set():
                raise PipelineCancelled(f"Transcription {job_id} cancelled while polling")

            job = self.provider.poll(job_id)
            status = self._transition(job_id, status, job.status)

            if status == "completed":
                text = (job.text or "").strip()
                if not text:
                    raise TranscriptionError("No transcript text received: the provider returned no content")
                if on_progress is not None:
                    on_progress(100.0, "Transcription complete")
                logger.info("Transcription %s completed (%d characters)", job_id, len(text))
                return text

            if status == "error":
                detail = job.error_detail or "provider reported an error status"
                raise TranscriptionError(f"Transcription failed: {detail}")

            elapsed = self.clock.monotonic() - started
            if on_progress is not None:
                on_progress(estimated_progress(elapsed, self.baseline_seconds), f"Status: {status}")

            if last_log is None or elapsed - last_log >= self.status_log_interval_seconds:
                last_log = elapsed
                line = f"Transcription {job_id} is {status} ({int(elapsed)}s elapsed)"
                logger.info("%s", line)
                if on_log is not None:
                    on_log(line)

            if self.max_wait_seconds is not None and elapsed >= self.max_wait_seconds:
                raise TranscriptionStalledError(
                    f"Transcription {job_id} still {status} after {int(elapsed)}s; giving up"
                )

            self.clock.sleep(self.poll_interval_seconds)

    @staticmethod
    def _transition(job_id: str, current: str | None, new: str) -> str:
        allowed = _ALLOWED_TRANSITIONS.get(current)
        if allowed is None or new not in _ALLOWED_TRANSITIONS[None]:
            raise TranscriptionError(f"Unexpected transcription status {new!r} for job {job_id}")
        if new not in allowed:
            # Providers occasionally report a stale status; keep the furthest one seen.
            logger.warning("Job %s reported %s after %s; ignoring", job_id, new, current)
            return current or new
        return new

import logging
import threading
from typing import Optional

from app.services.audit import AuditEmitter
from app.services.dispatch import DispatchJob, DispatchPipeline, FallbackQueue

LOGGER = logging.getLogger(__name__)


class QueueWorker:
    """Drains the dispatch fallback queue and the audit queue on a fixed interval."""

    def __init__(
        self,
        pipeline: DispatchPipeline,
        queue: FallbackQueue,
        audit: AuditEmitter,
        *,
        poll_interval_seconds: float = 1.0,
        error_backoff_seconds: float = 5.0,
        max_requeues: int = 5,
        audit_batch_size: int = 50,
    ) -> None:
        self._pipeline = pipeline
        self._queue = queue
        self._audit = audit
        self._poll_interval_seconds = poll_interval_seconds
        self._error_backoff_seconds = error_backoff_seconds
        self._max_requeues = max_requeues
        self._audit_batch_size = audit_batch_size
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> Optional[str]:
        """Process one fallback job and one audit batch; returns the job outcome if any."""
        outcome = None
        job = self._queue.pop()
        if job is not None:
            try:
                report = self._pipeline.send(job, enqueue_on_failure=False)
            except Exception:
                self._retry_later(job)
                raise
            if report.status in ("SENT", "SKIPPED"):
                outcome = report.status
            else:
                outcome = self._retry_later(job)
        self._audit.drain(self._audit_batch_size)
        return outcome

    def _retry_later(self, job: DispatchJob) -> str:
        """Put a popped job back on the queue, or dead-letter it once out of requeues."""
        job.requeues += 1
        if job.requeues <= self._max_requeues:
            if self._queue.push(job):
                return "REQUEUED"
            LOGGER.error("Requeue failed for %s job; moving it to dead letter", job.channel)
        else:
            LOGGER.error(
                "Moving %s job for %s to dead letter after %s requeues",
                job.channel,
                ", ".join(job.recipients),
                job.requeues - 1,
            )
        if self._queue.dead_letter(job):
            return "DEAD_LETTER"
        LOGGER.critical("Dropping undeliverable job: %s", job.to_json())
        return "LOST"

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="notification-queue-worker", daemon=True
        )
        self._thread.start()
        LOGGER.info("Queue worker started")

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        LOGGER.info("Queue worker stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                LOGGER.exception("Queue worker iteration failed")
                self._stop.wait(self._error_backoff_seconds)
                continue
            self._stop.wait(self._poll_interval_seconds)

"""
Rendition job pipeline.

Produces print-ready PDFs for a book version and preflights them. Each
rendition owns three jobs: interior, cover and preflight.

Job state machine (explicit, driven by the scheduler):

    WAITING --tick--> ACTIVE --ok--> COMPLETED
                        |
                        +--fail, attempts < max--> WAITING (next_run_at = now + 2s * 2^(attempts-1))
                        +--fail, attempts = max--> FAILED  (rendition FAILED, notifier told)

The preflight job is delayed by preflight_delay_seconds rather than wired as
a dependency; if it runs before the renders finish it reports FILE_MISSING,
which fails the rendition like any other preflight error.

Thread Model:
    Scheduler thread ("Renditions") calls tick() every SCHEDULER_INTERVAL
    ├── token bucket caps job starts per second
    └── ThreadPoolExecutor (worker_concurrency) runs the jobs

    All job and rendition writes go through _transition() under one lock.
    tick(now) can also be called directly; it runs one scheduling pass and
    by default waits for the jobs it started.

Maintenance (run_maintenance, driven by /cron/renditions/maintenance):
    retry_failed_jobs   - exhausted renditions get a fresh set of attempts
    cleanup_jobs        - finished jobs past job_retention_days are dropped
    check_failure_rate  - critical log when the last hour mostly failed
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from config import FulfillmentConfig
from core.exceptions import InvalidSpec, JobExhausted, SubmissionConflict
from core.rate_limiter import TokenBucket
from logging_config import get_job_logger, get_logger, set_thread_name
from models.preflight import PreflightIssue, PreflightResult, Severity
from models.print_spec import BindingType, PrintSpec, TrimSize, utc_now
from models.rendition import JobState, JobType, Rendition, RenditionJob, RenditionStatus
from modules.pdf_inspector import FileMetadata, PDFInspector
from modules.preflight import PreflightInput, run_preflight
from services.collaborators import Notifier, Renderer, Storage


logger = get_logger(__name__)

SCHEDULER_INTERVAL_SECONDS = 0.5
RENDER_JOBS = (JobType.INTERIOR, JobType.COVER)

FAILURE_ALERT_MIN_JOBS = 10
FAILURE_ALERT_SUCCESS_RATE = 50.0

DEFAULT_TRIM = TrimSize(6.0, 9.0)


@dataclass(frozen=True)
class _Measured:
    """Inspection results for the stored files of a rendition."""

    interior: Optional[FileMetadata]
    cover: Optional[FileMetadata]
    issues: List[PreflightIssue]


class RenditionPipeline:
    """
    Creates renditions and runs their jobs.

    Attributes:
        is_running: Whether the scheduler thread is active
    """

    def __init__(
        self,
        renderer: Renderer,
        storage: Storage,
        notifier: Optional[Notifier] = None,
        config: Optional[FulfillmentConfig] = None,
        inspector: Optional[PDFInspector] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._renderer = renderer
        self._storage = storage
        self._notifier = notifier
        self._config = config or FulfillmentConfig()
        self._inspector = inspector or PDFInspector()
        self._clock = clock

        self._renditions: Dict[str, Rendition] = {}
        self._jobs: Dict[str, RenditionJob] = {}
        self._lock = threading.Lock()

        self._executor = ThreadPoolExecutor(
            max_workers=self._config.worker_concurrency,
            thread_name_prefix="Render",
        )
        rate = self._config.rate_limit_per_second
        self._bucket = TokenBucket(rate_per_sec=rate, burst=max(1, int(rate)))

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._is_running = False
        self._consecutive_failures = 0

        logger.info(
            f"RenditionPipeline initialized (workers: {self._config.worker_concurrency}, "
            f"rate: {rate}/s, max attempts: {self._config.job_max_attempts})"
        )

    @property
    def is_running(self) -> bool:
        return self._is_running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._is_running:
            logger.warning("RenditionPipeline already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._schedule_loop, name="Renditions", daemon=True)
        self._is_running = True
        self._thread.start()
        logger.info("Rendition scheduler thread started")

    def stop(self) -> None:
        if self._is_running:
            self._stop_event.set()
            if self._thread and self._thread.is_alive():
                self._thread.join(timeout=5.0)
                if self._thread.is_alive():
                    logger.warning("Rendition scheduler did not stop cleanly")
            self._is_running = False
            self._thread = None
            logger.info("Rendition scheduler thread stopped")
        self._executor.shutdown(wait=False)

    def _schedule_loop(self) -> None:
        set_thread_name("Renditions")
        logger.info("Rendition scheduler loop starting")
        while not self._stop_event.is_set():
            try:
                self.tick(wait_for_jobs=False)
                if self._consecutive_failures:
                    logger.info(f"Rendition scheduler recovered after {self._consecutive_failures} failures")
                self._consecutive_failures = 0
            except Exception as e:
                self._consecutive_failures += 1
                if self._consecutive_failures <= 3:
                    logger.error(f"Rendition scheduler pass failed ({self._consecutive_failures}): {e}")
                elif self._consecutive_failures % 5 == 0:
                    logger.error(
                        f"Rendition scheduler still failing ({self._consecutive_failures} consecutive): {e}"
                    )
            self._stop_event.wait(timeout=SCHEDULER_INTERVAL_SECONDS)
        logger.info("Rendition scheduler loop exiting")

    # ------------------------------------------------------------------
    # Renditions
    # ------------------------------------------------------------------

    def create_rendition(self, book_id: str, version: int = 1, spec: Optional[PrintSpec] = None) -> Rendition:
        """Create a rendition with its interior, cover and preflight jobs."""
        now = self._clock()
        rendition = Rendition(book_id=book_id, version=version, spec=spec, created_at=now, updated_at=now)
        with self._lock:
            self._renditions[rendition.id] = rendition
        for job_type in RENDER_JOBS:
            self.enqueue_job(rendition.id, job_type)
        self.enqueue_job(
            rendition.id,
            JobType.PREFLIGHT,
            delay_seconds=self._config.preflight_delay_seconds,
        )
        logger.info(f"Created rendition {rendition.id} for book {book_id} v{version}")
        return self.get_rendition(rendition.id)

    def enqueue_job(self, rendition_id: str, job_type: JobType, delay_seconds: float = 0.0) -> RenditionJob:
        """
        Queue a job for a rendition.

        Raises:
            InvalidSpec: Unknown or finished rendition
            SubmissionConflict: A job of this type is already in flight
        """
        with self._lock:
            rendition = self._renditions.get(rendition_id)
            if rendition is None:
                raise InvalidSpec(f"Unknown rendition: {rendition_id}")
            if rendition.status.is_final:
                raise InvalidSpec(
                    f"Rendition {rendition_id} is {rendition.status.value}",
                    {"rendition_id": rendition_id},
                )
            for job in self._jobs.values():
                if job.rendition_id == rendition_id and job.job_type is job_type and job.is_in_flight:
                    raise SubmissionConflict(
                        rendition_id,
                        f"A {job_type.value} job is already queued for rendition {rendition_id}",
                    )
            return self._new_job(rendition_id, job_type, delay_seconds).copy()

    def _new_job(self, rendition_id: str, job_type: JobType, delay_seconds: float = 0.0) -> RenditionJob:
        """Register a waiting job. Call with the lock held."""
        now = self._clock()
        job = RenditionJob(
            rendition_id=rendition_id,
            job_type=job_type,
            max_attempts=self._config.job_max_attempts,
            next_run_at=now + timedelta(seconds=delay_seconds),
            created_at=now,
        )
        self._jobs[job.id] = job
        return job

    def find_rendition(self, rendition_id: str) -> Optional[Rendition]:
        with self._lock:
            rendition = self._renditions.get(rendition_id)
            return rendition.copy() if rendition else None

    def get_rendition(self, rendition_id: str) -> Rendition:
        """
        Raises:
            InvalidSpec: Unknown rendition
        """
        rendition = self.find_rendition(rendition_id)
        if rendition is None:
            raise InvalidSpec(f"Unknown rendition: {rendition_id}", {"rendition_id": rendition_id})
        return rendition

    def require_ready(self, rendition_id: str) -> Rendition:
        """
        Rendition that can be quoted against.

        Raises:
            InvalidSpec: Unknown, failed (not by exhaustion) or still processing
            JobExhausted: A job hit its retry ceiling
        """
        rendition = self.get_rendition(rendition_id)
        if rendition.status is RenditionStatus.COMPLETED:
            return rendition

        if rendition.status is RenditionStatus.FAILED and rendition.exhausted:
            failed = next(
                (j for j in self.list_jobs(rendition_id) if j.state is JobState.FAILED),
                None,
            )
            raise JobExhausted(
                rendition_id,
                failed.job_type.value if failed else "render",
                failed.attempts if failed else self._config.job_max_attempts,
                (failed.error or "") if failed else "",
            )
        if rendition.status is RenditionStatus.FAILED:
            raise InvalidSpec(
                f"Rendition {rendition_id} failed: {rendition.error}",
                {
                    "rendition_id": rendition_id,
                    "preflight": rendition.preflight.to_dict() if rendition.preflight else None,
                },
            )
        raise InvalidSpec(
            f"Rendition {rendition_id} is not ready ({rendition.status.value})",
            {"rendition_id": rendition_id, "status": rendition.status.value},
        )

    def list_jobs(self, rendition_id: Optional[str] = None) -> List[RenditionJob]:
        with self._lock:
            return [
                job.copy() for job in self._jobs.values()
                if rendition_id is None or job.rendition_id == rendition_id
            ]

    def queue_metrics(self) -> Dict[str, int]:
        """Job counts by state."""
        counts = {state.value: 0 for state in JobState}
        with self._lock:
            for job in self._jobs.values():
                counts[job.state.value] += 1
            counts["discarded"] = sum(1 for job in self._jobs.values() if job.discarded)
            counts["renditions"] = len(self._renditions)
        return counts

    def cancel_rendition(self, rendition_id: str) -> Rendition:
        """
        Cancel a rendition: drop waiting jobs, discard active ones.

        Raises:
            InvalidSpec: Unknown rendition
        """
        with self._lock:
            rendition = self._renditions.get(rendition_id)
            if rendition is None:
                raise InvalidSpec(f"Unknown rendition: {rendition_id}", {"rendition_id": rendition_id})
            if rendition.status.is_final:
                return rendition.copy()

            removed = discarded = 0
            for job_id, job in list(self._jobs.items()):
                if job.rendition_id != rendition_id:
                    continue
                if job.state is JobState.WAITING:
                    del self._jobs[job_id]
                    removed += 1
                elif job.state is JobState.ACTIVE:
                    job.discarded = True
                    discarded += 1

            rendition.status = RenditionStatus.CANCELLED
            rendition.updated_at = self._clock()
            logger.info(
                f"Cancelled rendition {rendition_id} ({removed} waiting removed, {discarded} active discarded)"
            )
            return rendition.copy()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def job_stats(self, hours: float = 24.0, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Statistics for jobs created in the last `hours`.

        Returns:
            Counts by state, avg_duration_seconds over completed jobs and
            success_rate (percent of finished jobs that completed)
        """
        now = now or self._clock()
        cutoff = now - timedelta(hours=hours)
        with self._lock:
            jobs = [job.copy() for job in self._jobs.values() if job.created_at >= cutoff]

        counts = {state.value: sum(1 for job in jobs if job.state is state) for state in JobState}
        durations = [
            job.duration_seconds for job in jobs
            if job.state is JobState.COMPLETED and job.duration_seconds is not None
        ]
        finished = counts[JobState.COMPLETED.value] + counts[JobState.FAILED.value]
        success_rate = counts[JobState.COMPLETED.value] / finished * 100 if finished else 0.0
        return {
            "total": len(jobs),
            **counts,
            "avg_duration_seconds": round(sum(durations) / len(durations), 3) if durations else 0.0,
            "success_rate": round(success_rate, 2),
        }

    def check_failure_rate(self, now: Optional[datetime] = None) -> bool:
        """
        Log a critical alert when more than FAILURE_ALERT_MIN_JOBS jobs ran in
        the last hour and fewer than FAILURE_ALERT_SUCCESS_RATE percent of
        the finished ones succeeded.

        Returns:
            True if the alert fired
        """
        stats = self.job_stats(hours=1, now=now)
        if stats["total"] > FAILURE_ALERT_MIN_JOBS and stats["success_rate"] < FAILURE_ALERT_SUCCESS_RATE:
            logger.critical(
                f"High rendition job failure rate: {stats['success_rate']}% success "
                f"over {stats['total']} jobs in the last hour"
            )
            return True
        return False

    def retry_failed_jobs(self, max_age_hours: Optional[float] = None, now: Optional[datetime] = None) -> int:
        """
        Give renditions that failed by exhaustion a fresh set of attempts.

        Only renditions that failed within `max_age_hours` (default
        job_retry_window_hours) are touched. Preflight failures are not
        retried: the same files would fail the same checks.

        Returns:
            Number of jobs put back in the queue
        """
        now = now or self._clock()
        hours = self._config.job_retry_window_hours if max_age_hours is None else max_age_hours
        cutoff = now - timedelta(hours=hours)
        retried = 0
        with self._lock:
            for rendition in self._renditions.values():
                if rendition.status is not RenditionStatus.FAILED or not rendition.exhausted:
                    continue
                if rendition.updated_at < cutoff:
                    continue

                jobs = [job for job in self._jobs.values() if job.rendition_id == rendition.id]
                for job in jobs:
                    # A render that finished after the rendition failed left no output
                    if job.state is JobState.COMPLETED and self._has_output(rendition, job.job_type):
                        continue
                    if job.state not in (JobState.COMPLETED, JobState.FAILED):
                        continue
                    job.state = JobState.WAITING
                    job.attempts = 0
                    job.error = None
                    job.started_at = None
                    job.completed_at = None
                    job.next_run_at = now
                    retried += 1

                # Jobs dropped when the rendition failed are queued again
                present = {job.job_type for job in jobs}
                for job_type in RENDER_JOBS:
                    if job_type not in present:
                        self._new_job(rendition.id, job_type)
                        retried += 1
                if JobType.PREFLIGHT not in present:
                    self._new_job(rendition.id, JobType.PREFLIGHT, self._config.preflight_delay_seconds)
                    retried += 1

                has_output = any(self._has_output(rendition, job_type) for job_type in RENDER_JOBS)
                rendition.status = RenditionStatus.PROCESSING if has_output else RenditionStatus.PENDING
                rendition.exhausted = False
                rendition.error = None
                rendition.updated_at = now
                logger.info(f"Retrying exhausted rendition {rendition.id}")

        if retried:
            logger.info(f"Requeued {retried} rendition jobs")
        return retried

    @staticmethod
    def _has_output(rendition: Rendition, job_type: JobType) -> bool:
        if job_type is JobType.INTERIOR:
            return bool(rendition.interior_pdf_url)
        if job_type is JobType.COVER:
            return bool(rendition.cover_pdf_url)
        return rendition.preflight is not None

    def cleanup_jobs(self, days: Optional[float] = None, now: Optional[datetime] = None) -> int:
        """
        Drop finished jobs of finished renditions older than `days`
        (default job_retention_days), and cancelled or failed renditions
        left with no jobs. Completed renditions are kept for reorders.

        Returns:
            Number of jobs removed
        """
        now = now or self._clock()
        retention = self._config.job_retention_days if days is None else days
        cutoff = now - timedelta(days=retention)
        removed = 0
        with self._lock:
            for job_id, job in list(self._jobs.items()):
                rendition = self._renditions.get(job.rendition_id)
                if rendition is not None and not rendition.status.is_final:
                    continue
                if job.state not in (JobState.COMPLETED, JobState.FAILED):
                    continue
                if job.completed_at is None or job.completed_at >= cutoff:
                    continue
                del self._jobs[job_id]
                removed += 1

            owners = {job.rendition_id for job in self._jobs.values()}
            for rendition_id, rendition in list(self._renditions.items()):
                if (
                    rendition.status in (RenditionStatus.CANCELLED, RenditionStatus.FAILED)
                    and rendition_id not in owners
                    and rendition.updated_at < cutoff
                ):
                    del self._renditions[rendition_id]

        if removed:
            logger.info(f"Cleaned up {removed} rendition jobs older than {retention:g} days")
        return removed

    def run_maintenance(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """One maintenance pass: retry exhausted jobs, clean up, check the failure rate."""
        now = now or self._clock()
        return {
            "retried": self.retry_failed_jobs(now=now),
            "cleaned": self.cleanup_jobs(now=now),
            "high_failure_rate": self.check_failure_rate(now=now),
        }

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def tick(self, now: Optional[datetime] = None, wait_for_jobs: bool = True) -> List[str]:
        """
        Run one scheduling pass.

        Args:
            now: Reference time (defaults to the pipeline clock)
            wait_for_jobs: Block until the started jobs finish

        Returns:
            Ids of the jobs started
        """
        now = now or self._clock()
        started: List[RenditionJob] = []
        with self._lock:
            due = sorted(
                (
                    job for job in self._jobs.values()
                    if job.state is JobState.WAITING and not job.discarded and job.next_run_at <= now
                ),
                key=lambda j: j.next_run_at,
            )
            for job in due:
                if not self._bucket.try_take():
                    logger.debug("Rendition job start rate limit reached, deferring")
                    break
                job.state = JobState.ACTIVE
                job.attempts += 1
                job.started_at = now
                job.error = None
                started.append(job.copy())

        futures: List[Future] = [self._executor.submit(self._run_job, job, now) for job in started]
        if wait_for_jobs and futures:
            wait(futures)
        return [job.id for job in started]

    def _run_job(self, job: RenditionJob, now: datetime) -> None:
        set_thread_name(f"Render-{job.id[:8]}")
        job_logger = get_job_logger(job.id)
        clock_start = self._clock()
        job_logger.info(f"Starting {job.job_type.value} job (attempt {job.attempts}/{job.max_attempts})")

        rendition = self.find_rendition(job.rendition_id)
        if rendition is None:
            job_logger.warning("Rendition vanished, dropping job")
            return

        try:
            if job.job_type is JobType.PREFLIGHT:
                result = self._run_preflight(rendition)
            else:
                result = self._run_render(rendition, job.job_type)
        except Exception as e:
            job_logger.warning(f"{job.job_type.value} job failed: {e}")
            self._transition(job.id, self._finished_at(now, clock_start), error=f"{type(e).__name__}: {e}")
            return

        job_logger.info(f"{job.job_type.value} job completed")
        self._transition(job.id, self._finished_at(now, clock_start), result=result)

    def _finished_at(self, now: datetime, clock_start: datetime) -> datetime:
        """The tick's reference time advanced by how long the job ran."""
        return now + max(timedelta(0), self._clock() - clock_start)

    def _run_render(self, rendition: Rendition, job_type: JobType) -> Dict[str, Any]:
        output = self._renderer.render(rendition.book_id, rendition.version, job_type)
        if not output.pdf_bytes:
            raise ValueError("renderer returned an empty PDF")
        path = f"{rendition.book_id}/v{rendition.version}/{rendition.id}-{job_type.value}.pdf"
        url = self._storage.store(output.pdf_bytes, path)
        return {"url": url, "page_count": output.page_count, "size_bytes": len(output.pdf_bytes)}

    def _run_preflight(self, rendition: Rendition) -> Dict[str, Any]:
        measured = self._measure(rendition)
        base = rendition.spec
        if base is None:
            dims = measured.interior.first_page if measured.interior else None
            trim = TrimSize(dims.width_in, dims.height_in) if dims and dims.width_in > 0 and dims.height_in > 0 else DEFAULT_TRIM
            base = PrintSpec(trim_size=trim, page_count=1, binding=BindingType.PERFECT_BOUND)

        page_count = (
            (measured.interior.pages if measured.interior and measured.interior.pages else None)
            or rendition.page_count
            or base.page_count
        )
        spec = base.with_changes(
            interior_pdf_url=rendition.interior_pdf_url or "",
            cover_pdf_url=rendition.cover_pdf_url or "",
            page_count=page_count,
        )
        size = sum(m.size_bytes for m in (measured.interior, measured.cover) if m) or rendition.file_size_bytes
        result = run_preflight(PreflightInput(spec=spec, file_size_bytes=size, bleed_in=0.125))
        if measured.issues:
            result = PreflightResult.merge(result, PreflightResult.from_issues(measured.issues))
        return {"preflight": result.to_dict()}

    def _measure(self, rendition: Rendition) -> _Measured:
        found: Dict[str, Optional[FileMetadata]] = {"interior": None, "cover": None}
        issues: List[PreflightIssue] = []
        for label, url in (("interior", rendition.interior_pdf_url), ("cover", rendition.cover_pdf_url)):
            if not url:
                continue
            path = self._storage.local_path(url)
            if path is None:
                continue
            try:
                found[label] = self._inspector.inspect(path)
            except InvalidSpec as e:
                issues.append(PreflightIssue(
                    code="FILE_UNREADABLE",
                    message=f"{label.capitalize()} PDF could not be read",
                    severity=Severity.HIGH,
                    location=label,
                    details={"error": e.message},
                ))
        return _Measured(interior=found["interior"], cover=found["cover"], issues=issues)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        job_id: str,
        now: datetime,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ) -> None:
        """Apply a job outcome and its effect on the rendition, atomically."""
        notify: Optional[tuple] = None
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.state is not JobState.ACTIVE:
                return
            job_logger = get_job_logger(job_id)
            rendition = self._renditions.get(job.rendition_id)

            if job.discarded:
                job.state = JobState.COMPLETED if error is None else JobState.FAILED
                job.completed_at = now
                job_logger.info("Rendition was cancelled, result discarded")
                return

            if error is None:
                job.state = JobState.COMPLETED
                job.completed_at = now
                job.result = result
                if rendition is not None and not rendition.status.is_final:
                    self._apply_result(rendition, job, result or {}, now)
                    self._finalize(rendition, now)
                    if rendition.status is RenditionStatus.FAILED:
                        notify = (rendition.copy(), rendition.error or "Preflight failed")
            elif rendition is None or rendition.status.is_final:
                job.error = error
                job.state = JobState.FAILED
                job.completed_at = now
                job_logger.info("Rendition already finished, not retrying")
            elif job.attempts < job.max_attempts:
                job.error = error
                delay = self._config.job_backoff_base_seconds * (2 ** (job.attempts - 1))
                job.state = JobState.WAITING
                job.next_run_at = now + timedelta(seconds=delay)
                job_logger.info(f"Retrying in {delay:g}s (attempt {job.attempts}/{job.max_attempts})")
            else:
                job.error = error
                job.state = JobState.FAILED
                job.completed_at = now
                exhausted = JobExhausted(job.rendition_id, job.job_type.value, job.attempts, error)
                job_logger.error(exhausted.message)
                if rendition is not None and not rendition.status.is_final:
                    rendition.status = RenditionStatus.FAILED
                    rendition.exhausted = True
                    rendition.error = exhausted.message
                    rendition.updated_at = now
                    self._drop_waiting_jobs(rendition.id)
                    notify = (rendition.copy(), exhausted.message)

        if notify is not None and self._notifier is not None:
            try:
                self._notifier.rendition_failed(*notify)
            except Exception:
                logger.exception(f"Notifier failed for rendition {notify[0].id}")

    def _apply_result(self, rendition: Rendition, job: RenditionJob, result: Dict[str, Any], now: datetime) -> None:
        if job.job_type is JobType.PREFLIGHT:
            rendition.preflight = PreflightResult.from_dict(result.get("preflight") or {})
        else:
            if job.job_type is JobType.INTERIOR:
                rendition.interior_pdf_url = result.get("url")
                rendition.page_count = result.get("page_count")
            else:
                rendition.cover_pdf_url = result.get("url")
            rendition.file_size_bytes = (rendition.file_size_bytes or 0) + int(result.get("size_bytes") or 0)
        if rendition.status is RenditionStatus.PENDING:
            rendition.status = RenditionStatus.PROCESSING
        rendition.updated_at = now

    def _finalize(self, rendition: Rendition, now: datetime) -> None:
        if rendition.status.is_final:
            return

        if rendition.preflight is not None and not rendition.preflight.passed:
            rendition.status = RenditionStatus.FAILED
            rendition.error = "Preflight failed: " + "; ".join(e.message for e in rendition.preflight.errors)
            rendition.updated_at = now
            self._drop_waiting_jobs(rendition.id)
            logger.warning(f"Rendition {rendition.id} failed preflight")
            return

        jobs = [j for j in self._jobs.values() if j.rendition_id == rendition.id]
        if len(jobs) == 3 and all(j.state is JobState.COMPLETED for j in jobs):
            rendition.status = RenditionStatus.COMPLETED
            rendition.updated_at = now
            logger.info(f"Rendition {rendition.id} completed")

    def _drop_waiting_jobs(self, rendition_id: str) -> None:
        for job_id, job in list(self._jobs.items()):
            if job.rendition_id == rendition_id and job.state is JobState.WAITING:
                del self._jobs[job_id]

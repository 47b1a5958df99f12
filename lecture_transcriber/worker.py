"""Transcription worker: claim, process and reconcile jobs.

Each invocation is stateless. run_batch() claims up to ``limit`` jobs and
carries each through download -> transcribe -> archive -> reconcile before
claiming the next. Failures after a claim are converted into a failed job
and never abort the batch; a failure to claim aborts the invocation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from lecture_transcriber.asr.interface import (
    TranscriptionEngine,
    TranscriptionOptions,
    TranscriptionResult,
)
from lecture_transcriber.observability.metrics import (
    JobMetrics,
    StageTimer,
    failed_stage,
    log_job_metrics,
)
from lecture_transcriber.queue.scheduler import ClaimScheduler
from lecture_transcriber.reconciler import Reconciler
from lecture_transcriber.storage.blob_resolver import BlobResolver
from lecture_transcriber.storage.job_store import JobStore, TranscriptionJob
from lecture_transcriber.storage.lecture_store import LectureStore
from lecture_transcriber.utils.errors import PersistenceError, describe_error

logger = logging.getLogger(__name__)

MIN_BATCH_LIMIT = 1
MAX_BATCH_LIMIT = 3
INTERRUPTED_MESSAGE = (
    "Transcription was interrupted before it finished. Please retry."
)


def clamp_limit(raw: Any) -> int:
    """Parse a batch limit and clamp it to [1, 3]; unparseable means 1."""
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return MIN_BATCH_LIMIT
    return min(max(value, MIN_BATCH_LIMIT), MAX_BATCH_LIMIT)


@dataclass
class JobOutcome:
    """Terminal result of processing one claimed job."""

    job_id: str
    status: Literal["completed", "failed"]
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"jobId": self.job_id, "status": self.status}
        if self.error is not None:
            body["error"] = self.error
        return body


def _seconds_between(start: str | None, end: str | None) -> float:
    if not start or not end:
        return 0.0
    try:
        delta = datetime.fromisoformat(end) - datetime.fromisoformat(start)
    except ValueError:
        return 0.0
    return max(delta.total_seconds(), 0.0)


class TranscriptionWorker:
    """Runs claim-process-reconcile cycles.

    Args:
        scheduler: Claims pending jobs.
        resolver: Fetches audio and archives raw responses.
        engine: Transcription provider.
        reconciler: Writes outcomes to the job and lecture.
        job_store: Used by the stale-job reaper.
        lecture_store: Used by the stale-job reaper.
        options: Recognition options for every job.
        stale_after_seconds: Processing jobs claimed longer ago than this
            are failed by reap_stale_jobs(). 0 disables reaping.
        archive_raw_responses: Store the provider payload in the blob store.
    """

    def __init__(
        self,
        scheduler: ClaimScheduler,
        resolver: BlobResolver,
        engine: TranscriptionEngine,
        reconciler: Reconciler,
        job_store: JobStore,
        lecture_store: LectureStore,
        options: TranscriptionOptions | None = None,
        stale_after_seconds: float = 0.0,
        archive_raw_responses: bool = True,
    ) -> None:
        self._scheduler = scheduler
        self._resolver = resolver
        self._engine = engine
        self._reconciler = reconciler
        self._job_store = job_store
        self._lecture_store = lecture_store
        self.options = options or TranscriptionOptions()
        self.stale_after_seconds = max(float(stale_after_seconds), 0.0)
        self.archive_raw_responses = archive_raw_responses

    async def run_batch(self, limit: Any = MIN_BATCH_LIMIT) -> list[JobOutcome]:
        """Process up to ``limit`` jobs sequentially.

        Returns:
            One outcome per claimed job, in processing order. Empty when no
            job was pending.

        Raises:
            PersistenceError: If claiming fails.
        """
        batch_limit = clamp_limit(limit)
        if self.stale_after_seconds > 0:
            await self.reap_stale_jobs()

        outcomes: list[JobOutcome] = []
        for _ in range(batch_limit):
            job = await self._scheduler.claim_next()
            if job is None:
                break
            outcomes.append(await self.process_job(job))

        if outcomes:
            logger.info("Processed %d job(s) this invocation", len(outcomes))
        return outcomes

    async def process_job(self, job: TranscriptionJob) -> JobOutcome:
        """Carry one claimed job to a terminal state."""
        wall_start = time.monotonic()
        timings: dict[str, float] = {}
        metrics = JobMetrics(
            job_id=job.id,
            owner_id=job.owner_id,
            status="failed",
            attempts=job.attempts,
            queue_wait_time_seconds=_seconds_between(job.created_at, job.started_at),
            provider=self._engine.provider,
        )

        try:
            with StageTimer("download", timings):
                audio = await self._resolver.fetch_audio(job)
            metrics.audio_size_bytes = len(audio)

            with StageTimer("transcribe", timings):
                result = await self._engine.transcribe(
                    audio, job.audio_mime_type, self.options
                )
            metrics.audio_duration_seconds = result.metadata.duration
            metrics.transcript_characters = len(result.transcript)
            metrics.model = result.metadata.model

            extra_metadata = await self._archive(job, result, timings)

            with StageTimer("reconcile", timings):
                await self._reconciler.on_success(job, result, extra_metadata)

        except Exception as exc:
            message = describe_error(exc)
            metrics.error_stage = failed_stage(timings) or "unknown"
            metrics.error_message = message
            logger.error(
                "Job failed at stage '%s'",
                metrics.error_stage,
                exc_info=True,
                extra={"job_id": job.id, "owner_id": job.owner_id, "error": message},
            )
            await self._reconciler.on_failure(job, message)
            outcome = JobOutcome(job_id=job.id, status="failed", error=message)
        else:
            metrics.status = "completed"
            outcome = JobOutcome(job_id=job.id, status="completed")

        metrics.processing_wall_time_seconds = time.monotonic() - wall_start
        metrics.stage_timings = timings
        log_job_metrics(metrics)
        return outcome

    async def _archive(
        self,
        job: TranscriptionJob,
        result: TranscriptionResult,
        timings: dict[str, float],
    ) -> dict[str, Any]:
        """Best-effort archive of the raw provider payload."""
        if not self.archive_raw_responses or not result.raw_response:
            return {}
        try:
            with StageTimer("archive", timings):
                key = await self._resolver.archive_raw_response(
                    job, result.raw_response, self._engine.provider or "provider"
                )
        except Exception:
            timings.pop("_archive_failed", None)
            logger.warning(
                "Failed to archive raw provider response, continuing",
                exc_info=True,
                extra={"job_id": job.id, "stage": "archive"},
            )
            return {}
        return {"raw_response_path": key}

    async def reap_stale_jobs(self) -> int:
        """Fail processing jobs whose claim is older than the threshold.

        A reaped job is failed, never put back to pending; re-enqueueing
        stays the only retry path.

        Returns:
            Number of jobs failed by this call.
        """
        if self.stale_after_seconds <= 0:
            return 0

        cutoff = (
            datetime.now(UTC) - timedelta(seconds=self.stale_after_seconds)
        ).isoformat(timespec="microseconds")
        stale_jobs = await self._job_store.list_stale_processing(cutoff)

        reaped = 0
        for job in stale_jobs:
            failed = await self._job_store.mark_failed(
                job.id, INTERRUPTED_MESSAGE, started_before=cutoff
            )
            if failed is None:
                continue
            reaped += 1
            try:
                await self._lecture_store.mark_failed(job.owner_id, INTERRUPTED_MESSAGE)
            except PersistenceError:
                logger.error(
                    "Failed to mirror reaped job onto lecture",
                    exc_info=True,
                    extra={"job_id": job.id, "owner_id": job.owner_id},
                )
            logger.warning(
                "Reaped stale processing job",
                extra={"job_id": job.id, "owner_id": job.owner_id, "stage": "reap"},
            )
        return reaped

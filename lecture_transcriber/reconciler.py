"""Writes job outcomes back to the job row and the owning lecture.

There is no transaction spanning the two tables, so writes are ordered:
on success the lecture is written before the job is completed, which means
a lecture write failure leaves the job in processing for the worker to
fail. On failure the job is failed first because job state is the source
of truth for whether an attempt failed.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from lecture_transcriber.asr.interface import TranscriptionResult
from lecture_transcriber.storage.job_store import JobStore, TranscriptionJob
from lecture_transcriber.storage.lecture_store import LectureStore
from lecture_transcriber.utils.errors import PersistenceError, describe_error

logger = logging.getLogger(__name__)


def round_duration(duration: float | None) -> int | None:
    """Round seconds to the nearest whole second, halves rounding up."""
    if duration is None:
        return None
    return int(math.floor(duration + 0.5))


class Reconciler:
    """Applies success and failure outcomes for claimed jobs."""

    def __init__(self, job_store: JobStore, lecture_store: LectureStore) -> None:
        self._job_store = job_store
        self._lecture_store = lecture_store

    async def on_success(
        self,
        job: TranscriptionJob,
        result: TranscriptionResult,
        extra_job_metadata: dict[str, Any] | None = None,
    ) -> TranscriptionJob:
        """Save the transcript on the lecture, then complete the job.

        Args:
            job: The claimed job.
            result: Normalized transcription.
            extra_job_metadata: Additional keys for the job's metadata only
                (e.g., where the raw response was archived).

        Returns:
            The completed job.

        Raises:
            PersistenceError: If either write fails. The job is not marked
                completed when the lecture write fails.
        """
        transcription_metadata = result.metadata.as_dict()

        existing = await self._lecture_store.get_metadata(job.owner_id)
        merged = {**existing, **transcription_metadata}

        await self._lecture_store.apply_transcript(
            job.owner_id,
            transcript=result.transcript,
            duration=round_duration(result.metadata.duration),
            metadata=merged,
        )

        job_metadata = {
            **job.result_metadata,
            **transcription_metadata,
            **(extra_job_metadata or {}),
        }
        completed = await self._job_store.mark_completed(job.id, job_metadata)
        if completed is None:
            raise PersistenceError(
                "Job is no longer processing; completion was not recorded",
                job_id=job.id,
                operation="complete_job",
            )

        logger.info(
            "Transcription completed",
            extra={
                "job_id": job.id,
                "owner_id": job.owner_id,
                "attempts": job.attempts,
                "stage": "reconcile",
            },
        )
        return completed

    async def on_failure(self, job: TranscriptionJob, error: BaseException | str) -> None:
        """Fail the job and mirror the cause onto the lecture.

        Both writes are best-effort: a failing write is logged and the other
        write is still attempted.
        """
        message = error if isinstance(error, str) else describe_error(error)

        logger.error(
            "Transcription failed: %s",
            message,
            extra={
                "job_id": job.id,
                "owner_id": job.owner_id,
                "attempts": job.attempts,
                "stage": "reconcile",
                "error": message,
            },
        )

        try:
            failed = await self._job_store.mark_failed(job.id, message)
            if failed is None:
                logger.warning(
                    "Job was not in processing; failure not recorded on job",
                    extra={"job_id": job.id},
                )
        except PersistenceError:
            logger.error(
                "Failed to mark job failed", exc_info=True, extra={"job_id": job.id}
            )

        try:
            await self._lecture_store.mark_failed(job.owner_id, message)
        except PersistenceError:
            logger.error(
                "Failed to mirror failure onto lecture",
                exc_info=True,
                extra={"job_id": job.id, "owner_id": job.owner_id},
            )

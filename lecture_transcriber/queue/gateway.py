"""Enqueue gateway: turns a transcription request into a pending job."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from lecture_transcriber.storage.job_store import JobStatus, JobStore
from lecture_transcriber.storage.lecture_store import LectureStore
from lecture_transcriber.utils.errors import (
    NotAuthorizedError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS_MESSAGE = "ownerId and audioReference are required."
UNAUTHORIZED_MESSAGE = "Unauthorized"
NOT_FOUND_MESSAGE = "Lecture not found."


@dataclass
class EnqueueResult:
    job_id: str
    status: JobStatus


def _clean(value: str | None) -> str:
    return (value or "").strip()


class EnqueueGateway:
    """Validates, authorizes and records transcription requests."""

    def __init__(self, job_store: JobStore, lecture_store: LectureStore) -> None:
        self._job_store = job_store
        self._lecture_store = lecture_store

    async def enqueue(
        self,
        owner_id: str | None,
        requester_id: str | None,
        audio_reference: str | None,
        audio_mime_type: str | None = None,
    ) -> EnqueueResult:
        """Create a pending job for a lecture's audio.

        Pending and failed jobs for the same lecture are deleted first, so a
        re-enqueue is the retry path for a failed transcription.

        Raises:
            ValidationError: If owner_id or audio_reference is blank.
            NotAuthorizedError: If there is no requester.
            NotFoundError: If the lecture is missing or not the requester's.
            PersistenceError: If the stale-job delete or the insert fails.
        """
        owner_id = _clean(owner_id)
        requester_id = _clean(requester_id)
        audio_reference = _clean(audio_reference)
        audio_mime_type = _clean(audio_mime_type) or None

        if not owner_id or not audio_reference:
            raise ValidationError(REQUIRED_FIELDS_MESSAGE)
        if not requester_id:
            raise NotAuthorizedError(UNAUTHORIZED_MESSAGE)

        lecture = await self._lecture_store.get_owned(owner_id, requester_id)
        if lecture is None:
            raise NotFoundError(NOT_FOUND_MESSAGE, resource_id=owner_id)

        removed = await self._job_store.delete_stale(owner_id)
        if removed:
            logger.info(
                "Removed %d stale job(s) before enqueue",
                removed,
                extra={"owner_id": owner_id},
            )

        job = await self._job_store.insert(
            owner_id=owner_id,
            requester_id=requester_id,
            audio_reference=audio_reference,
            audio_mime_type=audio_mime_type,
        )

        try:
            await self._lecture_store.mark_pending(owner_id)
        except PersistenceError:
            logger.warning(
                "Failed to mirror pending status onto lecture",
                exc_info=True,
                extra={"job_id": job.id, "owner_id": owner_id},
            )

        logger.info(
            "Enqueued transcription job",
            extra={"job_id": job.id, "owner_id": owner_id, "stage": "enqueue"},
        )
        return EnqueueResult(job_id=job.id, status=job.status)

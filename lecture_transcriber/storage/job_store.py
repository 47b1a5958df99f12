"""Durable transcription job table backed by D1.

The job store exclusively owns ``transcription_jobs`` rows. Every status
transition is a guarded UPDATE whose WHERE clause names the state it leaves,
so a transition that would violate the lifecycle changes zero rows instead
of overwriting another worker's progress:

    pending --claim--> processing --mark_completed--> completed
                                  \\--mark_failed----> failed
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from lecture_transcriber.storage.d1_client import D1Client
from lecture_transcriber.utils.errors import PersistenceError

logger = logging.getLogger(__name__)

JobStatus = Literal["pending", "processing", "completed", "failed"]

PENDING: JobStatus = "pending"
PROCESSING: JobStatus = "processing"
COMPLETED: JobStatus = "completed"
FAILED: JobStatus = "failed"

# Statuses the enqueue gateway may delete before inserting a replacement.
STALE_STATUSES: tuple[JobStatus, ...] = (PENDING, FAILED)
TERMINAL_STATUSES: tuple[JobStatus, ...] = (COMPLETED, FAILED)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS transcription_jobs (
        id TEXT PRIMARY KEY,
        lecture_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        audio_path TEXT NOT NULL,
        audio_mime_type TEXT,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
        attempts INTEGER NOT NULL DEFAULT 0,
        error TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_transcription_jobs_status_created
        ON transcription_jobs (status, created_at, id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_transcription_jobs_lecture
        ON transcription_jobs (lecture_id, status)
    """,
)


def utc_now() -> str:
    """Current UTC time as a fixed-width ISO 8601 string.

    Fixed width keeps lexical ORDER BY on the TEXT columns chronological.
    """
    return datetime.now(UTC).isoformat(timespec="microseconds")


def decode_metadata(value: Any) -> dict[str, Any]:
    """Decode a JSON metadata column into a dict, tolerating bad data."""
    if isinstance(value, dict):
        return dict(value)
    if not value:
        return {}
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable metadata column: %r", value)
        return {}
    return decoded if isinstance(decoded, dict) else {}


@dataclass
class TranscriptionJob:
    """One request to transcribe an audio reference for a lecture."""

    id: str
    owner_id: str
    requester_id: str
    audio_reference: str
    audio_mime_type: str | None
    status: JobStatus
    attempts: int
    created_at: str
    last_error: str | None = None
    result_metadata: dict[str, Any] = field(default_factory=dict)
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> TranscriptionJob:
        """Build a job from a ``transcription_jobs`` row."""
        return cls(
            id=row["id"],
            owner_id=row["lecture_id"],
            requester_id=row["user_id"],
            audio_reference=row["audio_path"],
            audio_mime_type=row.get("audio_mime_type"),
            status=row["status"],
            attempts=int(row.get("attempts") or 0),
            created_at=row["created_at"],
            last_error=row.get("error"),
            result_metadata=decode_metadata(row.get("metadata")),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobStore:
    """Typed access to the ``transcription_jobs`` table."""

    def __init__(self, d1_client: D1Client) -> None:
        self._d1 = d1_client

    async def ensure_schema(self) -> None:
        """Create the job table and its indexes if they do not exist."""
        for statement in SCHEMA_STATEMENTS:
            await self._d1.query(statement.strip(), operation="ensure_schema")

    async def insert(
        self,
        owner_id: str,
        requester_id: str,
        audio_reference: str,
        audio_mime_type: str | None = None,
    ) -> TranscriptionJob:
        """Insert a new pending job with zero attempts.

        Raises:
            PersistenceError: If the insert fails or returns no row.
        """
        result = await self._d1.query(
            "INSERT INTO transcription_jobs "
            "(id, lecture_id, user_id, audio_path, audio_mime_type, status, "
            "attempts, error, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?, 'pending', 0, NULL, '{}', ?) "
            "RETURNING *",
            [
                str(uuid.uuid4()),
                owner_id,
                requester_id,
                audio_reference,
                audio_mime_type,
                utc_now(),
            ],
            operation="insert_job",
        )
        row = result.first()
        if row is None:
            raise PersistenceError(
                "Job insert returned no row", operation="insert_job"
            )
        return TranscriptionJob.from_row(row)

    async def delete_stale(self, owner_id: str) -> int:
        """Delete the owner's pending and failed jobs.

        Processing and completed jobs are left in place.

        Returns:
            Number of deleted rows.
        """
        result = await self._d1.query(
            "DELETE FROM transcription_jobs "
            "WHERE lecture_id = ? AND status IN (?, ?)",
            [owner_id, *STALE_STATUSES],
            operation="delete_stale_jobs",
        )
        return result.changes

    async def get(self, job_id: str) -> TranscriptionJob | None:
        result = await self._d1.query(
            "SELECT * FROM transcription_jobs WHERE id = ?",
            [job_id],
            operation="get_job",
        )
        row = result.first()
        return TranscriptionJob.from_row(row) if row else None

    async def list_for_owner(self, owner_id: str) -> list[TranscriptionJob]:
        """All jobs for a lecture, oldest first."""
        result = await self._d1.query(
            "SELECT * FROM transcription_jobs WHERE lecture_id = ? "
            "ORDER BY created_at ASC, id ASC",
            [owner_id],
            operation="list_jobs",
        )
        return [TranscriptionJob.from_row(row) for row in result.rows]

    async def next_pending(self) -> TranscriptionJob | None:
        """Oldest pending job by creation time, ties broken by id."""
        result = await self._d1.query(
            "SELECT * FROM transcription_jobs WHERE status = 'pending' "
            "ORDER BY created_at ASC, id ASC LIMIT 1",
            operation="select_pending_job",
        )
        row = result.first()
        return TranscriptionJob.from_row(row) if row else None

    async def claim(self, job_id: str) -> TranscriptionJob | None:
        """Atomically move a job from pending to processing.

        The single UPDATE only matches while the row is still pending, so of
        any number of concurrent callers exactly one gets the row back.

        Returns:
            The claimed job (attempts incremented, error cleared), or None if
            the job was no longer pending.
        """
        result = await self._d1.query(
            "UPDATE transcription_jobs "
            "SET status = 'processing', started_at = ?, "
            "attempts = attempts + 1, error = NULL "
            "WHERE id = ? AND status = 'pending' "
            "RETURNING *",
            [utc_now(), job_id],
            operation="claim_job",
        )
        row = result.first()
        return TranscriptionJob.from_row(row) if row else None

    async def mark_completed(
        self, job_id: str, metadata: dict[str, Any]
    ) -> TranscriptionJob | None:
        """Finish a processing job successfully.

        Returns:
            The completed job, or None if it was not in processing.
        """
        result = await self._d1.query(
            "UPDATE transcription_jobs "
            "SET status = 'completed', completed_at = ?, error = NULL, "
            "metadata = ? "
            "WHERE id = ? AND status = 'processing' "
            "RETURNING *",
            [utc_now(), json.dumps(metadata, default=str), job_id],
            operation="complete_job",
        )
        row = result.first()
        return TranscriptionJob.from_row(row) if row else None

    async def mark_failed(
        self,
        job_id: str,
        message: str,
        started_before: str | None = None,
    ) -> TranscriptionJob | None:
        """Fail a processing job with a human-readable message.

        Args:
            job_id: Job to fail.
            message: Cause stored in the ``error`` column.
            started_before: When set, only fail the job if it was claimed
                before this timestamp (used by the stale-job reaper).

        Returns:
            The failed job, or None if it was not in processing.
        """
        sql = (
            "UPDATE transcription_jobs "
            "SET status = 'failed', completed_at = ?, error = ? "
            "WHERE id = ? AND status = 'processing'"
        )
        params: list[Any] = [utc_now(), message, job_id]
        if started_before is not None:
            sql += " AND started_at < ?"
            params.append(started_before)
        result = await self._d1.query(
            sql + " RETURNING *", params, operation="fail_job"
        )
        row = result.first()
        return TranscriptionJob.from_row(row) if row else None

    async def list_stale_processing(
        self, started_before: str
    ) -> list[TranscriptionJob]:
        """Processing jobs claimed before the given timestamp."""
        result = await self._d1.query(
            "SELECT * FROM transcription_jobs "
            "WHERE status = 'processing' AND started_at < ? "
            "ORDER BY started_at ASC, id ASC",
            [started_before],
            operation="list_stale_jobs",
        )
        return [TranscriptionJob.from_row(row) for row in result.rows]

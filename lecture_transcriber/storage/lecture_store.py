"""Access to the shared ``lectures`` table.

Lectures are owned by the wider application. The pipeline reads ownership
for authorization and writes only the transcription fields: ``transcript``,
``transcription_status``, ``transcription_error``, ``duration`` and
``metadata``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from lecture_transcriber.storage.d1_client import D1Client
from lecture_transcriber.storage.job_store import decode_metadata
from lecture_transcriber.utils.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class LectureRecord:
    """The transcription-related view of a lecture row."""

    id: str
    user_id: str
    transcript: str | None = None
    transcription_status: str | None = None
    transcription_error: str | None = None
    duration: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> LectureRecord:
        duration = row.get("duration")
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            transcript=row.get("transcript"),
            transcription_status=row.get("transcription_status"),
            transcription_error=row.get("transcription_error"),
            duration=int(duration) if duration is not None else None,
            metadata=decode_metadata(row.get("metadata")),
        )


_SELECT = (
    "SELECT id, user_id, transcript, transcription_status, "
    "transcription_error, duration, metadata FROM lectures"
)


class LectureStore:
    """Reads and transcription-field writes on ``lectures``."""

    def __init__(self, d1_client: D1Client) -> None:
        self._d1 = d1_client

    async def get(self, lecture_id: str) -> LectureRecord | None:
        result = await self._d1.query(
            f"{_SELECT} WHERE id = ?", [lecture_id], operation="get_lecture"
        )
        row = result.first()
        return LectureRecord.from_row(row) if row else None

    async def get_owned(
        self, lecture_id: str, user_id: str
    ) -> LectureRecord | None:
        """Return the lecture only if it belongs to ``user_id``."""
        result = await self._d1.query(
            f"{_SELECT} WHERE id = ? AND user_id = ?",
            [lecture_id, user_id],
            operation="get_owned_lecture",
        )
        row = result.first()
        return LectureRecord.from_row(row) if row else None

    async def get_metadata(self, lecture_id: str) -> dict[str, Any]:
        """Current metadata map for a lecture.

        Raises:
            PersistenceError: If the lecture does not exist.
        """
        lecture = await self.get(lecture_id)
        if lecture is None:
            raise PersistenceError(
                f"Lecture '{lecture_id}' not found",
                operation="get_lecture_metadata",
            )
        return lecture.metadata

    async def mark_pending(self, lecture_id: str) -> bool:
        """Mirror a freshly enqueued job onto the lecture."""
        result = await self._d1.query(
            "UPDATE lectures SET transcription_status = 'pending', "
            "transcription_error = NULL WHERE id = ?",
            [lecture_id],
            operation="mark_lecture_pending",
        )
        return result.changes > 0

    async def apply_transcript(
        self,
        lecture_id: str,
        transcript: str,
        duration: int | None,
        metadata: dict[str, Any],
    ) -> None:
        """Write a completed transcription onto the lecture.

        Raises:
            PersistenceError: If the write fails or matches no lecture.
        """
        result = await self._d1.query(
            "UPDATE lectures SET transcript = ?, duration = ?, metadata = ?, "
            "transcription_status = 'completed', transcription_error = NULL "
            "WHERE id = ?",
            [transcript, duration, json.dumps(metadata, default=str), lecture_id],
            operation="apply_transcript",
        )
        if result.changes == 0:
            raise PersistenceError(
                f"Lecture '{lecture_id}' not found while saving transcript",
                operation="apply_transcript",
            )

    async def mark_failed(self, lecture_id: str, message: str) -> bool:
        """Mirror a failed job onto the lecture."""
        result = await self._d1.query(
            "UPDATE lectures SET transcription_status = 'failed', "
            "transcription_error = ? WHERE id = ?",
            [message, lecture_id],
            operation="mark_lecture_failed",
        )
        return result.changes > 0

"""Tests for lecture_transcriber.queue.gateway module."""

import pytest

from lecture_transcriber.queue.gateway import (
    NOT_FOUND_MESSAGE,
    REQUIRED_FIELDS_MESSAGE,
    EnqueueGateway,
)
from lecture_transcriber.utils.errors import (
    NotAuthorizedError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)


@pytest.fixture
def gateway(job_store, lecture_store):
    return EnqueueGateway(job_store, lecture_store)


class TestEnqueueValidation:
    """Input and authorization checks happen before any write."""

    @pytest.mark.parametrize(
        "owner_id,audio",
        [("", "A1"), ("L1", ""), ("   ", "A1"), (None, "A1"), ("L1", None)],
    )
    async def test_blank_fields_raise_validation_error(
        self, gateway, fake_d1, owner_id, audio
    ):
        fake_d1.statements.clear()

        with pytest.raises(ValidationError, match=REQUIRED_FIELDS_MESSAGE):
            await gateway.enqueue(owner_id, "user-1", audio)
        assert fake_d1.statements == []

    async def test_validation_checked_before_authorization(self, gateway):
        """Missing fields win over a missing requester."""
        with pytest.raises(ValidationError):
            await gateway.enqueue("", None, "A1")

    @pytest.mark.parametrize("requester", [None, "", "   "])
    async def test_missing_requester_raises_not_authorized(
        self, gateway, fake_d1, requester
    ):
        fake_d1.statements.clear()

        with pytest.raises(NotAuthorizedError):
            await gateway.enqueue("L1", requester, "A1")
        assert fake_d1.statements == []

    async def test_unknown_lecture_raises_not_found(self, gateway, fake_d1):
        with pytest.raises(NotFoundError, match=NOT_FOUND_MESSAGE):
            await gateway.enqueue("L404", "user-1", "A1")
        assert fake_d1.job_rows() == []

    async def test_foreign_lecture_raises_not_found(self, gateway, fake_d1):
        """A lecture owned by someone else looks like a missing one."""
        fake_d1.seed_lecture("L1", "someone-else")

        with pytest.raises(NotFoundError) as exc_info:
            await gateway.enqueue("L1", "user-1", "A1")
        assert exc_info.value.resource_id == "L1"
        assert fake_d1.job_rows() == []


class TestEnqueue:
    """Tests for EnqueueGateway.enqueue() side effects."""

    async def test_creates_pending_job_and_mirrors_lecture(self, gateway, fake_d1):
        fake_d1.seed_lecture("L1", "user-1")

        result = await gateway.enqueue(" L1 ", "user-1", " u1/L1/audio.webm ", "audio/webm")

        assert result.status == "pending"
        rows = fake_d1.job_rows("L1")
        assert len(rows) == 1
        assert rows[0]["id"] == result.job_id
        assert rows[0]["audio_path"] == "u1/L1/audio.webm"
        assert rows[0]["audio_mime_type"] == "audio/webm"
        assert rows[0]["user_id"] == "user-1"
        assert fake_d1.lecture_row("L1")["transcription_status"] == "pending"

    async def test_blank_mime_type_stored_as_null(self, gateway, fake_d1):
        fake_d1.seed_lecture("L1", "user-1")

        await gateway.enqueue("L1", "user-1", "A1", "  ")

        assert fake_d1.job_rows("L1")[0]["audio_mime_type"] is None

    async def test_reenqueue_replaces_failed_and_pending_jobs(
        self, gateway, fake_d1, job_store
    ):
        """Re-enqueueing is the retry path: stale jobs are removed."""
        fake_d1.seed_lecture("L1", "user-1")
        first = await gateway.enqueue("L1", "user-1", "A1")
        await job_store.claim(first.job_id)
        await job_store.mark_failed(first.job_id, "boom")
        await gateway.enqueue("L1", "user-1", "A1")

        latest = await gateway.enqueue("L1", "user-1", "A1")

        rows = fake_d1.job_rows("L1")
        assert [row["id"] for row in rows] == [latest.job_id]

    async def test_completed_jobs_are_kept(self, gateway, fake_d1, job_store):
        fake_d1.seed_lecture("L1", "user-1")
        first = await gateway.enqueue("L1", "user-1", "A1")
        await job_store.claim(first.job_id)
        await job_store.mark_completed(first.job_id, {})

        await gateway.enqueue("L1", "user-1", "A1")

        statuses = sorted(row["status"] for row in fake_d1.job_rows("L1"))
        assert statuses == ["completed", "pending"]

    async def test_insert_failure_propagates(self, gateway, fake_d1):
        fake_d1.seed_lecture("L1", "user-1")
        fake_d1.failures["INSERT INTO transcription_jobs"] = 500

        with pytest.raises(PersistenceError):
            await gateway.enqueue("L1", "user-1", "A1")

    async def test_lecture_mirror_failure_is_tolerated(self, gateway, fake_d1):
        """The job exists even if the lecture status update fails."""
        fake_d1.seed_lecture("L1", "user-1")
        fake_d1.failures["transcription_status = 'pending'"] = 500

        result = await gateway.enqueue("L1", "user-1", "A1")

        assert result.status == "pending"
        assert len(fake_d1.job_rows("L1")) == 1

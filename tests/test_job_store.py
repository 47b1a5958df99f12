"""Tests for lecture_transcriber.storage.job_store module."""

import json

import pytest

from lecture_transcriber.storage.job_store import (
    TranscriptionJob,
    decode_metadata,
    utc_now,
)
from lecture_transcriber.utils.errors import PersistenceError


async def _insert(job_store, owner_id="L1", audio="A1", mime=None):
    return await job_store.insert(
        owner_id=owner_id,
        requester_id="user-1",
        audio_reference=audio,
        audio_mime_type=mime,
    )


class TestInsert:
    """Tests for JobStore.insert()."""

    async def test_insert_creates_pending_job(self, job_store):
        job = await _insert(job_store, mime="audio/webm")

        assert job.status == "pending"
        assert job.attempts == 0
        assert job.last_error is None
        assert job.owner_id == "L1"
        assert job.requester_id == "user-1"
        assert job.audio_reference == "A1"
        assert job.audio_mime_type == "audio/webm"
        assert job.result_metadata == {}
        assert job.started_at is None
        assert job.completed_at is None

    async def test_insert_generates_distinct_ids(self, job_store):
        first = await _insert(job_store)
        second = await _insert(job_store)
        assert first.id != second.id

    async def test_insert_failure_raises_persistence_error(self, job_store, fake_d1):
        fake_d1.failures["INSERT INTO transcription_jobs"] = 500
        with pytest.raises(PersistenceError, match="HTTP 500"):
            await _insert(job_store)


class TestSelection:
    """Tests for JobStore.next_pending() ordering."""

    async def test_empty_table_returns_none(self, job_store):
        assert await job_store.next_pending() is None

    async def test_oldest_pending_first(self, job_store):
        first = await _insert(job_store, owner_id="L1")
        await _insert(job_store, owner_id="L2")

        selected = await job_store.next_pending()
        assert selected.id == first.id

    async def test_ties_broken_by_id(self, job_store, fake_d1):
        a = await _insert(job_store, owner_id="L1")
        b = await _insert(job_store, owner_id="L2")
        fake_d1.conn.execute(
            "UPDATE transcription_jobs SET created_at = '2026-01-01T00:00:00.000000+00:00'"
        )

        selected = await job_store.next_pending()
        assert selected.id == min(a.id, b.id)

    async def test_non_pending_jobs_are_skipped(self, job_store):
        first = await _insert(job_store, owner_id="L1")
        second = await _insert(job_store, owner_id="L2")
        await job_store.claim(first.id)

        selected = await job_store.next_pending()
        assert selected.id == second.id


class TestClaim:
    """Tests for JobStore.claim() conditional update."""

    async def test_claim_moves_pending_to_processing(self, job_store):
        job = await _insert(job_store)

        claimed = await job_store.claim(job.id)

        assert claimed.status == "processing"
        assert claimed.attempts == 1
        assert claimed.started_at is not None
        assert claimed.last_error is None

    async def test_second_claim_of_same_job_returns_none(self, job_store):
        job = await _insert(job_store)
        assert await job_store.claim(job.id) is not None
        assert await job_store.claim(job.id) is None

        stored = await job_store.get(job.id)
        assert stored.attempts == 1

    async def test_claim_clears_previous_error(self, job_store, fake_d1):
        job = await _insert(job_store)
        fake_d1.conn.execute(
            "UPDATE transcription_jobs SET error = 'old failure' WHERE id = ?",
            [job.id],
        )

        claimed = await job_store.claim(job.id)
        assert claimed.last_error is None

    @pytest.mark.parametrize("terminal", ["completed", "failed"])
    async def test_terminal_jobs_are_never_reclaimed(self, job_store, terminal):
        job = await _insert(job_store)
        await job_store.claim(job.id)
        if terminal == "completed":
            await job_store.mark_completed(job.id, {})
        else:
            await job_store.mark_failed(job.id, "boom")

        assert await job_store.claim(job.id) is None
        stored = await job_store.get(job.id)
        assert stored.status == terminal
        assert stored.attempts == 1

    async def test_claim_is_single_conditional_statement(self, job_store, fake_d1):
        job = await _insert(job_store)
        fake_d1.statements.clear()

        await job_store.claim(job.id)

        assert len(fake_d1.statements) == 1
        statement = fake_d1.statements[0]
        assert statement.startswith("UPDATE transcription_jobs")
        assert "status = 'pending'" in statement
        assert "RETURNING" in statement


class TestTerminalTransitions:
    """Tests for mark_completed() and mark_failed()."""

    async def test_mark_completed_from_processing(self, job_store):
        job = await _insert(job_store)
        await job_store.claim(job.id)

        completed = await job_store.mark_completed(job.id, {"model": "nova-3"})

        assert completed.status == "completed"
        assert completed.completed_at is not None
        assert completed.last_error is None
        assert completed.result_metadata == {"model": "nova-3"}

    async def test_mark_completed_requires_processing(self, job_store):
        job = await _insert(job_store)
        assert await job_store.mark_completed(job.id, {}) is None
        assert (await job_store.get(job.id)).status == "pending"

    async def test_mark_failed_records_message(self, job_store):
        job = await _insert(job_store)
        await job_store.claim(job.id)

        failed = await job_store.mark_failed(job.id, "upstream 500")

        assert failed.status == "failed"
        assert failed.last_error == "upstream 500"
        assert failed.completed_at is not None

    async def test_mark_failed_requires_processing(self, job_store):
        job = await _insert(job_store)
        assert await job_store.mark_failed(job.id, "nope") is None

    async def test_mark_failed_respects_started_before(self, job_store):
        job = await _insert(job_store)
        await job_store.claim(job.id)

        cutoff = "2000-01-01T00:00:00.000000+00:00"
        assert await job_store.mark_failed(job.id, "stale", started_before=cutoff) is None
        assert (await job_store.get(job.id)).status == "processing"


class TestStaleCleanup:
    """Tests for delete_stale() and list_stale_processing()."""

    async def test_delete_stale_removes_pending_and_failed_only(self, job_store):
        pending = await _insert(job_store)
        failed = await _insert(job_store)
        processing = await _insert(job_store)
        completed = await _insert(job_store)
        other_owner = await _insert(job_store, owner_id="L2")

        # Claim in creation order so each target ends in the right state.
        await job_store.claim(failed.id)
        await job_store.mark_failed(failed.id, "boom")
        await job_store.claim(processing.id)
        await job_store.claim(completed.id)
        await job_store.mark_completed(completed.id, {})

        removed = await job_store.delete_stale("L1")

        assert removed == 2
        remaining = {job.id for job in await job_store.list_for_owner("L1")}
        assert remaining == {processing.id, completed.id}
        assert await job_store.get(pending.id) is None
        assert await job_store.get(other_owner.id) is not None

    async def test_list_stale_processing(self, job_store, fake_d1):
        old = await _insert(job_store)
        fresh = await _insert(job_store, owner_id="L2")
        await job_store.claim(old.id)
        await job_store.claim(fresh.id)
        fake_d1.conn.execute(
            "UPDATE transcription_jobs SET started_at = '2020-01-01T00:00:00.000000+00:00' "
            "WHERE id = ?",
            [old.id],
        )

        stale = await job_store.list_stale_processing("2021-01-01T00:00:00.000000+00:00")
        assert [job.id for job in stale] == [old.id]

        everything = await job_store.list_stale_processing(utc_now())
        assert {job.id for job in everything} == {old.id, fresh.id}


class TestRowDecoding:
    """Tests for TranscriptionJob.from_row() and metadata decoding."""

    def test_from_row_maps_columns(self):
        job = TranscriptionJob.from_row(
            {
                "id": "job-1",
                "lecture_id": "L1",
                "user_id": "u1",
                "audio_path": "u1/L1/audio.mp3",
                "audio_mime_type": None,
                "status": "failed",
                "attempts": 2,
                "error": "boom",
                "metadata": json.dumps({"foo": 1}),
                "created_at": "2026-01-01T00:00:00.000000+00:00",
                "started_at": None,
                "completed_at": None,
            }
        )
        assert job.owner_id == "L1"
        assert job.requester_id == "u1"
        assert job.last_error == "boom"
        assert job.result_metadata == {"foo": 1}
        assert job.is_terminal

    @pytest.mark.parametrize("raw", [None, "", "not json", "[1, 2]"])
    def test_decode_metadata_tolerates_bad_values(self, raw):
        assert decode_metadata(raw) == {}

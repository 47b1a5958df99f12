"""Shared fixtures: a sqlite-backed D1 endpoint and in-memory collaborators."""

from __future__ import annotations

import json
import sqlite3
from typing import Any

import httpx
import pytest

from lecture_transcriber.asr.interface import (
    TranscriptionEngine,
    TranscriptionMetadata,
    TranscriptionOptions,
    TranscriptionResult,
)
from lecture_transcriber.storage.d1_client import D1Client
from lecture_transcriber.storage.job_store import JobStore
from lecture_transcriber.storage.lecture_store import LectureStore
from lecture_transcriber.utils.errors import BlobAccessError

LECTURES_DDL = """
CREATE TABLE lectures (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT 'Untitled lecture',
    transcript TEXT,
    transcription_status TEXT,
    transcription_error TEXT,
    duration INTEGER,
    metadata TEXT NOT NULL DEFAULT '{}'
)
"""


class FakeD1:
    """Serves the D1 query endpoint from an in-memory sqlite database.

    ``failures`` maps a SQL fragment to an HTTP status; any statement that
    contains the fragment gets an error envelope instead of executing.
    """

    def __init__(self) -> None:
        self.conn = sqlite3.connect(":memory:", isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute(LECTURES_DDL)
        self.statements: list[str] = []
        self.failures: dict[str, int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        sql = body["sql"]
        params = body.get("params") or []
        self.statements.append(sql)

        for fragment, status in self.failures.items():
            if fragment in sql:
                return httpx.Response(
                    status,
                    json={
                        "success": False,
                        "errors": [{"code": 7500, "message": "simulated failure"}],
                        "result": [],
                    },
                )

        before = self.conn.total_changes
        try:
            cursor = self.conn.execute(sql, params)
            rows = [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as exc:
            return httpx.Response(
                400,
                json={
                    "success": False,
                    "errors": [{"code": 7500, "message": str(exc)}],
                    "result": [],
                },
            )
        return httpx.Response(
            200,
            json={
                "success": True,
                "errors": [],
                "messages": [],
                "result": [
                    {
                        "success": True,
                        "results": rows,
                        "meta": {
                            "changes": self.conn.total_changes - before,
                            "last_row_id": cursor.lastrowid,
                        },
                    }
                ],
            },
        )

    def seed_lecture(
        self,
        lecture_id: str,
        user_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.conn.execute(
            "INSERT INTO lectures (id, user_id, metadata) VALUES (?, ?, ?)",
            [lecture_id, user_id, json.dumps(metadata or {})],
        )

    def lecture_row(self, lecture_id: str) -> dict[str, Any]:
        row = self.conn.execute(
            "SELECT * FROM lectures WHERE id = ?", [lecture_id]
        ).fetchone()
        assert row is not None, f"lecture {lecture_id} missing"
        data = dict(row)
        data["metadata"] = json.loads(data["metadata"] or "{}")
        return data

    def job_rows(self, lecture_id: str | None = None) -> list[dict[str, Any]]:
        if lecture_id is None:
            cursor = self.conn.execute("SELECT * FROM transcription_jobs")
        else:
            cursor = self.conn.execute(
                "SELECT * FROM transcription_jobs WHERE lecture_id = ?",
                [lecture_id],
            )
        return [dict(row) for row in cursor.fetchall()]

    def close(self) -> None:
        self.conn.close()


class FakeBlobStore:
    """Dict-backed blob store with the R2Client method shapes."""

    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.objects = dict(objects or {})
        self.uploads: list[tuple[str, str]] = []

    def download(self, key: str) -> bytes:
        if key not in self.objects:
            raise BlobAccessError(
                f"Unable to download audio file '{key}': NoSuchKey", key=key
            )
        return self.objects[key]

    def upload(self, key: str, data: bytes, content_type: str = "") -> str:
        self.objects[key] = data
        self.uploads.append((key, content_type))
        return key


class FakeEngine(TranscriptionEngine):
    """Records calls and returns a canned result or raises a canned error."""

    provider = "fake"

    def __init__(
        self,
        result: TranscriptionResult | None = None,
        error: Exception | None = None,
    ) -> None:
        self.result = result or make_result()
        self.error = error
        self.calls: list[tuple[bytes, str | None, TranscriptionOptions | None]] = []

    async def transcribe(
        self,
        audio: bytes,
        mime_type: str | None = None,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionResult:
        self.calls.append((audio, mime_type, options))
        if self.error is not None:
            raise self.error
        return self.result


def make_result(
    transcript: str = "hello world",
    duration: float | None = 3.2,
    confidence: float | None = 0.95,
    **metadata: Any,
) -> TranscriptionResult:
    return TranscriptionResult(
        transcript=transcript,
        metadata=TranscriptionMetadata(
            duration=duration, confidence=confidence, **metadata
        ),
        raw_response={"results": {"channels": []}},
    )


@pytest.fixture
def fake_d1():
    fake = FakeD1()
    yield fake
    fake.close()


@pytest.fixture
async def d1_client(fake_d1):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_d1.handler))
    client = D1Client(
        account_id="acct-1",
        database_id="db-1",
        api_token="test-token",
        client=http_client,
    )
    await JobStore(client).ensure_schema()
    yield client
    await http_client.aclose()


@pytest.fixture
def job_store(d1_client):
    return JobStore(d1_client)


@pytest.fixture
def lecture_store(d1_client):
    return LectureStore(d1_client)


@pytest.fixture
def blob_store():
    return FakeBlobStore({"A1": b"fake-audio-bytes"})

"""Maps a job's audio reference to bytes from the blob store."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from botocore.exceptions import BotoCoreError

from lecture_transcriber.storage.job_store import TranscriptionJob
from lecture_transcriber.utils.errors import BlobAccessError
from lecture_transcriber.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """The two blob operations the pipeline relies on."""

    def download(self, key: str) -> bytes: ...

    def upload(self, key: str, data: bytes, content_type: str = "") -> str: ...


class BlobResolver:
    """Fetch job audio and archive provider responses.

    boto3 is synchronous, so calls run in a worker thread to keep the
    event loop serving HTTP while a download is in flight.
    """

    def __init__(self, blob_store: BlobStore, retry_base_delay: float = 1.0) -> None:
        self._blob_store = blob_store
        self._download = retry_with_backoff(
            max_retries=3,
            base_delay=retry_base_delay,
            retryable_exceptions=(BotoCoreError,),
        )(self._download_once)

    async def _download_once(self, key: str) -> bytes:
        return await asyncio.to_thread(self._blob_store.download, key)

    async def fetch_audio(self, job: TranscriptionJob) -> bytes:
        """Download the audio referenced by a job.

        Raises:
            BlobAccessError: If the object is missing, unreadable, or the
                store stayed unreachable after retries.
        """
        key = job.audio_reference
        try:
            data = await self._download(key)
        except BlobAccessError as exc:
            exc.job_id = job.id
            raise
        except BotoCoreError as exc:
            raise BlobAccessError(
                f"Unable to download audio file '{key}': {exc}",
                job_id=job.id,
                key=key,
            ) from exc

        logger.info(
            "Downloaded %d bytes of audio",
            len(data),
            extra={"job_id": job.id, "stage": "download"},
        )
        return data

    async def archive_raw_response(
        self, job: TranscriptionJob, payload: dict[str, Any], provider: str
    ) -> str:
        """Store the provider's raw JSON next to the lecture's audio.

        Returns:
            The blob key the response was written to.
        """
        key = f"{job.owner_id}/{job.id}/transcript/raw-{provider}.json"
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        try:
            return await asyncio.to_thread(
                self._blob_store.upload, key, body, "application/json"
            )
        except BotoCoreError as exc:
            raise BlobAccessError(
                f"Unable to archive provider response '{key}': {exc}",
                job_id=job.id,
                key=key,
            ) from exc

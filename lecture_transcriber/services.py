"""Process-wide wiring of clients and pipeline components.

Everything is constructed once per process and passed in explicitly; no
component reaches for a module-level client.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import httpx

from lecture_transcriber.api.auth import TokenAuthenticator
from lecture_transcriber.asr.deepgram import DEFAULT_BASE_URL as DEEPGRAM_BASE_URL
from lecture_transcriber.asr.interface import (
    DEFAULT_LANGUAGE,
    DEFAULT_MODEL,
    TranscriptionEngine,
    TranscriptionOptions,
)
from lecture_transcriber.asr.registry import get_transcription_engine
from lecture_transcriber.queue.gateway import EnqueueGateway
from lecture_transcriber.queue.scheduler import ClaimScheduler
from lecture_transcriber.reconciler import Reconciler
from lecture_transcriber.storage.blob_resolver import BlobResolver, BlobStore
from lecture_transcriber.storage.d1_client import D1Client
from lecture_transcriber.storage.job_store import JobStore
from lecture_transcriber.storage.lecture_store import LectureStore
from lecture_transcriber.storage.r2_client import R2Client
from lecture_transcriber.worker import TranscriptionWorker

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float = 0.0) -> float:
    raw = os.environ.get(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


@dataclass
class ServiceContainer:
    """All long-lived components of one service process."""

    d1_client: D1Client
    engine: TranscriptionEngine
    job_store: JobStore
    lecture_store: LectureStore
    gateway: EnqueueGateway
    worker: TranscriptionWorker
    authenticator: TokenAuthenticator
    worker_secret: str = ""
    http_client: httpx.AsyncClient | None = None

    @classmethod
    def build(
        cls,
        d1_client: D1Client,
        blob_store: BlobStore,
        engine: TranscriptionEngine,
        authenticator: TokenAuthenticator,
        options: TranscriptionOptions | None = None,
        worker_secret: str = "",
        stale_after_seconds: float = 0.0,
        archive_raw_responses: bool = True,
        blob_retry_base_delay: float = 1.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> ServiceContainer:
        """Compose the pipeline from already-constructed clients."""
        job_store = JobStore(d1_client)
        lecture_store = LectureStore(d1_client)
        worker = TranscriptionWorker(
            scheduler=ClaimScheduler(job_store),
            resolver=BlobResolver(blob_store, retry_base_delay=blob_retry_base_delay),
            engine=engine,
            reconciler=Reconciler(job_store, lecture_store),
            job_store=job_store,
            lecture_store=lecture_store,
            options=options,
            stale_after_seconds=stale_after_seconds,
            archive_raw_responses=archive_raw_responses,
        )
        return cls(
            d1_client=d1_client,
            engine=engine,
            job_store=job_store,
            lecture_store=lecture_store,
            gateway=EnqueueGateway(job_store, lecture_store),
            worker=worker,
            authenticator=authenticator,
            worker_secret=worker_secret,
            http_client=http_client,
        )

    @classmethod
    async def from_env(cls) -> ServiceContainer:
        """Build every component from environment configuration.

        Environment variables:
            TRANSCRIPTION_PROVIDER, DEEPGRAM_API_KEY, DEEPGRAM_BASE_URL,
            DEEPGRAM_MODEL, DEEPGRAM_LANGUAGE, WORKER_SECRET,
            STALE_JOB_TIMEOUT_SECONDS, ARCHIVE_RAW_RESPONSES, plus those
            read by D1Client, R2Client and TokenAuthenticator.

        Raises:
            Whatever the first misconfigured component raises. The shared
            HTTP client is closed before the error propagates.
        """
        blob_store = R2Client()
        authenticator = TokenAuthenticator()
        options = TranscriptionOptions(
            model=os.environ.get("DEEPGRAM_MODEL", "") or DEFAULT_MODEL,
            language=os.environ.get("DEEPGRAM_LANGUAGE", "") or DEFAULT_LANGUAGE,
        )

        http_client = httpx.AsyncClient(timeout=30.0)
        try:
            engine = get_transcription_engine(
                os.environ.get("TRANSCRIPTION_PROVIDER", "deepgram"),
                api_key=os.environ.get("DEEPGRAM_API_KEY", ""),
                base_url=os.environ.get("DEEPGRAM_BASE_URL", "") or DEEPGRAM_BASE_URL,
                client=http_client,
            )
            d1_client = D1Client(client=http_client)
        except Exception:
            await http_client.aclose()
            raise

        return cls.build(
            d1_client=d1_client,
            blob_store=blob_store,
            engine=engine,
            authenticator=authenticator,
            options=options,
            worker_secret=os.environ.get("WORKER_SECRET", ""),
            stale_after_seconds=_env_float("STALE_JOB_TIMEOUT_SECONDS"),
            archive_raw_responses=_env_flag("ARCHIVE_RAW_RESPONSES", True),
            http_client=http_client,
        )

    async def aclose(self) -> None:
        """Release HTTP connections held by the clients."""
        await self.engine.aclose()
        await self.d1_client.close()
        if self.http_client is not None:
            await self.http_client.aclose()

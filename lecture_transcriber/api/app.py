"""HTTP surface: the enqueue endpoint, the worker trigger and health.

The UI posts to /transcriptions and then polls the lecture record. A
scheduler (cron or a platform trigger) posts to /worker/run to process a
small batch per invocation.
"""

from __future__ import annotations

import hmac
import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import AliasChoices, BaseModel, Field

from lecture_transcriber.queue.gateway import (
    NOT_FOUND_MESSAGE,
    REQUIRED_FIELDS_MESSAGE,
    UNAUTHORIZED_MESSAGE,
)
from lecture_transcriber.services import ServiceContainer
from lecture_transcriber.utils.errors import (
    NotAuthorizedError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    describe_error,
)

logger = logging.getLogger(__name__)

ENQUEUE_FAILED_MESSAGE = "Failed to enqueue transcription job."
NO_PENDING_JOBS_MESSAGE = "No pending jobs."

bearer_scheme = HTTPBearer(auto_error=False)


class EnqueueRequest(BaseModel):
    """Body of POST /transcriptions. Legacy lectureId/audioPath names are accepted."""

    owner_id: str | None = Field(
        default=None, validation_alias=AliasChoices("ownerId", "lectureId")
    )
    audio_reference: str | None = Field(
        default=None, validation_alias=AliasChoices("audioReference", "audioPath")
    )
    audio_mime_type: str | None = Field(
        default=None, validation_alias=AliasChoices("audioMimeType", "mimeType")
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        services: Pre-built components. When None they are built from the
            environment at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            app.state.services = await ServiceContainer.from_env()
        if os.environ.get("AUTO_MIGRATE", "").strip().lower() in ("1", "true", "yes"):
            await app.state.services.job_store.ensure_schema()
            logger.info("Job table schema ensured")
        logger.info("Lecture transcriber API ready")
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()

    app = FastAPI(title="Lecture Transcriber", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, REQUIRED_FIELDS_MESSAGE)

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> str:
        return "ok"

    @app.post("/transcriptions")
    async def enqueue_transcription(
        body: EnqueueRequest,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        services: ServiceContainer = Depends(get_services),
    ) -> Any:
        token = credentials.credentials if credentials else None
        requester_id = services.authenticator.authenticate(token)
        try:
            result = await services.gateway.enqueue(
                owner_id=body.owner_id,
                requester_id=requester_id,
                audio_reference=body.audio_reference,
                audio_mime_type=body.audio_mime_type,
            )
        except ValidationError as exc:
            return _error(400, exc.message)
        except NotAuthorizedError:
            return _error(401, UNAUTHORIZED_MESSAGE)
        except NotFoundError:
            return _error(404, NOT_FOUND_MESSAGE)
        except PersistenceError:
            logger.error(
                "Failed to enqueue transcription job",
                exc_info=True,
                extra={"owner_id": body.owner_id},
            )
            return _error(500, ENQUEUE_FAILED_MESSAGE)

        return {"jobId": result.job_id, "status": result.status}

    @app.post("/worker/run")
    async def run_worker(
        limit: str | None = None,
        x_worker_secret: str | None = Header(default=None),
        services: ServiceContainer = Depends(get_services),
    ) -> Any:
        if services.worker_secret and not hmac.compare_digest(
            (x_worker_secret or "").encode(), services.worker_secret.encode()
        ):
            return _error(401, UNAUTHORIZED_MESSAGE)

        try:
            outcomes = await services.worker.run_batch(limit if limit is not None else 1)
        except Exception as exc:
            logger.error("Worker invocation failed", exc_info=True)
            return _error(500, describe_error(exc))

        if not outcomes:
            return {"processed": 0, "message": NO_PENDING_JOBS_MESSAGE}
        return {
            "processed": len(outcomes),
            "jobs": [outcome.to_dict() for outcome in outcomes],
        }

    return app

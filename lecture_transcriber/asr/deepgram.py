"""Deepgram pre-recorded transcription engine.

Sends audio bytes to the Deepgram ``/listen`` endpoint in a single request
and normalizes the channels/alternatives response into a
TranscriptionResult. normalize_response() is the one place that knows the
response's nesting variants.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from lecture_transcriber.asr.interface import (
    TranscriptionEngine,
    TranscriptionMetadata,
    TranscriptionOptions,
    TranscriptionResult,
)
from lecture_transcriber.utils.errors import (
    EmptyTranscriptError,
    ProviderError,
    TranscriptionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PROVIDER = "deepgram"
DEFAULT_BASE_URL = "https://api.deepgram.com/v1"
DEFAULT_MIME_TYPE = "audio/mpeg"
DEFAULT_TIMEOUT_SECONDS = 600.0


def build_query_params(options: TranscriptionOptions) -> dict[str, str]:
    """Translate options into Deepgram query parameters."""
    params = {
        "model": options.model,
        "language": options.language,
        "smart_format": _flag(options.smart_format),
        "paragraphs": _flag(options.paragraphs),
        "punctuate": _flag(options.punctuate),
        "diarize": _flag(options.diarize),
    }
    if options.summarize != "off":
        params["summarize"] = options.summarize
    return params


def _flag(value: bool) -> str:
    return "true" if value else "false"


class DeepgramEngine(TranscriptionEngine):
    """Deepgram pre-recorded API engine.

    Args:
        api_key: Deepgram API key.
        client: Optional shared httpx.AsyncClient. When omitted a client is
            opened for each call.
        base_url: API base URL (default production endpoint).
        timeout: Request timeout in seconds; long lectures take a while.
    """

    provider = PROVIDER

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def transcribe(
        self,
        audio: bytes,
        mime_type: str | None = None,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionResult:
        """Transcribe audio via Deepgram.

        Raises:
            ValidationError: If audio is empty (no request is made).
            TranscriptionError: On transport failure or non-2xx response.
            ProviderError: If a 2xx response has no usable alternative.
            EmptyTranscriptError: If the transcript is blank.
        """
        if not audio:
            raise ValidationError(
                "Audio buffer is empty; cannot transcribe.", field="audio"
            )

        options = options or TranscriptionOptions()
        url = f"{self._base_url}/listen"
        headers = {
            "Authorization": f"Token {self._api_key}",
            "Content-Type": mime_type or DEFAULT_MIME_TYPE,
        }
        params = build_query_params(options)

        if self._client is not None:
            response = await self._post(self._client, url, headers, params, audio)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await self._post(client, url, headers, params, audio)

        if not response.is_success:
            raise TranscriptionError(
                f"Deepgram request failed ({response.status_code}): "
                f"{response.text}",
                provider=PROVIDER,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(
                "Deepgram returned a response that is not valid JSON.",
                provider=PROVIDER,
                status_code=response.status_code,
            ) from exc

        result = normalize_response(payload)
        logger.info(
            "Deepgram transcription finished: request_id=%s model=%s duration=%s",
            result.metadata.request_id,
            result.metadata.model,
            result.metadata.duration,
        )
        return result

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        params: dict[str, str],
        audio: bytes,
    ) -> httpx.Response:
        try:
            return await client.post(
                url,
                headers=headers,
                params=params,
                content=audio,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise TranscriptionError(
                f"Deepgram request failed: {exc}", provider=PROVIDER
            ) from exc


def normalize_response(payload: Any) -> TranscriptionResult:
    """Normalize a Deepgram pre-recorded response.

    Transcript: the paragraph segmentation of the first alternative of the
    first channel (sentences joined by a space, paragraphs by a blank line)
    when present, otherwise the flat ``transcript`` field.

    Metadata: model from ``metadata.model_info`` names, falling back to
    ``metadata.models``; duration and request id from ``metadata``;
    confidence from the alternative; language from the channel's
    ``detected_language``; summary from the alternative's ``summaries``,
    falling back to ``results.summary.result`` then ``.short``.

    Raises:
        ProviderError: If the payload has no first alternative.
        EmptyTranscriptError: If both transcript sources are blank.
    """
    if not isinstance(payload, dict):
        raise ProviderError(
            "Deepgram returned an unexpected response shape.", provider=PROVIDER
        )

    results = payload.get("results") or {}
    channels = results.get("channels") or []
    channel = channels[0] if channels and isinstance(channels[0], dict) else {}
    alternatives = channel.get("alternatives") or []
    alternative = alternatives[0] if alternatives else None

    if not isinstance(alternative, dict):
        raise ProviderError(
            "Deepgram returned an empty transcription result.", provider=PROVIDER
        )

    transcript = format_paragraphs(alternative.get("paragraphs"))
    if not transcript:
        transcript = str(alternative.get("transcript") or "").strip()
    if not transcript:
        raise EmptyTranscriptError(
            "Deepgram produced an empty transcript.", provider=PROVIDER
        )

    response_meta = payload.get("metadata") or {}
    metadata = TranscriptionMetadata(
        model=_extract_model_name(response_meta),
        duration=_as_float(response_meta.get("duration")),
        confidence=_as_float(alternative.get("confidence")),
        language=channel.get("detected_language") or None,
        summary=_extract_summary(alternative, results),
        request_id=response_meta.get("request_id") or None,
        provider=PROVIDER,
    )
    return TranscriptionResult(
        transcript=transcript, metadata=metadata, raw_response=payload
    )


def format_paragraphs(paragraph_group: Any) -> str | None:
    """Join paragraph sentences into text, or None if there are none.

    Accepts either ``{"paragraphs": [...]}`` or a bare paragraph list.
    """
    if isinstance(paragraph_group, dict):
        paragraphs = paragraph_group.get("paragraphs") or []
    elif isinstance(paragraph_group, list):
        paragraphs = paragraph_group
    else:
        return None

    formatted: list[str] = []
    for paragraph in paragraphs:
        if not isinstance(paragraph, dict):
            continue
        sentences = [
            str(sentence.get("text") or "").strip()
            for sentence in paragraph.get("sentences") or []
            if isinstance(sentence, dict)
        ]
        text = " ".join(s for s in sentences if s).strip()
        if text:
            formatted.append(text)

    joined = "\n\n".join(formatted).strip()
    return joined or None


def _extract_model_name(metadata: dict[str, Any]) -> str | None:
    model_info = metadata.get("model_info") or {}
    if isinstance(model_info, dict) and model_info:
        info = next(iter(model_info.values()))
        if isinstance(info, dict) and info.get("name"):
            return str(info["name"])
    models = metadata.get("models") or []
    if models:
        return str(models[0])
    return None


def _extract_summary(alternative: dict[str, Any], results: dict[str, Any]) -> str | None:
    summaries = [
        str(item.get("summary"))
        for item in alternative.get("summaries") or []
        if isinstance(item, dict) and item.get("summary")
    ]
    if summaries:
        return "\n\n".join(summaries)

    summary = results.get("summary") or {}
    if isinstance(summary, dict):
        return summary.get("result") or summary.get("short") or None
    return None


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

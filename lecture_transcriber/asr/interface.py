"""Abstract transcription engine interface and its data models.

Concrete providers (e.g., Deepgram) subclass TranscriptionEngine and return
a provider-neutral TranscriptionResult.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any

from lecture_transcriber.utils.errors import ValidationError

SUMMARIZE_MODES: tuple[str, ...] = ("off", "v2", "conversational")

DEFAULT_MODEL = "nova-3"
DEFAULT_LANGUAGE = "en"


@dataclass
class TranscriptionOptions:
    """Recognition options for one request.

    summarize is one of "off", "v2" or "conversational".
    """

    model: str = DEFAULT_MODEL
    language: str = DEFAULT_LANGUAGE
    summarize: str = "v2"
    smart_format: bool = True
    paragraphs: bool = True
    punctuate: bool = True
    diarize: bool = False

    def __post_init__(self) -> None:
        if self.summarize not in SUMMARIZE_MODES:
            raise ValidationError(
                f"Invalid summarize mode '{self.summarize}'. "
                f"Must be one of: {', '.join(SUMMARIZE_MODES)}",
                field="summarize",
            )


@dataclass
class TranscriptionMetadata:
    """Flat metadata extracted from a provider response."""

    model: str | None = None
    duration: float | None = None
    confidence: float | None = None
    language: str | None = None
    summary: str | None = None
    request_id: str | None = None
    # Prefix for the request id key; not emitted itself.
    provider: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Metadata keys with a value, ready to merge into a record.

        The request id is stored as ``<provider>_request_id`` (for example
        ``deepgram_request_id``) so records say which provider issued it.
        """
        data = {key: value for key, value in asdict(self).items() if value is not None}
        data.pop("provider", None)
        request_id = data.pop("request_id", None)
        if request_id is not None:
            data[f"{self.provider or 'provider'}_request_id"] = request_id
        return data


@dataclass
class TranscriptionResult:
    """Normalized transcript plus metadata and the raw provider payload."""

    transcript: str
    metadata: TranscriptionMetadata = field(default_factory=TranscriptionMetadata)
    raw_response: dict[str, Any] = field(default_factory=dict)


class TranscriptionEngine(ABC):
    """Abstract base class for transcription providers.

    Implementations make exactly one provider call per transcribe() and do
    not retry; the job attempt is the unit of retry.
    """

    provider: str = ""

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        mime_type: str | None = None,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionResult:
        """Transcribe audio bytes.

        Args:
            audio: Raw audio bytes; must be non-empty.
            mime_type: Content type hint for the provider.
            options: Recognition options; defaults when None.

        Returns:
            TranscriptionResult with a non-empty transcript.
        """

    async def aclose(self) -> None:
        """Release provider resources. Engines without any need not override."""

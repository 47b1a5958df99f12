"""Speech-to-text provider engines."""

from lecture_transcriber.asr.interface import (
    TranscriptionEngine,
    TranscriptionMetadata,
    TranscriptionOptions,
    TranscriptionResult,
)
from lecture_transcriber.asr.registry import get_transcription_engine

__all__ = [
    "TranscriptionEngine",
    "TranscriptionMetadata",
    "TranscriptionOptions",
    "TranscriptionResult",
    "get_transcription_engine",
]

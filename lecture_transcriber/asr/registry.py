"""Transcription engine registry with configuration-driven provider selection.

Maps provider names to engine classes. Use get_transcription_engine() to
instantiate an engine by name with engine-specific configuration.
"""

from lecture_transcriber.asr.deepgram import DeepgramEngine
from lecture_transcriber.asr.interface import TranscriptionEngine
from lecture_transcriber.utils.errors import TranscriptionError

TRANSCRIPTION_ENGINES: dict[str, type[TranscriptionEngine]] = {
    "deepgram": DeepgramEngine,
}


def get_transcription_engine(provider: str, **kwargs: object) -> TranscriptionEngine:
    """Create a transcription engine by provider name.

    Args:
        provider: Provider name, case-insensitive (e.g., "deepgram").
        **kwargs: Engine-specific configuration passed to the constructor.

    Raises:
        TranscriptionError: If the provider name is not registered.
    """
    name = (provider or "").strip().lower()
    engine_cls = TRANSCRIPTION_ENGINES.get(name)
    if not engine_cls:
        available = ", ".join(sorted(TRANSCRIPTION_ENGINES.keys()))
        raise TranscriptionError(
            f"Unknown transcription provider: '{provider}'. Available: {available}",
            provider=provider,
        )
    return engine_cls(**kwargs)

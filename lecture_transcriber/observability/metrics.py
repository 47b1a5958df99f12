"""Per-job processing metrics.

JobMetrics captures one claim-process-reconcile cycle. StageTimer measures
the download, transcribe, archive and reconcile stages, and
log_job_metrics() emits the record as one structured JSON line.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


@dataclass
class JobMetrics:
    """All metrics collected for a single transcription job attempt."""

    job_id: str
    owner_id: str
    status: str
    attempts: int
    queue_wait_time_seconds: float = 0.0
    processing_wall_time_seconds: float = 0.0
    audio_size_bytes: int = 0
    audio_duration_seconds: float | None = None
    transcript_characters: int = 0
    provider: str = ""
    model: str | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)
    error_stage: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records the wall-clock duration of a stage.

    When a timings dict is supplied the duration is stored under the stage
    name, or under ``_<stage>_failed`` if the block raised. That sentinel
    lets the worker report which stage a failure came from.

    Usage:
        timings: dict[str, float] = {}
        with StageTimer("download", timings):
            fetch()
    """

    def __init__(
        self, stage_name: str, timings: dict[str, float] | None = None
    ) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._timings = timings
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.duration_seconds = time.monotonic() - self._mono_start
        self.end_time = datetime.now(UTC)
        if self._timings is None:
            return
        if exc_type is not None:
            self._timings[f"_{self.stage_name}_failed"] = self.duration_seconds
        else:
            self._timings[self.stage_name] = self.duration_seconds


def failed_stage(timings: dict[str, float]) -> str | None:
    """Return the stage a StageTimer recorded as failed, if any."""
    for key in timings:
        if key.startswith("_") and key.endswith("_failed"):
            return key[1 : -len("_failed")]
    return None


def log_job_metrics(metrics: JobMetrics) -> None:
    """Emit job metrics as a single structured JSON line to stdout.

    Args:
        metrics: Populated JobMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "transcription_job",
        **asdict(metrics),
    }
    print(json.dumps(entry, default=str))

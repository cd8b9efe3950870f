from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

JobStatus = Literal["queued", "processing", "completed", "error"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error"})


@dataclass(frozen=True, slots=True)
class Phase:
    name: str
    weight: float


@dataclass(frozen=True, slots=True)
class ProgressState:
    active_phase_index: int = -1
    in_phase_percent: float = 0.0
    run_start_time: float = 0.0


@dataclass(frozen=True, slots=True)
class TranscriptionJob:
    id: str
    status: JobStatus
    text: str | None = None
    error_detail: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(slots=True)
class VideoInfo:
    title: str
    video_id: str
    duration_seconds: float | None
    available_languages: list[str] = field(default_factory=list)
    audio_formats: list[dict[str, object]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DownloadProgress:
    downloaded_bytes: int
    total_bytes: int | None
    speed: float | None = None


class PipelineStage(str, Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    SAVING_TRANSCRIPT = "saving_transcript"
    SAVING_AUDIO = "saving_audio"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(slots=True)
class PipelineRun:
    url: str
    language: str | None
    debug_only: bool
    state: ProgressState
    source_url: str = ""
    stage: PipelineStage = PipelineStage.IDLE
    history: list[PipelineStage] = field(default_factory=list)
    video: VideoInfo | None = None
    temp_audio_path: Path | None = None
    transcript_path: Path | None = None
    audio_path: Path | None = None


@dataclass(slots=True)
class PipelineResult:
    video_id: str
    title: str
    transcript_path: Path | None
    audio_path: Path | None
    temp_audio_path: Path | None
    debug_only: bool
    elapsed_seconds: float

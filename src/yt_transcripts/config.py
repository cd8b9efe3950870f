from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from yt_transcripts.errors import ConfigError


@dataclass(slots=True)
class Settings:
    assemblyai_api_key: str
    output_dir: Path
    work_dir: Path
    default_language: str | None
    poll_interval_seconds: float
    status_log_interval_seconds: float
    baseline_transcription_seconds: float
    max_wait_seconds: float | None
    http_timeout_seconds: float
    ytdlp_binary: str

    def require_api_key(self) -> str:
        if not self.assemblyai_api_key:
            raise ConfigError(
                "ASSEMBLYAI_API_KEY is required. Set it as an environment variable "
                "or add it to a .env file:\nASSEMBLYAI_API_KEY=your_api_key_here"
            )
        return self.assemblyai_api_key


def _as_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def load_settings() -> Settings:
    load_dotenv(find_dotenv(usecwd=True))
    max_wait = _as_float("TRANSCRIPTION_MAX_WAIT_SECONDS", 3600.0)
    language = os.getenv("DEFAULT_LANGUAGE", "en").strip()

    return Settings(
        assemblyai_api_key=os.getenv("ASSEMBLYAI_API_KEY", "").strip(),
        output_dir=Path(os.getenv("OUTPUT_DIR", ".")),
        work_dir=Path(os.getenv("WORK_DIR", ".")).resolve(),
        default_language=language or None,
        poll_interval_seconds=_as_float("POLL_INTERVAL_SECONDS", 2.0),
        status_log_interval_seconds=_as_float("STATUS_LOG_INTERVAL_SECONDS", 10.0),
        baseline_transcription_seconds=_as_float("TRANSCRIPTION_BASELINE_SECONDS", 120.0),
        max_wait_seconds=max_wait if max_wait > 0 else None,
        http_timeout_seconds=_as_float("HTTP_TIMEOUT_SECONDS", 600.0),
        ytdlp_binary=os.getenv("YTDLP_BINARY", "yt-dlp").strip() or "yt-dlp",
    )

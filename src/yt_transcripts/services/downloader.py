from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Callable
from pathlib import Path
from threading import Event

from yt_transcripts.errors import DownloadError, DownloadFailure, PipelineCancelled
from yt_transcripts.formats import FormatQuery
from yt_transcripts.types import DownloadProgress, VideoInfo

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "[progress]"
PROGRESS_TEMPLATE = (
    "download:" + PROGRESS_PREFIX
    + " %(progress.downloaded_bytes)s %(progress.total_bytes)s"
    + " %(progress.total_bytes_estimate)s %(progress.speed)s"
)

# Request pacing and retries applied to every yt-dlp call.
POLITE_OPTIONS = [
    "--no-warnings",
    "--no-check-certificates",
    "--limit-rate",
    "500K",
    "--retries",
    "3",
    "--sleep-requests",
    "1",
]


def classify_failure(message: str) -> DownloadFailure:
    if "403" in message or "Forbidden" in message:
        return DownloadFailure.BLOCKED
    if "Private video" in message or "unavailable" in message:
        return DownloadFailure.UNAVAILABLE
    if "format" in message:
        return DownloadFailure.NO_FORMAT
    return DownloadFailure.OTHER


def parse_progress_line(line: str) -> DownloadProgress | None:
    line = line.strip()
    if not line.startswith(PROGRESS_PREFIX):
        return None
    fields = line[len(PROGRESS_PREFIX):].split()
    if len(fields) != 4:
        return None

    downloaded = _safe_number(fields[0])
    if downloaded is None:
        return None
    total = _safe_number(fields[1]) or _safe_number(fields[2])
    return DownloadProgress(
        downloaded_bytes=int(downloaded),
        total_bytes=int(total) if total else None,
        speed=_safe_number(fields[3]),
    )


def audio_formats(metadata: dict[str, object]) -> list[dict[str, object]]:
    formats = metadata.get("formats")
    if not isinstance(formats, list):
        return []
    return [
        item
        for item in formats
        if isinstance(item, dict)
        and item.get("acodec") not in (None, "none")
        and item.get("vcodec") in (None, "none")
    ]


class YtDlpDownloader:
    def __init__(self, binary: str = "yt-dlp", *, metadata_timeout: int = 60) -> None:
        self.binary = binary
        self.metadata_timeout = metadata_timeout

    def fetch_metadata(self, url: str) -> VideoInfo:
        cmd = [self.binary, "--dump-single-json", "--no-download", "--no-playlist", *POLITE_OPTIONS, url]
        completed = self._run(cmd)
        try:
            metadata = json.loads(completed.stdout)
        except json.JSONDecodeError:
            raise DownloadError("Could not parse yt-dlp metadata JSON") from None
        if not isinstance(metadata, dict):
            raise DownloadError("yt-dlp returned unexpected metadata")

        video_id = str(metadata.get("id") or "").strip()
        if not video_id:
            raise DownloadError("yt-dlp did not return video ID")

        formats = audio_formats(metadata)
        languages: list[str] = []
        for item in formats:
            language = item.get("language")
            if isinstance(language, str) and language not in languages:
                languages.append(language)

        return VideoInfo(
            title=str(metadata.get("title") or "Unknown Title"),
            video_id=video_id,
            duration_seconds=_safe_number(metadata.get("duration")),
            available_languages=languages,
            audio_formats=formats,
        )

    def fetch_audio(
        self,
        url: str,
        formats: FormatQuery,
        output_base: Path,
        on_progress: Callable[[DownloadProgress], None] | None = None,
        cancel: Event | None = None,
    ) -> Path:
        output_base.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.binary,
            "--no-playlist",
            "--newline",
            "--progress-template",
            PROGRESS_TEMPLATE,
            "-f",
            formats.expression,
            "-x",
            "--audio-format",
            "mp3",
            "--audio-quality",
            "5",
            "-o",
            f"{output_base}.%(ext)s",
            *POLITE_OPTIONS,
            url,
        ]
        logger.debug("Running %s", " ".join(cmd))

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError:
            raise self._binary_missing() from None

        # stderr is merged into stdout; only one pipe is ever read.
        output: list[str] = []
        with process:
            try:
                assert process.stdout is not None
                for line in process.stdout:
                    if cancel is not None and cancel.is_set():
                        raise PipelineCancelled("Download cancelled")
                    event = parse_progress_line(line)
                    if event is None:
                        output.append(line.rstrip())
                    elif on_progress is not None:
                        on_progress(event)
            except BaseException:
                # The child must be gone before the caller removes its output files.
                process.kill()
                process.wait()
                raise
            returncode = process.wait()

        if returncode != 0:
            errors = [line for line in output if line.startswith("ERROR")]
            message = "\n".join(errors or output[-5:]).strip() or "yt-dlp failed"
            raise DownloadError(message, category=classify_failure(message))

        audio_path = output_base.with_name(f"{output_base.name}.mp3")
        if not audio_path.exists():
            candidates = sorted(output_base.parent.glob(f"{output_base.name}.*"))
            if not candidates:
                raise DownloadError("Audio file was not produced by yt-dlp")
            audio_path = candidates[0]
        return audio_path

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        try:
            completed = subprocess.run(
                cmd, capture_output=True, text=True, check=False, timeout=self.metadata_timeout
            )
        except FileNotFoundError:
            raise self._binary_missing() from None
        except subprocess.TimeoutExpired:
            raise DownloadError(f"yt-dlp timed out after {self.metadata_timeout}s") from None

        if completed.returncode != 0:
            stderr = completed.stderr.strip() or "yt-dlp failed"
            raise DownloadError(stderr, category=classify_failure(stderr))
        return completed

    def _binary_missing(self) -> DownloadError:
        return DownloadError(f"{self.binary} binary not found", category=DownloadFailure.BINARY_MISSING)


def _safe_number(value: object) -> float | None:
    try:
        return float(str(value)) if value is not None else None
    except (TypeError, ValueError):
        return None

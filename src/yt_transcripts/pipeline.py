"""Sequence a single URL through download, transcription and persistence.

A run moves through ``PipelineStage`` values strictly in order::

    idle -> downloading -> uploading -> transcribing
         -> saving_transcript -> saving_audio -> complete

with ``failed`` reachable from any of them. Debug-only runs stop after
``downloading`` and keep the temporary media file for inspection; every
other run removes it on the way out, whatever the outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from threading import Event
from typing import Protocol

from yt_transcripts.config import Settings
from yt_transcripts.errors import (
    CleanupWarning,
    DownloadError,
    DownloadFailure,
    PersistenceError,
    PipelineCancelled,
    PipelineError,
    TranscriptionError,
    ValidationError,
)
from yt_transcripts.formats import FormatQuery, build_format_query
from yt_transcripts.polling import Clock, PollingWatcher, SystemClock
from yt_transcripts.progress import (
    PHASE_DOWNLOAD,
    PHASE_SAVE_AUDIO,
    PHASE_SAVE_TRANSCRIPT,
    PHASE_TRANSCRIBE,
    PHASE_UPLOAD,
    PhaseRegistry,
    estimate_eta,
    format_bytes,
    overall_percent,
    start_phase,
    update_phase,
)
from yt_transcripts.reporting import NullProgressSink, ProgressSink
from yt_transcripts.services.storage import TRANSCRIPT_FILENAME, transcript_dir
from yt_transcripts.types import (
    DownloadProgress,
    PipelineResult,
    PipelineRun,
    PipelineStage,
    ProgressState,
    TranscriptionJob,
    VideoInfo,
)
from yt_transcripts.utils.url import is_youtube_url, normalize_url

logger = logging.getLogger(__name__)

STAGE_PHASES: dict[PipelineStage, str] = {
    PipelineStage.DOWNLOADING: PHASE_DOWNLOAD,
    PipelineStage.UPLOADING: PHASE_UPLOAD,
    PipelineStage.TRANSCRIBING: PHASE_TRANSCRIBE,
    PipelineStage.SAVING_TRANSCRIPT: PHASE_SAVE_TRANSCRIPT,
    PipelineStage.SAVING_AUDIO: PHASE_SAVE_AUDIO,
}

MAX_LISTED_FORMATS = 10


class Downloader(Protocol):
    def fetch_metadata(self, url: str) -> VideoInfo: ...

    def fetch_audio(
        self,
        url: str,
        formats: FormatQuery,
        output_base: Path,
        on_progress: Callable[[DownloadProgress], None] | None = None,
        cancel: Event | None = None,
    ) -> Path: ...


class TranscriptionProvider(Protocol):
    def upload(self, data: bytes) -> str: ...

    def submit(self, audio_url: str, *, language_detection: bool = True) -> str: ...

    def poll(self, job_id: str) -> TranscriptionJob: ...


class FileWriter(Protocol):
    def ensure_directory(self, path: Path) -> Path: ...

    def write_text(self, path: Path, content: str) -> Path: ...

    def copy_file(self, source: Path, destination_dir: Path, file_name: str | None = None) -> Path: ...

    def remove_file(self, path: Path) -> None: ...


def describe_download_failure(exc: DownloadError, language: str | None) -> str:
    if exc.category is DownloadFailure.BLOCKED:
        return (
            "Failed to download audio: the site blocked the request (HTTP 403 Forbidden). "
            "This is usually bot detection; try again later or use a different video URL."
        )
    if exc.category is DownloadFailure.UNAVAILABLE:
        return (
            "Failed to download audio: the video is private, unavailable, or restricted. "
            "Check the URL and make sure the video is publicly accessible."
        )
    if exc.category is DownloadFailure.NO_FORMAT:
        return (
            "Failed to download audio: could not find a suitable audio format. The video may "
            f"not have audio tracks in the requested language ({language or 'default'})."
        )
    if exc.category is DownloadFailure.BINARY_MISSING:
        return (
            f"{exc.message}. Install yt-dlp (pip install yt-dlp) and make sure it is on your PATH."
        )
    return f"Failed to download audio: {exc.message}"


class TranscriptionPipeline:
    def __init__(
        self,
        *,
        settings: Settings,
        downloader: Downloader,
        provider: TranscriptionProvider,
        writer: FileWriter,
        sink: ProgressSink | None = None,
        registry: PhaseRegistry | None = None,
        clock: Clock | None = None,
        watcher: PollingWatcher | None = None,
        url_validator: Callable[[str], bool] = is_youtube_url,
        stage_phases: Mapping[PipelineStage, str] = STAGE_PHASES,
    ) -> None:
        self.settings = settings
        self.downloader = downloader
        self.provider = provider
        self.writer = writer
        self.sink: ProgressSink = sink or NullProgressSink()
        self.registry = registry or PhaseRegistry.default()
        self.clock = clock or SystemClock()
        self.watcher = watcher or PollingWatcher(
            provider,
            clock=self.clock,
            poll_interval_seconds=settings.poll_interval_seconds,
            status_log_interval_seconds=settings.status_log_interval_seconds,
            baseline_seconds=settings.baseline_transcription_seconds,
            max_wait_seconds=settings.max_wait_seconds,
        )
        self.url_validator = url_validator
        self.stage_phases = dict(stage_phases)

        missing = [name for name in self.stage_phases.values() if name not in self.registry]
        if missing:
            raise ValueError(f"Phase registry is missing phases: {', '.join(missing)}")

    def run(
        self,
        url: str,
        *,
        language: str | None = None,
        output_dir: Path | None = None,
        debug_only: bool = False,
        cancel: Event | None = None,
    ) -> PipelineResult:
        run = PipelineRun(
            url=url,
            language=language if language is not None else self.settings.default_language,
            debug_only=debug_only,
            state=ProgressState(run_start_time=self.clock.monotonic()),
        )
        try:
            self._prepare(run)
            self._execute(run, output_dir or self.settings.output_dir, cancel)
        except PipelineError as exc:
            self._transition(run, PipelineStage.FAILED)
            logger.error("Run failed in %s: %s", exc.phase or run.stage.value, exc.message)
            self.sink.finish(False, exc.message)
            raise

        self._transition(run, PipelineStage.COMPLETE)
        if debug_only:
            self.sink.finish(True, "Debug download completed")
        else:
            self.sink.finish(True, "Transcription completed successfully")

        assert run.video is not None
        return PipelineResult(
            video_id=run.video.video_id,
            title=run.video.title,
            transcript_path=run.transcript_path,
            audio_path=run.audio_path,
            temp_audio_path=run.temp_audio_path,
            debug_only=debug_only,
            elapsed_seconds=self.clock.monotonic() - run.state.run_start_time,
        )

    def _prepare(self, run: PipelineRun) -> None:
        if not self.url_validator(run.url):
            raise ValidationError(f"Invalid YouTube URL format: {run.url}")
        if not run.debug_only:
            self.settings.require_api_key()
        run.source_url = normalize_url(run.url)
        self.sink.log_line(f"Validated URL: {run.source_url}")

    def _execute(self, run: PipelineRun, output_dir: Path, cancel: Event | None) -> None:
        try:
            with self._stage(run, PipelineStage.DOWNLOADING, DownloadError, cancel):
                self._download(run, cancel)

            if run.debug_only:
                self._report_debug(run)
                return

            with self._stage(run, PipelineStage.UPLOADING, TranscriptionError, cancel):
                audio_url = self._upload(run)

            with self._stage(run, PipelineStage.TRANSCRIBING, TranscriptionError, cancel):
                text = self._transcribe(run, audio_url, cancel)

            with self._stage(run, PipelineStage.SAVING_TRANSCRIPT, PersistenceError, cancel):
                self._save_transcript(run, output_dir, text)

            with self._stage(run, PipelineStage.SAVING_AUDIO, PersistenceError, cancel):
                self._save_audio(run)
        finally:
            if not run.debug_only:
                self._cleanup(run)

    @contextmanager
    def _stage(
        self,
        run: PipelineRun,
        stage: PipelineStage,
        error_cls: type[PipelineError],
        cancel: Event | None,
    ) -> Iterator[None]:
        phase = self.stage_phases[stage]
        if cancel is not None and cancel.is_set():
            raise PipelineCancelled(f"Run cancelled before {phase.lower()}", phase=phase)

        self._transition(run, stage)
        run.state = start_phase(self.registry, run.state, phase)
        self.sink.start_phase(phase)
        self._report(run, 0.0, "Starting...")
        try:
            yield
        except PipelineError as exc:
            if exc.phase is None:
                exc.phase = phase
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise error_cls(f"{phase} failed: {exc}", phase=phase) from exc

        self._report(run, 100.0, "Complete")
        self.sink.complete_phase()

    def _transition(self, run: PipelineRun, stage: PipelineStage) -> None:
        logger.debug("Run %s: %s -> %s", run.url, run.stage.value, stage.value)
        run.stage = stage
        run.history.append(stage)

    def _report(self, run: PipelineRun, percent: float, message: str = "", speed: str | None = None) -> None:
        run.state = update_phase(run.state, percent)
        overall = overall_percent(self.registry, run.state)
        elapsed_ms = (self.clock.monotonic() - run.state.run_start_time) * 1000.0
        self.sink.update_phase(
            run.state.in_phase_percent,
            message,
            speed,
            overall=overall,
            eta=estimate_eta(elapsed_ms, overall),
        )

    def _download(self, run: PipelineRun, cancel: Event | None) -> None:
        try:
            video = self.downloader.fetch_metadata(run.source_url)
        except DownloadError as exc:
            raise DownloadError(describe_download_failure(exc, run.language), category=exc.category) from exc
        run.video = video

        self.sink.log_line(f"Video title: {video.title}")
        if video.duration_seconds is not None:
            self.sink.log_line(f"Video duration: {int(video.duration_seconds)} seconds")
        if run.language:
            self.sink.log_line(f"Using language preference: {run.language}")
        if video.available_languages:
            self.sink.log_line(f"Available audio languages: {', '.join(video.available_languages)}")
        self._log_formats(video)

        query = build_format_query(run.language)
        self.sink.log_line(f"Using format selector: {query.expression}")

        output_base = self.settings.work_dir / f"temp_audio_{video.video_id}"
        run.temp_audio_path = output_base.with_name(f"{output_base.name}.mp3")

        def on_progress(event: DownloadProgress) -> None:
            if not event.total_bytes:
                return
            percent = 100.0 * event.downloaded_bytes / event.total_bytes
            speed = f"{format_bytes(event.speed)}/s" if event.speed else None
            message = f"{format_bytes(event.downloaded_bytes)} / {format_bytes(event.total_bytes)}"
            self._report(run, percent, message, speed)

        try:
            run.temp_audio_path = self.downloader.fetch_audio(
                run.source_url, query, output_base, on_progress, cancel=cancel
            )
        except DownloadError as exc:
            raise DownloadError(describe_download_failure(exc, run.language), category=exc.category) from exc

        self._report(run, 100.0, "Download completed")
        self.sink.log_line(f"Audio downloaded to: {run.temp_audio_path}")

    def _log_formats(self, video: VideoInfo) -> None:
        if not video.audio_formats:
            return
        for index, item in enumerate(video.audio_formats[:MAX_LISTED_FORMATS], start=1):
            logger.debug(
                "Format %d: id=%s ext=%s acodec=%s abr=%s language=%s filesize=%s",
                index,
                item.get("format_id"),
                item.get("ext"),
                item.get("acodec"),
                item.get("abr"),
                item.get("language") or "not specified",
                item.get("filesize") or "unknown",
            )
        logger.debug("Total audio formats found: %d", len(video.audio_formats))

    def _report_debug(self, run: PipelineRun) -> None:
        path = run.temp_audio_path
        assert path is not None
        self.sink.log_line("Debug mode: audio downloaded, stopping before transcription")
        self.sink.log_line(f"Audio file location: {path}")
        if path.exists():
            self.sink.log_line(f"Audio file size: {path.stat().st_size / (1024 * 1024):.2f} MB")
        self.sink.log_line("Audio file will NOT be cleaned up in debug mode.")

    def _upload(self, run: PipelineRun) -> str:
        assert run.temp_audio_path is not None
        data = run.temp_audio_path.read_bytes()
        self._report(run, 0.0, f"Uploading {format_bytes(len(data))}")

        audio_url = self.provider.upload(data)
        if not isinstance(audio_url, str) or not audio_url:
            raise TranscriptionError("Failed to upload audio file: provider returned no content reference")

        self._report(run, 100.0, "Upload completed")
        return audio_url

    def _transcribe(self, run: PipelineRun, audio_url: str, cancel: Event | None) -> str:
        job_id = self.provider.submit(audio_url, language_detection=True)
        self.sink.log_line(f"Submitted transcription job {job_id}")

        def on_progress(percent: float, message: str) -> None:
            self._report(run, percent, message)

        text = self.watcher.watch(job_id, on_progress=on_progress, on_log=self.sink.log_line, cancel=cancel)
        self.sink.log_line(f"Transcription length: {len(text)} characters")
        return text

    def _save_transcript(self, run: PipelineRun, output_dir: Path, text: str) -> None:
        assert run.video is not None
        destination = transcript_dir(output_dir, run.video.title, fallback=run.video.video_id)
        self.writer.ensure_directory(destination)
        run.transcript_path = self.writer.write_text(destination / TRANSCRIPT_FILENAME, text)
        self._report(run, 100.0, f"Saved to: {run.transcript_path.name}")
        self.sink.log_line(f"Transcript saved to: {run.transcript_path}")

    def _save_audio(self, run: PipelineRun) -> None:
        assert run.temp_audio_path is not None and run.transcript_path is not None
        source = run.temp_audio_path
        run.audio_path = self.writer.copy_file(source, run.transcript_path.parent, f"audio{source.suffix}")
        self._report(run, 100.0, f"Audio saved to: {run.audio_path.name}")
        self.sink.log_line(f"Audio file saved to: {run.audio_path}")

    def _cleanup(self, run: PipelineRun) -> None:
        if run.temp_audio_path is None:
            return

        temp = run.temp_audio_path
        stem = temp.name.split(".", 1)[0]
        # Partial downloads leave siblings such as .part or .webm next to the target.
        leftovers = [path for path in sorted(temp.parent.glob(f"{stem}.*")) if path != temp]
        targets = [path for path in [temp, *leftovers] if path.exists()]
        for path in targets:
            try:
                self.writer.remove_file(path)
            except OSError as exc:
                warning = CleanupWarning(f"Could not clean up temporary file {path}: {exc}")
                logger.warning("%s", warning)
                self.sink.log_line(f"Warning: {warning}")
            else:
                self.sink.log_line(f"Cleaned up temporary file: {path}")

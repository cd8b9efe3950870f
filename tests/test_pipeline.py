from pathlib import Path
from threading import Event

import pytest

from yt_transcripts.config import Settings
from yt_transcripts.errors import (
    ConfigError,
    DownloadError,
    DownloadFailure,
    PersistenceError,
    PipelineCancelled,
    TranscriptionError,
    ValidationError,
)
from yt_transcripts.formats import FormatQuery
from yt_transcripts.progress import PHASE_DOWNLOAD, PHASE_SAVE_AUDIO, PHASE_TRANSCRIBE, PHASE_UPLOAD
from yt_transcripts.services.storage import LocalFileWriter
from yt_transcripts.pipeline import TranscriptionPipeline
from yt_transcripts.types import DownloadProgress, PipelineStage, TranscriptionJob, VideoInfo

URL = "https://www.youtube.com/watch?v=abcdefghijk"


class FakeClock:
    def __init__(self) -> None:
        self.now = 50.0

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeDownloader:
    def __init__(self, failure: DownloadError | None = None, partial: str | None = None) -> None:
        self.failure = failure
        self.partial = partial
        self.metadata_calls = 0
        self.urls: list[str] = []
        self.audio_calls: list[FormatQuery] = []

    def fetch_metadata(self, url: str) -> VideoInfo:
        self.metadata_calls += 1
        self.urls.append(url)
        return VideoInfo(
            title="My Great Video!",
            video_id="abcdefghijk",
            duration_seconds=42.0,
            available_languages=["en-US"],
            audio_formats=[{"format_id": "249", "ext": "webm", "acodec": "opus", "abr": 50}],
        )

    def fetch_audio(self, url, formats, output_base, on_progress=None, cancel=None) -> Path:
        self.urls.append(url)
        self.audio_calls.append(formats)
        if self.partial is not None:
            output_base.with_name(f"{output_base.name}.{self.partial}").write_bytes(b"partial")
        if self.failure is not None:
            raise self.failure
        if on_progress is not None:
            on_progress(DownloadProgress(downloaded_bytes=0, total_bytes=None))
            on_progress(DownloadProgress(downloaded_bytes=512, total_bytes=1024, speed=2048.0))
        path = output_base.with_name(f"{output_base.name}.mp3")
        path.write_bytes(b"fake-audio")
        return path


class FakeProvider:
    def __init__(self, jobs: list[TranscriptionJob] | None = None, upload_result: object = "https://cdn/upload/1") -> None:
        self.jobs = jobs or [
            TranscriptionJob(id="t1", status="queued"),
            TranscriptionJob(id="t1", status="processing"),
            TranscriptionJob(id="t1", status="completed", text="hello world"),
        ]
        self.upload_result = upload_result
        self.uploads: list[bytes] = []
        self.submissions: list[tuple[str, bool]] = []
        self.polls = 0

    @property
    def calls(self) -> int:
        return len(self.uploads) + len(self.submissions) + self.polls

    def upload(self, data: bytes) -> str:
        self.uploads.append(data)
        return self.upload_result  # type: ignore[return-value]

    def submit(self, audio_url: str, *, language_detection: bool = True) -> str:
        self.submissions.append((audio_url, language_detection))
        return "t1"

    def poll(self, job_id: str) -> TranscriptionJob:
        self.polls += 1
        return self.jobs.pop(0) if len(self.jobs) > 1 else self.jobs[0]


class RecordingWriter(LocalFileWriter):
    def __init__(self, fail_remove: bool = False, fail_copy: bool = False) -> None:
        self.fail_remove = fail_remove
        self.fail_copy = fail_copy
        self.removed: list[Path] = []

    def copy_file(self, source: Path, destination_dir: Path, file_name: str | None = None) -> Path:
        if self.fail_copy:
            raise OSError("disk full")
        return super().copy_file(source, destination_dir, file_name)

    def remove_file(self, path: Path) -> None:
        self.removed.append(path)
        if self.fail_remove:
            raise PermissionError("file is locked")
        super().remove_file(path)


class RecordingSink:
    def __init__(self) -> None:
        self.phases: list[str] = []
        self.updates: list[tuple[str, float, float, str]] = []
        self.completed: list[str] = []
        self.lines: list[str] = []
        self.finished: list[tuple[bool, str]] = []

    def start_phase(self, name: str) -> None:
        self.phases.append(name)

    def update_phase(self, percent, message="", speed=None, overall=0.0, eta="unknown") -> None:
        self.updates.append((self.phases[-1], percent, overall, eta))

    def complete_phase(self) -> None:
        self.completed.append(self.phases[-1])

    def log_line(self, message: str) -> None:
        self.lines.append(message)

    def finish(self, success: bool, message: str) -> None:
        self.finished.append((success, message))


def make_settings(tmp_path: Path, api_key: str = "test-key") -> Settings:
    return Settings(
        assemblyai_api_key=api_key,
        output_dir=tmp_path / "out",
        work_dir=tmp_path / "work",
        default_language="en",
        poll_interval_seconds=2.0,
        status_log_interval_seconds=10.0,
        baseline_transcription_seconds=120.0,
        max_wait_seconds=3600.0,
        http_timeout_seconds=30.0,
        ytdlp_binary="yt-dlp",
    )


def make_pipeline(tmp_path: Path, **overrides):
    (tmp_path / "work").mkdir(exist_ok=True)
    parts = {
        "settings": make_settings(tmp_path),
        "downloader": FakeDownloader(),
        "provider": FakeProvider(),
        "writer": RecordingWriter(),
        "sink": RecordingSink(),
        "clock": FakeClock(),
    }
    parts.update(overrides)
    return TranscriptionPipeline(**parts), parts


def test_full_run_persists_transcript_and_audio(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path)
    result = pipeline.run(URL)

    expected_dir = tmp_path / "out" / "transcriptions" / "my-great-video"
    assert result.transcript_path == expected_dir / "transcript.txt"
    assert result.transcript_path.read_text(encoding="utf-8") == "hello world"
    assert result.audio_path == expected_dir / "audio.mp3"
    assert result.audio_path.read_bytes() == b"fake-audio"

    temp = tmp_path / "work" / "temp_audio_abcdefghijk.mp3"
    assert result.temp_audio_path == temp
    assert not temp.exists()
    assert parts["writer"].removed == [temp]

    provider = parts["provider"]
    assert provider.uploads == [b"fake-audio"]
    assert provider.submissions == [("https://cdn/upload/1", True)]

    sink = parts["sink"]
    assert sink.phases[0] == PHASE_DOWNLOAD
    assert sink.phases[-1] == PHASE_SAVE_AUDIO
    assert sink.completed == sink.phases
    assert sink.finished == [(True, "Transcription completed successfully")]


def test_overall_progress_is_monotonic_across_run(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path)
    pipeline.run(URL)

    overall = [update[2] for update in parts["sink"].updates]
    assert overall == sorted(overall)
    assert overall[-1] == pytest.approx(100.0)


def test_transcription_reaches_complete_only_at_terminal_status(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path)
    pipeline.run(URL)

    transcribe = [update[1] for update in parts["sink"].updates if update[0] == PHASE_TRANSCRIBE]
    assert transcribe[-1] == 100.0
    assert 100.0 not in transcribe[:-2]
    assert max(transcribe[:-2]) < 100.0


def test_first_progress_update_has_unknown_eta(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path)
    pipeline.run(URL)

    first = parts["sink"].updates[0]
    assert first[0] == PHASE_DOWNLOAD
    assert first[3] == "unknown"


def test_stage_history(tmp_path: Path) -> None:
    pipeline, _ = make_pipeline(tmp_path)
    run_stages: list[list[PipelineStage]] = []
    original = pipeline._transition

    def spy(run, stage):
        original(run, stage)
        run_stages.append(list(run.history))

    pipeline._transition = spy  # type: ignore[method-assign]
    pipeline.run(URL)

    assert run_stages[-1] == [
        PipelineStage.DOWNLOADING,
        PipelineStage.UPLOADING,
        PipelineStage.TRANSCRIBING,
        PipelineStage.SAVING_TRANSCRIPT,
        PipelineStage.SAVING_AUDIO,
        PipelineStage.COMPLETE,
    ]


def test_debug_only_stops_after_download_and_keeps_file(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path)
    result = pipeline.run(URL, debug_only=True)

    temp = tmp_path / "work" / "temp_audio_abcdefghijk.mp3"
    assert result.debug_only is True
    assert result.transcript_path is None
    assert result.temp_audio_path == temp
    assert temp.exists()

    assert parts["provider"].calls == 0
    assert parts["writer"].removed == []
    assert parts["sink"].phases == [PHASE_DOWNLOAD]
    assert parts["sink"].finished == [(True, "Debug download completed")]
    assert any("NOT be cleaned up" in line for line in parts["sink"].lines)


def test_debug_only_does_not_need_credentials(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path, settings=make_settings(tmp_path, api_key=""))
    result = pipeline.run(URL, debug_only=True)
    assert result.temp_audio_path is not None
    assert parts["downloader"].metadata_calls == 1


def test_missing_credentials_fail_before_any_call(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path, settings=make_settings(tmp_path, api_key=""))
    with pytest.raises(ConfigError, match="ASSEMBLYAI_API_KEY"):
        pipeline.run(URL)

    assert parts["downloader"].metadata_calls == 0
    assert parts["downloader"].audio_calls == []
    assert parts["provider"].calls == 0
    assert parts["sink"].finished[0][0] is False


def test_invalid_url_is_rejected(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path)
    with pytest.raises(ValidationError):
        pipeline.run("https://example.com/not-a-video")
    assert parts["downloader"].metadata_calls == 0


def test_no_matching_format_mentions_language(tmp_path: Path) -> None:
    downloader = FakeDownloader(
        failure=DownloadError("ERROR: Requested format is not available", category=DownloadFailure.NO_FORMAT)
    )
    pipeline, parts = make_pipeline(tmp_path, downloader=downloader)

    with pytest.raises(DownloadError) as excinfo:
        pipeline.run(URL, language="de")

    assert "(de)" in excinfo.value.message
    assert excinfo.value.category is DownloadFailure.NO_FORMAT
    assert excinfo.value.phase == PHASE_DOWNLOAD
    assert isinstance(excinfo.value.__cause__, DownloadError)
    assert parts["provider"].calls == 0
    assert parts["sink"].phases == [PHASE_DOWNLOAD]
    assert downloader.audio_calls[0].terms[0].language == "de"


def test_blocked_download_gets_diagnosable_message(tmp_path: Path) -> None:
    downloader = FakeDownloader(failure=DownloadError("HTTP Error 403: Forbidden", category=DownloadFailure.BLOCKED))
    pipeline, _ = make_pipeline(tmp_path, downloader=downloader)
    with pytest.raises(DownloadError, match="403 Forbidden"):
        pipeline.run(URL)


def test_failed_download_removes_partial_files(tmp_path: Path) -> None:
    downloader = FakeDownloader(
        failure=DownloadError("ERROR: unable to download video data", category=DownloadFailure.OTHER),
        partial="webm.part",
    )
    pipeline, parts = make_pipeline(tmp_path, downloader=downloader)

    with pytest.raises(DownloadError) as excinfo:
        pipeline.run(URL)

    partial = tmp_path / "work" / "temp_audio_abcdefghijk.webm.part"
    assert excinfo.value.phase == PHASE_DOWNLOAD
    assert parts["writer"].removed == [partial]
    assert list((tmp_path / "work").iterdir()) == []
    assert parts["provider"].calls == 0


def test_downloader_receives_normalized_url(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path)
    pipeline.run("http://m.youtube.com/watch?v=abcdefghijk&list=PL1&si=share")

    assert parts["downloader"].urls == ["https://youtube.com/watch?v=abcdefghijk"] * 2


def test_upload_without_reference_fails(tmp_path: Path) -> None:
    provider = FakeProvider(upload_result=None)
    pipeline, parts = make_pipeline(tmp_path, provider=provider)

    with pytest.raises(TranscriptionError) as excinfo:
        pipeline.run(URL)

    assert excinfo.value.phase == PHASE_UPLOAD
    assert provider.submissions == []
    assert len(parts["writer"].removed) == 1


def test_transcription_error_aborts_and_cleans_up(tmp_path: Path) -> None:
    provider = FakeProvider(
        jobs=[
            TranscriptionJob(id="t1", status="processing"),
            TranscriptionJob(id="t1", status="error", error_detail="unsupported audio"),
        ]
    )
    pipeline, parts = make_pipeline(tmp_path, provider=provider)

    with pytest.raises(TranscriptionError, match="unsupported audio") as excinfo:
        pipeline.run(URL)

    assert excinfo.value.phase == PHASE_TRANSCRIBE
    assert not (tmp_path / "out").exists()
    assert not (tmp_path / "work" / "temp_audio_abcdefghijk.mp3").exists()


def test_copy_failure_becomes_persistence_error(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path, writer=RecordingWriter(fail_copy=True))

    with pytest.raises(PersistenceError, match="disk full") as excinfo:
        pipeline.run(URL)

    assert excinfo.value.phase == PHASE_SAVE_AUDIO
    assert isinstance(excinfo.value.__cause__, OSError)


def test_cleanup_failure_is_only_a_warning(tmp_path: Path) -> None:
    pipeline, parts = make_pipeline(tmp_path, writer=RecordingWriter(fail_remove=True))
    result = pipeline.run(URL)

    assert result.transcript_path is not None
    assert any(line.startswith("Warning: Could not clean up") for line in parts["sink"].lines)
    assert parts["sink"].finished == [(True, "Transcription completed successfully")]


def test_cancelled_run_stops_before_next_phase(tmp_path: Path) -> None:
    cancel = Event()

    class CancellingProvider(FakeProvider):
        def upload(self, data: bytes) -> str:
            cancel.set()
            return super().upload(data)

    provider = CancellingProvider()
    pipeline, parts = make_pipeline(tmp_path, provider=provider)

    with pytest.raises(PipelineCancelled):
        pipeline.run(URL, cancel=cancel)

    assert provider.submissions == []
    assert len(parts["writer"].removed) == 1


def test_registry_must_cover_pipeline_phases(tmp_path: Path) -> None:
    from yt_transcripts.progress import PhaseRegistry

    with pytest.raises(ValueError, match="missing phases"):
        make_pipeline(tmp_path, registry=PhaseRegistry([(PHASE_DOWNLOAD, 1)]))

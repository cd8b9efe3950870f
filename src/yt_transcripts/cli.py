from __future__ import annotations

import argparse
import logging
import sys
import traceback
from pathlib import Path
from typing import TextIO

from yt_transcripts.config import load_settings
from yt_transcripts.errors import PipelineError
from yt_transcripts.pipeline import TranscriptionPipeline
from yt_transcripts.reporting import BarProgressSink, LoggingProgressSink, ProgressSink
from yt_transcripts.services.downloader import YtDlpDownloader
from yt_transcripts.services.storage import LocalFileWriter
from yt_transcripts.services.transcriber import AssemblyAIClient

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yt-transcripts",
        description="Extract transcripts from YouTube videos using AssemblyAI",
    )
    parser.add_argument("url", help="YouTube video URL")
    parser.add_argument("-o", "--output-dir", type=Path, default=None, help="Output directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-l", "--language", default=None, help="Preferred audio language (e.g. en, es, fr)")
    parser.add_argument(
        "--debug-only",
        action="store_true",
        help="Download the audio and stop before transcription, keeping the file",
    )
    return parser


def build_sink(verbose: bool, stream: TextIO | None = None) -> ProgressSink:
    """Progress bars on a terminal, log records everywhere else."""
    stream = stream or sys.stderr
    if stream.isatty():
        return BarProgressSink(verbose=verbose, stream=stream)
    return LoggingProgressSink()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    sink = build_sink(args.verbose)
    started = False
    try:
        settings = load_settings()
        with AssemblyAIClient(
            settings.assemblyai_api_key, timeout_seconds=settings.http_timeout_seconds
        ) as provider:
            pipeline = TranscriptionPipeline(
                settings=settings,
                downloader=YtDlpDownloader(settings.ytdlp_binary),
                provider=provider,
                writer=LocalFileWriter(),
                sink=sink,
            )
            started = True
            result = pipeline.run(
                args.url,
                language=args.language,
                output_dir=args.output_dir,
                debug_only=args.debug_only,
            )
    except PipelineError as exc:
        if args.verbose:
            traceback.print_exception(exc, file=sys.stderr)
        message = exc.message or "Unknown error occurred"
        # Failures inside run() were already reported through the sink.
        if not started:
            sink.finish(False, message)
        if not isinstance(sink, BarProgressSink):
            print(f"Error: {message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130

    if result.transcript_path is not None:
        print(result.transcript_path)
    else:
        print(result.temp_audio_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())

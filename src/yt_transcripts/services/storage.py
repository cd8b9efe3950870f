from __future__ import annotations

import re
import shutil
from pathlib import Path

TRANSCRIPTS_DIRNAME = "transcriptions"
TRANSCRIPT_FILENAME = "transcript.txt"


def sanitize_file_name(value: str, fallback: str = "untitled") -> str:
    clean = re.sub(r"[^\w\s-]", "", value.lower())
    clean = re.sub(r"\s+", "-", clean.strip())
    clean = re.sub(r"-+", "-", clean).strip("-_")
    return clean or fallback


def transcript_dir(output_dir: Path, title: str, fallback: str = "untitled") -> Path:
    return output_dir / TRANSCRIPTS_DIRNAME / sanitize_file_name(title, fallback)


class LocalFileWriter:
    def ensure_directory(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def write_text(self, path: Path, content: str) -> Path:
        path.write_text(content, encoding="utf-8")
        return path

    def copy_file(self, source: Path, destination_dir: Path, file_name: str | None = None) -> Path:
        destination = destination_dir / (file_name or source.name)
        shutil.copyfile(source, destination)
        return destination

    def remove_file(self, path: Path) -> None:
        path.unlink()

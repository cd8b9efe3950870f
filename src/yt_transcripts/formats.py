from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

DEFAULT_LANGUAGE = "en"
ABR_FLOOR_KBPS = 64
ABR_CEILING_KBPS = 128

Selector = Literal["worstaudio", "bestaudio"]


@dataclass(frozen=True, slots=True)
class FormatTerm:
    selector: Selector
    language: str | None = None
    language_prefix: bool = False
    min_abr: int | None = None
    max_abr: int | None = None

    @property
    def is_universal(self) -> bool:
        return self.language is None and self.min_abr is None and self.max_abr is None

    def render(self) -> str:
        parts = [self.selector]
        if self.language is not None:
            op = "^=" if self.language_prefix else "="
            parts.append(f"[language{op}{self.language}]")
        if self.min_abr is not None:
            parts.append(f"[abr>={self.min_abr}]")
        if self.max_abr is not None:
            parts.append(f"[abr<={self.max_abr}]")
        return "".join(parts)


@dataclass(frozen=True, slots=True)
class FormatQuery:
    terms: tuple[FormatTerm, ...]

    @property
    def expression(self) -> str:
        """yt-dlp ``-f`` value; yt-dlp tries each ``/``-separated term in order."""
        return "/".join(term.render() for term in self.terms)

    def __str__(self) -> str:
        return self.expression


def _tier(language: str | None = None, prefix: bool = False) -> list[FormatTerm]:
    # Low-bitrate stream first, then a capped higher-quality one.
    return [
        FormatTerm("worstaudio", language=language, language_prefix=prefix, min_abr=ABR_FLOOR_KBPS),
        FormatTerm("bestaudio", language=language, language_prefix=prefix, max_abr=ABR_CEILING_KBPS),
    ]


def build_format_query(language: str | None, default_language: str = DEFAULT_LANGUAGE) -> FormatQuery:
    terms: list[FormatTerm] = []
    language = (language or "").strip() or None

    if language is not None:
        if language == default_language:
            # Tags like "en-US" and "en-GB" are all acceptable for the default.
            terms.extend(_tier(language, prefix=True))
        else:
            terms.extend(_tier(language))
            terms.extend(_tier(language, prefix=True))

    terms.extend(_tier())
    terms.append(FormatTerm("bestaudio"))
    return FormatQuery(terms=tuple(terms))

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

_YOUTUBE_URL = re.compile(
    r"^(https?://)?(www\.|m\.)?"
    r"(youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/v/|youtube\.com/shorts/)"
    r"[a-zA-Z0-9_-]{11}.*$"
)

# Share/tracking parameters, plus playlist context that would drag yt-dlp into a playlist.
_DROPPED_PARAMS = frozenset({"feature", "si", "pp", "ab_channel", "list", "index", "start_radio"})


def is_youtube_url(url: str) -> bool:
    return bool(_YOUTUBE_URL.match(url.strip()))


def normalize_url(url: str) -> str:
    """Return the URL yt-dlp is given: https, no ``www.``/``m.``, identity params only."""
    parsed = urlparse(url.strip())
    if not parsed.scheme:
        parsed = urlparse(f"https://{url.strip()}")

    netloc = parsed.netloc.lower()
    for prefix in ("www.", "m."):
        if netloc.startswith(prefix):
            netloc = netloc[len(prefix):]

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=False)
        if key not in _DROPPED_PARAMS and not key.startswith("utm_")
    ]
    query = urlencode(sorted(query_pairs))

    return urlunparse(("https", netloc, parsed.path.rstrip("/"), "", query, ""))

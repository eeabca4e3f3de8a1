from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

from shelfmark.models import MEDIA_AUDIO, MEDIA_OTHER, MEDIA_VIDEO

YOUTUBE_HOSTS = {"youtube.com", "youtu.be", "music.youtube.com"}
AUDIO_EXTENSIONS = (".mp3", ".wav", ".ogg", ".aac", ".flac", ".m4a")

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")


def _host(parsed) -> str:
    host = (parsed.hostname or "").lower()
    for prefix in ("www.", "m."):
        if host.startswith(prefix):
            return host[len(prefix) :]
    return host


def _parse(url):
    if not isinstance(url, str) or not url.strip():
        return None
    candidate = url.strip()
    if "://" not in candidate and not candidate.startswith("//"):
        candidate = f"//{candidate}"
    try:
        return urlparse(candidate)
    except ValueError:
        return None


def is_youtube_url(url) -> bool:
    parsed = _parse(url)
    if parsed is None:
        return False
    return _host(parsed) in YOUTUBE_HOSTS


def infer_media_type(url) -> str:
    parsed = _parse(url)
    if parsed is None:
        return MEDIA_OTHER
    if _host(parsed) in YOUTUBE_HOSTS:
        return MEDIA_VIDEO
    if parsed.hostname and parsed.path.lower().endswith(AUDIO_EXTENSIONS):
        return MEDIA_AUDIO
    return MEDIA_OTHER


def youtube_video_id(url) -> str | None:
    parsed = _parse(url)
    if parsed is None:
        return None
    host = _host(parsed)
    if host not in YOUTUBE_HOSTS:
        return None

    if host == "youtu.be":
        candidate = parsed.path.strip("/").split("/")[0]
    else:
        candidate = (parse_qs(parsed.query).get("v") or [""])[0]
        if not candidate:
            parts = [part for part in parsed.path.split("/") if part]
            if len(parts) >= 2 and parts[0] in {"embed", "v", "shorts", "live"}:
                candidate = parts[1]
    return candidate if _VIDEO_ID_RE.match(candidate or "") else None

from __future__ import annotations

import logging
import warnings
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from shelfmark.services.media import youtube_video_id

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "ShelfmarkBot/1.0 (+https://shelfmark.local)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

_THUMBNAIL_META = (
    ("property", "og:image"),
    ("property", "og:image:url"),
    ("name", "twitter:image"),
    ("name", "twitter:image:src"),
)


def fetch_html(url: str, timeout: float, max_bytes: int) -> tuple[str, str, int]:
    with httpx.Client(
        follow_redirects=True, timeout=timeout, headers=DEFAULT_HEADERS
    ) as client:
        with client.stream("GET", url) as response:
            status_code = response.status_code
            chunks = []
            total = 0
            for chunk in response.iter_bytes():
                total += len(chunk)
                if total > max_bytes:
                    break
                chunks.append(chunk)
            data = b"".join(chunks)
            encoding = response.encoding or "utf-8"
            return (
                data.decode(encoding, errors="ignore"),
                str(response.url),
                status_code,
            )


def _build_soup(html: str) -> BeautifulSoup:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        return BeautifulSoup(html, "lxml")


def thumbnail_from_html(html: str, base_url: str) -> str | None:
    soup = _build_soup(html)
    for attr, value in _THUMBNAIL_META:
        tag = soup.find("meta", attrs={attr: value})
        content = tag.get("content") if tag else None
        if isinstance(content, str) and content.strip():
            return urljoin(base_url, content.strip())

    link = soup.find("link", rel="image_src")
    href = link.get("href") if link else None
    if isinstance(href, str) and href.strip():
        return urljoin(base_url, href.strip())
    return None


def _github_thumbnail(url: str) -> str | None:
    parsed = urlparse(url)
    if (parsed.hostname or "").lower().removeprefix("www.") != "github.com":
        return None
    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        return None
    return f"https://opengraph.githubassets.com/1/{parts[0]}/{parts[1]}"


def extract_thumbnail(url: str, timeout: float, max_bytes: int) -> str | None:
    video_id = youtube_video_id(url)
    if video_id:
        return f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"

    try:
        github = _github_thumbnail(url)
    except ValueError:
        return None
    if github:
        return github

    try:
        html, final_url, status_code = fetch_html(url, timeout=timeout, max_bytes=max_bytes)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Thumbnail fetch failed for %s: %s", url, exc)
        return None
    if status_code >= 400:
        return None
    return thumbnail_from_html(html, final_url)


def favicon_for(url: str) -> str | None:
    try:
        host = urlparse((url or "").strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    return f"https://www.google.com/s2/favicons?domain={host}&sz=32"

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import cast

from bs4 import BeautifulSoup, Tag
from dateutil import parser as date_parser

from shelfmark.services.common import parse_tags


@dataclass
class ImportedBookmark:
    title: str
    url: str
    folder_path: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    added_at: datetime | None = None


def parse_added_at(value) -> datetime | None:
    """Browser timestamps arrive as epoch seconds, epoch milliseconds or ISO text."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) or str(value).strip().isdigit():
        number = float(value)
        if number > 10_000_000_000:
            number /= 1000
        try:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = date_parser.isoparse(str(value).strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _direct_children(dl: Tag, name: str) -> list[Tag]:
    return [
        cast(Tag, node)
        for node in dl.find_all(name)
        if isinstance(node, Tag) and node.find_parent("dl") is dl
    ]


def _nested_list(dt: Tag) -> Tag | None:
    nested = dt.find("dl")
    if isinstance(nested, Tag):
        return nested

    sibling = dt.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag):
            name = (sibling.name or "").lower()
            if name == "dl":
                return sibling
            if name == "dt":
                return None
        sibling = sibling.next_sibling
    return None


def _owned_by(dt: Tag, names) -> Tag | None:
    for node in dt.find_all(names):
        if isinstance(node, Tag) and node.find_parent("dt") is dt:
            return node
    return None


def _entry_from_anchor(anchor: Tag, folder_path: list[str]) -> ImportedBookmark | None:
    href = anchor.get("href")
    url = href.strip() if isinstance(href, str) else ""
    if not url:
        return None
    tags_attr = anchor.get("tags")
    return ImportedBookmark(
        title=anchor.get_text(strip=True),
        url=url,
        folder_path=folder_path.copy(),
        tags=parse_tags(tags_attr if isinstance(tags_attr, str) else ""),
        added_at=parse_added_at(anchor.get("add_date")),
    )


def _walk(dl: Tag, folder_path: list[str], out: list[ImportedBookmark]) -> None:
    for dt in _direct_children(dl, "dt"):
        anchor = _owned_by(dt, "a")
        if anchor is not None:
            entry = _entry_from_anchor(anchor, folder_path)
            if entry:
                out.append(entry)

        nested = _nested_list(dt)
        heading = _owned_by(dt, ["h3", "h2", "h1"])
        if heading is None and nested is not None:
            heading = dt.find(["h3", "h2", "h1"])
        if isinstance(heading, Tag) and nested is not None:
            _walk(nested, folder_path + [heading.get_text(strip=True)], out)


def parse_bookmark_html(html: str) -> list[ImportedBookmark]:
    soup = BeautifulSoup(html, "lxml")
    root = soup.find("dl")
    if not isinstance(root, Tag):
        return []

    entries: list[ImportedBookmark] = []
    _walk(root, [], entries)
    return entries


def parse_sync_payload(rows) -> list[ImportedBookmark]:
    """Decode the browser extension's flat bookmark list."""
    if not isinstance(rows, list):
        return []

    entries: list[ImportedBookmark] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        url = str(row.get("url") or "").strip()
        if not url:
            continue
        parent_title = str(row.get("parentTitle") or "").strip()
        entries.append(
            ImportedBookmark(
                title=str(row.get("title") or "").strip() or "Untitled",
                url=url,
                tags=parse_tags([parent_title]) if parent_title else [],
                added_at=parse_added_at(row.get("dateAdded")),
            )
        )
    return entries

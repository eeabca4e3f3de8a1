from datetime import datetime, timezone

from shelfmark.services.bookmark_import import (
    parse_added_at,
    parse_bookmark_html,
    parse_sync_payload,
)


def test_parse_bookmark_html_handles_nested_netscape_structure():
    html = """
<!DOCTYPE NETSCAPE-Bookmark-file-1>
<DL><p>
  <DT><H3>Root Folder</H3>
  <DL><p>
    <DT><A HREF="https://example.com/a">A</A>
    <DT><H3>Inner Folder</H3>
    <DL><p>
      <DT><A HREF="https://example.com/b">B</A>
      <DT><A HREF="https://example.com/c#frag">C</A>
    </DL><p>
  </DL><p>
  <DT><A HREF="https://example.com/root">Root Link</A>
</DL><p>
"""

    rows = parse_bookmark_html(html)
    urls = [row.url for row in rows]
    assert urls == [
        "https://example.com/a",
        "https://example.com/b",
        "https://example.com/c#frag",
        "https://example.com/root",
    ]

    assert rows[0].folder_path == ["Root Folder"]
    assert rows[1].folder_path == ["Root Folder", "Inner Folder"]
    assert rows[2].folder_path == ["Root Folder", "Inner Folder"]
    assert rows[3].folder_path == []


def test_parse_bookmark_html_keeps_empty_title_when_anchor_has_no_text():
    html = """
<!DOCTYPE NETSCAPE-Bookmark-file-1>
<DL><p>
  <DT><A HREF="https://example.com/no-title"></A>
</DL><p>
"""

    rows = parse_bookmark_html(html)
    assert len(rows) == 1
    assert rows[0].url == "https://example.com/no-title"
    assert rows[0].title == ""


def test_parse_bookmark_html_reads_tags_and_add_date():
    html = """
<DL><p>
  <DT><A HREF="https://example.com/t" ADD_DATE="1700000000" TAGS="Python,Web">Tagged</A>
  <DT><A HREF="">Empty</A>
</DL><p>
"""

    rows = parse_bookmark_html(html)

    assert len(rows) == 1
    assert rows[0].tags == ["python", "web"]
    assert rows[0].added_at == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_parse_bookmark_html_without_list_returns_nothing():
    assert parse_bookmark_html("<p>no bookmarks here</p>") == []


def test_parse_added_at_formats():
    expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    assert parse_added_at(1700000000) == expected
    assert parse_added_at(1700000000000) == expected
    assert parse_added_at("1700000000000") == expected
    assert parse_added_at("2023-11-14T22:13:20Z") == expected
    assert parse_added_at("2023-11-14T22:13:20") == expected
    assert parse_added_at("yesterday") is None
    assert parse_added_at(None) is None


def test_parse_sync_payload_turns_parent_title_into_tag():
    rows = parse_sync_payload(
        [
            {
                "title": "Docs",
                "url": "https://docs.example.com",
                "parentTitle": "Reading List",
                "dateAdded": 1700000000000,
            },
            {"title": "", "url": "https://untitled.example.com"},
            {"title": "No url"},
            "garbage",
        ]
    )

    assert [row.url for row in rows] == [
        "https://docs.example.com",
        "https://untitled.example.com",
    ]
    assert rows[0].tags == ["reading list"]
    assert rows[0].folder_path == []
    assert rows[0].added_at.year == 2023
    assert rows[1].title == "Untitled"
    assert rows[1].tags == []
    assert rows[1].added_at is None


def test_parse_sync_payload_rejects_non_list():
    assert parse_sync_payload({"url": "https://example.com"}) == []

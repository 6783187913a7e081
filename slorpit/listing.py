"""
Human-readable page(s) listing the archived files.

Purely cosmetic: the decoder never reads any of these objects.
"""

from __future__ import annotations

import datetime
from typing import List, Optional, Sequence

from .codec import Codec
from .constants import (
    LISTING_FONT,
    LISTING_FONT_RESOURCE,
    LISTING_TITLE,
    PAGE_HEIGHT,
    PAGE_WIDTH,
)
from .objects import Array, Dictionary, Name, ObjectId, ObjectTable, Stream, ref

LEFT_MARGIN = 50
TOP = 750
BOTTOM_MARGIN = 50
ROW_HEIGHT = 12
NAME_COLUMN = 300
SIZE_COLUMN = 100
# Courier is 0.6 em wide; 9pt rows leave room for 55 characters in 300pt
NAME_CHARS = 54


def format_size(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    if n < 1024 * 1024:
        return f"{n / 1024.0:.1f} KB"
    if n < 1024 * 1024 * 1024:
        return f"{n / (1024.0 * 1024.0):.1f} MB"
    return f"{n / (1024.0 * 1024.0 * 1024.0):.1f} GB"


def format_timestamp(ts: Optional[int]) -> str:
    if ts is None:
        return "N/A"
    try:
        dt = datetime.datetime.fromtimestamp(ts, tz=datetime.timezone.utc)
    except (OverflowError, OSError, ValueError):
        return "N/A"
    return dt.strftime("%Y-%m-%d %H:%M")


def escape_text(s: str) -> str:
    """Escape for a literal string operand; non-ASCII and control chars become '?'."""
    s = "".join(c if (" " <= c <= "~") else "?" for c in s)
    return s.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _clip(name: str) -> str:
    if len(name) <= NAME_CHARS:
        return name
    return "..." + name[-(NAME_CHARS - 3) :]


def rows_per_page(first: bool) -> int:
    # First page spends 60pt on title, count line and column headers
    top = TOP - (60 if first else 15)
    return max(1, (top - BOTTOM_MARGIN) // ROW_HEIGHT)


def paginate(entries: Sequence) -> List[Sequence]:
    pages = []
    start = 0
    first = True
    while True:
        n = rows_per_page(first)
        pages.append(entries[start : start + n])
        start += n
        first = False
        if start >= len(entries):
            return pages


def page_content(entries: Sequence, *, total: int, page_no: int, page_count: int) -> bytes:
    ops = ["BT", f"/{LISTING_FONT_RESOURCE} 12 Tf", f"{LEFT_MARGIN} {TOP} Td"]
    if page_no == 0:
        ops += [
            f"({escape_text(LISTING_TITLE)}) Tj",
            "0 -20 Td",
            f"/{LISTING_FONT_RESOURCE} 10 Tf",
            f"(Archive contains {total} files) Tj",
            "0 -25 Td",
        ]
    else:
        ops += [
            f"/{LISTING_FONT_RESOURCE} 10 Tf",
            f"(continued, page {page_no + 1} of {page_count}) Tj",
            "0 -15 Td",
        ]
    ops += [
        f"/{LISTING_FONT_RESOURCE} 9 Tf",
        "(Filename) Tj",
        f"{NAME_COLUMN} 0 Td",
        "(Size) Tj",
        f"{SIZE_COLUMN} 0 Td",
        "(Modified) Tj",
        f"-{NAME_COLUMN + SIZE_COLUMN} -15 Td",
    ]
    for e in entries:
        ops += [
            f"({escape_text(_clip(e.path))}) Tj",
            f"{NAME_COLUMN} 0 Td",
            f"({format_size(e.size)}) Tj",
            f"{SIZE_COLUMN} 0 Td",
            f"({format_timestamp(e.mtime)}) Tj",
            f"-{NAME_COLUMN + SIZE_COLUMN} -{ROW_HEIGHT} Td",
        ]
    ops.append("ET")
    return ("\n".join(ops) + "\n").encode("ascii")


def font_dictionary() -> Dictionary:
    return Dictionary(
        Type=Name("Font"),
        Subtype=Name("Type1"),
        BaseFont=Name(LISTING_FONT),
        Encoding=Name("WinAnsiEncoding"),
    )


def build_listing(table: ObjectTable, pages_id: ObjectId, entries: Sequence, codec: Optional[Codec] = None) -> List[ObjectId]:
    """Add the font, content streams and page dictionaries; return the page ids.

    ``pages_id`` is the (possibly not yet defined) page tree node the pages
    hang from.
    """
    codec = codec or Codec()
    font_id = table.add(font_dictionary())
    chunks = paginate(list(entries))
    page_ids = []
    for i, chunk in enumerate(chunks):
        content = page_content(chunk, total=len(entries), page_no=i, page_count=len(chunks))
        stored, flt = codec.compress(content)
        sd = Dictionary()
        if flt is not None:
            sd["Filter"] = flt
        content_id = table.add(Stream(sd, stored))
        page_ids.append(
            table.add(
                Dictionary(
                    Type=Name("Page"),
                    Parent=ref(pages_id),
                    MediaBox=Array([0, 0, PAGE_WIDTH, PAGE_HEIGHT]),
                    Resources=Dictionary(Font=Dictionary({LISTING_FONT_RESOURCE: ref(font_id)})),
                    Contents=ref(content_id),
                )
            )
        )
    return page_ids


def page_tree(page_ids: Sequence[ObjectId]) -> Dictionary:
    return Dictionary(
        Type=Name("Pages"),
        Kids=Array(ref(p) for p in page_ids),
        Count=len(page_ids),
    )

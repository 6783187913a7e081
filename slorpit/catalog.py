"""
Machine-readable archive catalog.

The catalog is a JSON document stored in one stream referenced from the
document catalog under ``/SlorpitCatalog``::

    {
      "version": "1.0",
      "entries": [
        {"path": "docs/a.txt", "size": 600, "modifiedTime": 1700000000,
         "modifiedTimeNs": 1700000000123456789, "streamRef": [4, 0],
         "checksum": "5eb63bbbe01eeed093cb22bb8f5acdc3"},
        ...
      ]
    }

It is the only metadata the decoder trusts. Older archives (format without
stream refs) use ``{"files": [{"path", "size", "modified"}], "version"}``;
:func:`parse_catalog` accepts both.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .codec import Codec
from .constants import CATALOG_FORMAT_VERSION, CATALOG_SUBTYPE
from .errors import CatalogInconsistencyError
from .objects import Dictionary, Name, ObjectId, Stream, parse_pdf_date

log = logging.getLogger(__name__)


@dataclass
class CatalogEntry:
    path: str
    size: int
    mtime: Optional[int] = None
    mtime_ns: Optional[int] = None
    stream_id: Optional[ObjectId] = None
    checksum: Optional[bytes] = None


def catalog_document(entries: Sequence) -> dict:
    out = []
    for e in entries:
        if e.stream_id is None:
            raise ValueError(f"entry {e.path!r} has no embedded stream")
        item = {
            "path": e.path,
            "size": e.size,
            "modifiedTime": e.mtime,
            "streamRef": [e.stream_id.num, e.stream_id.gen],
        }
        if e.mtime_ns is not None:
            item["modifiedTimeNs"] = e.mtime_ns
        if e.checksum is not None:
            item["checksum"] = e.checksum.hex()
        out.append(item)
    return {"version": CATALOG_FORMAT_VERSION, "entries": out}


def build_catalog_stream(entries: Sequence, codec: Optional[Codec] = None) -> Stream:
    codec = codec or Codec()
    raw = json.dumps(catalog_document(entries), ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    stored, flt = codec.compress(raw)
    d = Dictionary(Type=Name("Metadata"), Subtype=Name(CATALOG_SUBTYPE))
    if flt is not None:
        d["Filter"] = flt
    d["DL"] = len(raw)
    return Stream(d, stored)


def _opt_int(item: dict, key: str, where: str) -> Optional[int]:
    v = item.get(key)
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, int):
        raise CatalogInconsistencyError(f"{where}: {key} is not an integer")
    return v


def parse_time(text: str) -> Optional[int]:
    """Epoch seconds from a decimal, ISO-8601 or PDF (D:...) date string."""
    text = text.strip()
    if text.startswith("D:"):
        return parse_pdf_date(text)
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        pass
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _opt_time(item: dict, key: str, where: str) -> Optional[int]:
    v = item.get(key)
    if isinstance(v, str):
        t = parse_time(v)
        if t is None:
            log.warning("%s: unrecognized %s %r, ignoring", where, key, v)
        return t
    if isinstance(v, float) and math.isfinite(v):
        return int(v)
    return _opt_int(item, key, where)


def parse_catalog(raw: bytes) -> List[CatalogEntry]:
    try:
        doc = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise CatalogInconsistencyError(f"catalog is not valid JSON: {e}")
    if not isinstance(doc, dict):
        raise CatalogInconsistencyError("catalog is not a JSON object")
    items = doc.get("entries")
    legacy = False
    if items is None and "files" in doc:
        items = doc["files"]
        legacy = True
    if not isinstance(items, list):
        raise CatalogInconsistencyError("catalog has no entry list")
    entries: List[CatalogEntry] = []
    for i, item in enumerate(items):
        where = f"catalog entry {i}"
        if not isinstance(item, dict):
            raise CatalogInconsistencyError(f"{where} is not an object")
        path = item.get("path")
        if not isinstance(path, str):
            raise CatalogInconsistencyError(f"{where} has no path")
        size = _opt_int(item, "size", where)
        if size is None or size < 0:
            raise CatalogInconsistencyError(f"{where} ({path}) has no valid size")
        e = CatalogEntry(path=path, size=size)
        e.mtime = _opt_time(item, "modified" if legacy else "modifiedTime", where)
        e.mtime_ns = _opt_int(item, "modifiedTimeNs", where)
        sref = item.get("streamRef")
        if sref is not None:
            if (
                not isinstance(sref, list)
                or len(sref) != 2
                or not all(isinstance(x, int) and not isinstance(x, bool) for x in sref)
            ):
                raise CatalogInconsistencyError(f"{where} ({path}) has a malformed streamRef")
            e.stream_id = ObjectId(sref[0], sref[1])
        elif not legacy:
            raise CatalogInconsistencyError(f"{where} ({path}) has no streamRef")
        digest = item.get("checksum")
        if digest is not None:
            try:
                e.checksum = bytes.fromhex(digest)
            except (TypeError, ValueError):
                raise CatalogInconsistencyError(f"{where} ({path}) has a malformed checksum")
        entries.append(e)
    return entries

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .codec import Codec
from .constants import FILTER_FLATE, READ_CHUNK_SIZE
from .errors import ArchiveIOError
from .hashutil import md5_digest, new_md5
from .objects import Dictionary, Name, ObjectId, ObjectTable, Stream, String, pdf_date, ref
from .pathutil import to_archive_path

log = logging.getLogger(__name__)


@dataclass
class FileEntry:
    path: str
    size: int
    mtime: Optional[int] = None
    mtime_ns: Optional[int] = None
    stream_id: Optional[ObjectId] = None
    checksum: Optional[bytes] = None
    filespec_id: Optional[ObjectId] = None


@dataclass
class PreparedPayload:
    """Compressed file contents, not yet registered in an object table."""

    path: str
    size: int
    stored: bytes
    filter: Optional[Name]
    checksum: bytes
    mtime: Optional[int] = None
    mtime_ns: Optional[int] = None


def _split_mtime(mtime: Optional[float], mtime_ns: Optional[int]):
    if mtime_ns is not None:
        return int(mtime_ns // 1_000_000_000), int(mtime_ns)
    if mtime is None:
        return None, None
    return int(mtime), int(round(float(mtime) * 1_000_000_000))


def prepare_bytes(
    path: str,
    data: bytes,
    *,
    mtime: Optional[float] = None,
    mtime_ns: Optional[int] = None,
    codec: Optional[Codec] = None,
) -> PreparedPayload:
    codec = codec or Codec()
    stored, flt = codec.compress(data)
    sec, ns = _split_mtime(mtime, mtime_ns)
    return PreparedPayload(
        path=to_archive_path(path),
        size=len(data),
        stored=stored,
        filter=flt,
        checksum=md5_digest(data),
        mtime=sec,
        mtime_ns=ns,
    )


def prepare_file(
    path: str,
    fs_path: str,
    *,
    mtime_ns: Optional[int] = None,
    codec: Optional[Codec] = None,
) -> PreparedPayload:
    """Read ``fs_path`` in chunks, deflating and hashing as it goes.

    Safe to run in worker threads: touches no shared state.
    """
    codec = codec or Codec()
    try:
        if mtime_ns is None:
            mtime_ns = os.stat(fs_path).st_mtime_ns
        comp = codec.compressobj()
        hasher = new_md5()
        pieces = []
        raw_chunks = []
        size = 0
        with open(fs_path, "rb") as f:
            while True:
                buf = f.read(READ_CHUNK_SIZE)
                if not buf:
                    break
                size += len(buf)
                hasher.update(buf)
                raw_chunks.append(buf)
                pieces.append(comp.compress(buf))
        pieces.append(comp.flush())
        stored = b"".join(pieces)
        flt: Optional[Name] = Name(FILTER_FLATE)
        if len(stored) >= size:
            # Not worth a filter; store the file as-is
            stored = b"".join(raw_chunks)
            flt = None
    except OSError as e:
        raise ArchiveIOError(e.errno, f"failed to read {fs_path}: {e.strerror or e}", fs_path) from e
    log.debug("prepared %s: %d -> %d bytes (%s)", path, size, len(stored), flt or "raw")
    sec, ns = _split_mtime(None, mtime_ns)
    return PreparedPayload(
        path=to_archive_path(path),
        size=size,
        stored=stored,
        filter=flt,
        checksum=hasher.digest(),
        mtime=sec,
        mtime_ns=ns,
    )


def embedded_file_stream(p: PreparedPayload) -> Stream:
    params = Dictionary(Size=p.size)
    mod = pdf_date(p.mtime)
    if mod is not None:
        params["ModDate"] = mod
    params["CheckSum"] = String(p.checksum, hex=True)
    d = Dictionary(Type=Name("EmbeddedFile"))
    if p.filter is not None:
        d["Filter"] = p.filter
    d["DL"] = p.size
    d["Params"] = params
    return Stream(d, p.stored)


def filespec(path: str, stream_id: ObjectId) -> Dictionary:
    name = String.text(path)
    return Dictionary(
        Type=Name("Filespec"),
        F=name,
        UF=name,
        EF=Dictionary(F=ref(stream_id)),
    )


def embed(table: ObjectTable, p: PreparedPayload) -> FileEntry:
    """Register a prepared payload: one stream plus its file specification."""
    stream_id = table.add(embedded_file_stream(p))
    spec_id = table.add(filespec(p.path, stream_id))
    return FileEntry(
        path=p.path,
        size=p.size,
        mtime=p.mtime,
        mtime_ns=p.mtime_ns,
        stream_id=stream_id,
        checksum=p.checksum,
        filespec_id=spec_id,
    )


def embed_bytes(
    table: ObjectTable,
    path: str,
    data: bytes,
    *,
    mtime: Optional[float] = None,
    codec: Optional[Codec] = None,
) -> FileEntry:
    return embed(table, prepare_bytes(path, data, mtime=mtime, codec=codec))


def embed_file(
    table: ObjectTable,
    path: str,
    fs_path: str,
    *,
    mtime_ns: Optional[int] = None,
    codec: Optional[Codec] = None,
) -> FileEntry:
    return embed(table, prepare_file(path, fs_path, mtime_ns=mtime_ns, codec=codec))

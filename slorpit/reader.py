from __future__ import annotations

import logging
import mmap
import os
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .catalog import CatalogEntry, parse_catalog
from .codec import Codec
from .constants import CATALOG_KEY, STARTXREF_KEYWORD, TRAILER_SCAN_BYTES
from .errors import (
    ArchiveIOError,
    BrokenReference,
    BrokenXrefError,
    CatalogInconsistencyError,
    ChecksumMismatch,
    CompressionError,
    FilterMismatch,
    MalformedContainerError,
    MalformedHeader,
    MissingCatalog,
    MissingRoot,
    MissingTrailer,
    SlorpitError,
)
from .hashutil import new_md5
from .objects import Dictionary, ObjectId, Reference, Stream, String, parse_pdf_date
from .packer import UnpackedGroup
from .parser import ObjectParser
from .pathutil import destination_path

log = logging.getLogger(__name__)

_HEADER_RE = re.compile(rb"%PDF-(\d+)\.(\d+)")
_STARTXREF_RE = re.compile(rb"startxref[\x00\t\n\x0c\r ]+(\d+)")
_SUBSECTION_RE = re.compile(rb"(\d+)[ \t]+(\d+)")
_XREF_ROW_RE = re.compile(rb"[\x00\t\n\x0c\r ]*(\d{10})[ ](\d{5})[ ]([nf])")

XREF_FREE = 0
XREF_DIRECT = 1
XREF_PACKED = 2


@dataclass
class ExtractReport:
    extracted: List[CatalogEntry] = field(default_factory=list)
    failed: List[Tuple[CatalogEntry, Exception]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class ArchiveReader:
    """Read-only view of a PDF archive.

    Opening runs header, trailer, root and catalog resolution; any failure
    there is fatal for the archive. Entries are then decoded one at a time.
    """

    def __init__(self, path: str):
        self.path = path
        self.f = None
        self._data = None
        self._parser: Optional[ObjectParser] = None
        self.codec = Codec()
        self.version: str = ""
        self.trailer: Dictionary = Dictionary()
        # object number -> (kind, field2, field3) as in an xref stream row
        self.xref: Dict[int, Tuple[int, int, int]] = {}
        self.root_id: Optional[ObjectId] = None
        self.root: Dictionary = Dictionary()
        self.catalog_id: Optional[ObjectId] = None
        self.entries: List[CatalogEntry] = []
        self.legacy_catalog = False
        self.verify_errors: List[str] = []
        self._objects: Dict[ObjectId, object] = {}
        self._groups: Dict[int, UnpackedGroup] = {}

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        self.f = open(self.path, "rb")
        try:
            if os.fstat(self.f.fileno()).st_size == 0:
                raise MalformedHeader("file is empty")
            self._data = mmap.mmap(self.f.fileno(), 0, access=mmap.ACCESS_READ)
            self._parser = ObjectParser(self._data)
            self._parse_header()
            self._locate_trailer()
            self._resolve_root()
            self._locate_catalog()
        except (SlorpitError, OSError, ValueError):
            # Ensure file handle is closed on failure to avoid leaks
            self.close()
            raise

    def close(self):
        self._objects.clear()
        self._groups.clear()
        self._parser = None
        if self._data is not None:
            self._data.close()
            self._data = None
        if self.f is not None:
            self.f.close()
            self.f = None

    def list(self) -> List[CatalogEntry]:
        return self.entries

    # -- structure ---------------------------------------------------------

    def _parse_header(self):
        m = _HEADER_RE.match(self._data[:32])
        if not m:
            raise MalformedHeader("not a PDF container (missing %PDF- header)")
        self.version = f"{int(m.group(1))}.{int(m.group(2))}"

    def _locate_trailer(self):
        """Find ``startxref`` near EOF and load every xref section it chains to."""
        data = self._data
        size = len(data)
        pos = data.rfind(STARTXREF_KEYWORD, max(0, size - TRAILER_SCAN_BYTES))
        if pos < 0:
            raise MissingTrailer("startxref not found near end of file")
        m = _STARTXREF_RE.match(data, pos)
        if not m:
            raise MissingTrailer("startxref is not followed by an offset")
        offset: Optional[int] = int(m.group(1))
        seen = set()
        first = True
        while offset is not None:
            if offset in seen:
                raise MissingTrailer("cross-reference /Prev chain loops")
            if offset >= size:
                raise MissingTrailer(f"cross-reference offset {offset} is past end of file")
            seen.add(offset)
            section = self._read_xref_section(offset)
            if first:
                self.trailer = section
                first = False
            hybrid = section.get("XRefStm")
            if isinstance(hybrid, int) and hybrid not in seen and hybrid < size:
                seen.add(hybrid)
                self._read_xref_section(hybrid)
            prev = section.get("Prev")
            offset = prev if isinstance(prev, int) and not isinstance(prev, bool) else None
        log.debug("%s: PDF %s, %d xref entries", self.path, self.version, len(self.xref))

    def _read_xref_section(self, offset: int) -> Dictionary:
        pos = self._parser.skip_ws(offset)
        if self._data[pos : pos + 4] == b"xref":
            return self._read_xref_table(pos + 4)
        try:
            _oid, obj, _ = self._parser.parse_indirect(offset)
        except MalformedContainerError as e:
            raise MissingTrailer(f"no cross-reference section at offset {offset}: {e}") from e
        if not isinstance(obj, Stream) or obj.dictionary.get("Type") != "XRef":
            raise MissingTrailer(f"object at offset {offset} is not a cross-reference stream")
        self._read_xref_stream(obj)
        return obj.dictionary

    def _read_xref_table(self, pos: int) -> Dictionary:
        data = self._data
        parser = self._parser
        while True:
            pos = parser.skip_ws(pos)
            if data[pos : pos + 7] == b"trailer":
                try:
                    trailer, _ = parser.parse_object(pos + 7)
                except MalformedContainerError as e:
                    raise MissingTrailer(f"unreadable trailer dictionary: {e}") from e
                if not isinstance(trailer, dict):
                    raise MissingTrailer("trailer is not a dictionary")
                return trailer
            m = _SUBSECTION_RE.match(data, pos)
            if not m:
                raise MissingTrailer(f"bad xref subsection header at offset {pos}")
            start, count = int(m.group(1)), int(m.group(2))
            pos = m.end()
            for i in range(count):
                row = _XREF_ROW_RE.match(data, pos)
                if not row:
                    raise MissingTrailer(f"bad xref row at offset {pos}")
                pos = row.end()
                if row.group(3) == b"n":
                    loc = (XREF_DIRECT, int(row.group(1)), int(row.group(2)))
                else:
                    loc = (XREF_FREE, 0, int(row.group(2)))
                # Newer sections are read first and win
                self.xref.setdefault(start + i, loc)

    def _read_xref_stream(self, stream: Stream):
        d = stream.dictionary
        w = d.get("W")
        if not (isinstance(w, list) and len(w) == 3 and all(isinstance(x, int) and x >= 0 for x in w)):
            raise MissingTrailer("cross-reference stream has a bad /W")
        size = d.get("Size")
        index = d.get("Index") or [0, size]
        if not isinstance(size, int) or len(index) % 2:
            raise MissingTrailer("cross-reference stream has a bad /Size or /Index")
        try:
            raw = self.codec.decompress(stream.data, d.get("Filter"), decode_parms=d.get("DecodeParms"))
        except CompressionError as e:
            raise MissingTrailer(f"cross-reference stream cannot be decoded: {e}") from e
        row_len = sum(w)
        pos = 0
        for first, count in zip(index[0::2], index[1::2]):
            for i in range(count):
                row = raw[pos : pos + row_len]
                if len(row) < row_len:
                    raise MissingTrailer("cross-reference stream is truncated")
                pos += row_len
                f1 = int.from_bytes(row[: w[0]], "big") if w[0] else 1
                f2 = int.from_bytes(row[w[0] : w[0] + w[1]], "big")
                f3 = int.from_bytes(row[w[0] + w[1] :], "big")
                if f1 not in (XREF_FREE, XREF_DIRECT, XREF_PACKED):
                    continue
                self.xref.setdefault(first + i, (f1, f2, f3))

    def _resolve_root(self):
        r = self.trailer.get("Root")
        if not isinstance(r, Reference):
            raise MissingRoot("trailer has no /Root reference")
        try:
            root = self.get_object(r.oid)
        except MalformedContainerError as e:
            raise MissingRoot(f"/Root {r.num} {r.gen} R cannot be resolved: {e}") from e
        if not isinstance(root, dict):
            raise MissingRoot("/Root is not a dictionary")
        self.root_id = r.oid
        self.root = root

    def _locate_catalog(self):
        c = self.root.get(CATALOG_KEY)
        if not isinstance(c, Reference):
            raise MissingCatalog(f"document catalog has no /{CATALOG_KEY}; not a slorpit archive")
        try:
            stream = self.get_object(c.oid)
        except MalformedContainerError as e:
            raise MissingCatalog(f"/{CATALOG_KEY} {c.num} {c.gen} R cannot be resolved: {e}") from e
        if not isinstance(stream, Stream):
            raise MissingCatalog(f"/{CATALOG_KEY} does not point at a stream")
        d = stream.dictionary
        raw = self.codec.decompress(stream.data, d.get("Filter"), decode_parms=d.get("DecodeParms"))
        dl = d.get("DL")
        if isinstance(dl, int) and dl != len(raw):
            raise CatalogInconsistencyError(f"catalog decoded to {len(raw)} bytes but /DL is {dl}")
        self.catalog_id = c.oid
        self.entries = parse_catalog(raw)
        self.legacy_catalog = any(e.stream_id is None for e in self.entries)
        if self.legacy_catalog:
            self._assign_legacy_streams()

    def _assign_legacy_streams(self):
        """Pair catalog entries with embedded file streams in object-number order."""
        ids = self.embedded_file_ids()
        if len(ids) != len(self.entries):
            log.warning(
                "%s: catalog lists %d files but %d embedded file streams were found",
                self.path,
                len(self.entries),
                len(ids),
            )
        for e, oid in zip(self.entries, ids):
            e.stream_id = oid

    # -- objects -----------------------------------------------------------

    def get_object(self, oid: ObjectId):
        if self._parser is None:
            raise RuntimeError("Archive not open")
        if oid in self._objects:
            return self._objects[oid]
        loc = self.xref.get(oid.num)
        if loc is None or loc[0] == XREF_FREE:
            raise BrokenXrefError(f"object {oid.num} {oid.gen} is not in the cross-reference index")
        kind, a, b = loc
        if kind == XREF_DIRECT:
            if b != oid.gen:
                raise BrokenXrefError(f"object {oid.num} has generation {b}, not {oid.gen}")
            _, obj, _ = self._parser.parse_indirect(a, expected=oid, resolve_length=self._resolve_length)
        else:
            if oid.gen != 0:
                raise BrokenXrefError(f"packed object {oid.num} cannot have generation {oid.gen}")
            obj = self._group(a).get(b, expected_num=oid.num)
        if not isinstance(obj, Stream):
            # Stream payloads are re-read on demand instead of kept around
            self._objects[oid] = obj
        return obj

    def resolve(self, value):
        if isinstance(value, Reference):
            return self.get_object(value.oid)
        return value

    def _resolve_length(self, r: Reference) -> int:
        value = self.get_object(r.oid)
        if not isinstance(value, int):
            raise MalformedContainerError(f"indirect /Length {r.num} {r.gen} R is not an integer")
        return value

    def _group(self, num: int) -> UnpackedGroup:
        group = self._groups.get(num)
        if group is None:
            stream = self.get_object(ObjectId(num, 0))
            if not isinstance(stream, Stream):
                raise BrokenXrefError(f"object {num} is not an object stream")
            try:
                group = UnpackedGroup(stream, self.codec)
            except CompressionError as e:
                raise BrokenXrefError(f"object stream {num} cannot be decoded: {e}") from e
            self._groups[num] = group
        return group

    def embedded_file_ids(self) -> List[ObjectId]:
        """Ids of every ``/Type /EmbeddedFile`` stream, in object-number order.

        Requires parsing every directly stored object; the normal extraction
        path never calls it.
        """
        ids = []
        for num in sorted(self.xref):
            kind, _off, gen = self.xref[num]
            if kind != XREF_DIRECT:
                continue
            oid = ObjectId(num, gen)
            try:
                obj = self.get_object(oid)
            except MalformedContainerError as e:
                log.warning("%s: skipping unreadable object %d %d: %s", self.path, num, gen, e)
                continue
            if isinstance(obj, Stream) and obj.dictionary.get("Type") == "EmbeddedFile":
                ids.append(oid)
        return ids

    @property
    def info(self) -> Dict[str, object]:
        out: Dict[str, object] = {}
        try:
            d = self.resolve(self.trailer.get("Info"))
        except MalformedContainerError:
            return out
        if isinstance(d, dict):
            for k, v in d.items():
                out[k] = v.to_text() if isinstance(v, String) else v
        return out

    @property
    def created(self) -> Optional[int]:
        """``/Info /CreationDate`` as epoch seconds, if present and parseable."""
        value = self.info.get("CreationDate")
        return parse_pdf_date(value) if isinstance(value, str) else None

    # -- entries -----------------------------------------------------------

    def entry_stream(self, entry: CatalogEntry) -> Stream:
        if entry.stream_id is None:
            raise BrokenReference(f"{entry.path}: no embedded stream for this entry")
        sid = entry.stream_id
        try:
            obj = self.get_object(sid)
        except MalformedContainerError as e:
            raise BrokenReference(f"{entry.path}: stream {sid.num} {sid.gen} R does not resolve: {e}") from e
        if not isinstance(obj, Stream):
            raise BrokenReference(f"{entry.path}: object {sid.num} {sid.gen} is not a stream")
        return obj

    def iter_entry_data(self, entry: CatalogEntry) -> Iterator[bytes]:
        """Yield the decoded bytes of ``entry``, checking length and checksum.

        Raises :class:`FilterMismatch` when the decoded length disagrees with
        the catalog, ``/DL`` or ``/Params /Size``, and :class:`ChecksumMismatch`
        when the MD5 disagrees with ``/Params /CheckSum`` or the catalog.
        """
        stream = self.entry_stream(entry)
        d = stream.dictionary
        try:
            params = self.resolve(d.get("Params"))
        except MalformedContainerError:
            params = None
        if not isinstance(params, dict):
            params = {}
        declared = [("catalog size", entry.size), ("/DL", d.get("DL")), ("/Params /Size", params.get("Size"))]
        declared = [(label, v) for label, v in declared if isinstance(v, int) and not isinstance(v, bool)]
        limit = max(v for _label, v in declared)
        hasher = new_md5()
        n = 0
        for piece in self.codec.iter_decompress(stream.data, d.get("Filter"), decode_parms=d.get("DecodeParms")):
            n += len(piece)
            if n > limit:
                raise FilterMismatch(f"{entry.path}: decoded data exceeds declared length {limit}")
            hasher.update(piece)
            yield piece
        for label, v in declared:
            if v != n:
                raise FilterMismatch(f"{entry.path}: decoded {n} bytes but {label} is {v}")
        digest = hasher.digest()
        stored = params.get("CheckSum")
        for label, expected in (("/Params /CheckSum", stored.value if isinstance(stored, String) else None), ("catalog checksum", entry.checksum)):
            if expected is not None and expected != digest:
                raise ChecksumMismatch(f"{entry.path}: MD5 {digest.hex()} does not match {label} {expected.hex()}")

    def read(self, entry: CatalogEntry) -> bytes:
        return b"".join(self.iter_entry_data(entry))

    def extract(self, entry: CatalogEntry, out_path: str):
        """Write one entry to ``out_path`` and restore its modification time.

        A partially written file is removed if decoding fails.
        """
        if self._parser is None:
            raise RuntimeError("Archive not open")
        try:
            os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
            with open(out_path, "wb") as wf:
                for piece in self.iter_entry_data(entry):
                    wf.write(piece)
        except (CatalogInconsistencyError, CompressionError):
            try:
                os.remove(out_path)
            except FileNotFoundError:
                pass
            raise
        except OSError as e:
            if isinstance(e, ArchiveIOError):
                raise
            raise ArchiveIOError(e.errno, f"failed to write {out_path}: {e.strerror or e}", out_path) from e
        _restore_mtime(out_path, entry)

    def extract_all(
        self,
        outdir: str = ".",
        *,
        on_entry: Optional[Callable[[CatalogEntry, Optional[Exception]], None]] = None,
    ) -> ExtractReport:
        """Extract every entry under ``outdir``.

        A failing entry is recorded in the report and extraction carries on
        with the next one.
        """
        report = ExtractReport()
        os.makedirs(outdir, exist_ok=True)
        for entry in self.entries:
            dst = destination_path(outdir, entry.path)
            try:
                self.extract(entry, dst)
            except (CatalogInconsistencyError, CompressionError, ArchiveIOError) as exc:
                log.warning("%s: failed to extract %s: %s", self.path, entry.path, exc)
                report.failed.append((entry, exc))
                if on_entry is not None:
                    on_entry(entry, exc)
                continue
            report.extracted.append(entry)
            if on_entry is not None:
                on_entry(entry, None)
        return report

    def verify(self) -> bool:
        """Decode every entry and check the catalog against the container.

        Checks, in order: each entry decodes with matching length and
        checksum; the number of embedded file streams equals the number of
        catalog entries; every catalog stream ref is one of those streams.
        Problems are collected in ``verify_errors``.
        """
        if self._parser is None:
            raise RuntimeError("Archive not open")
        errors: List[str] = []
        for entry in self.entries:
            try:
                for _piece in self.iter_entry_data(entry):
                    pass
            except (CatalogInconsistencyError, CompressionError) as exc:
                errors.append(str(exc))
        streams = set(self.embedded_file_ids())
        if len(streams) != len(self.entries):
            errors.append(f"catalog lists {len(self.entries)} files but the container embeds {len(streams)}")
        for entry in self.entries:
            if entry.stream_id is not None and entry.stream_id not in streams:
                errors.append(
                    f"{entry.path}: stream {entry.stream_id.num} {entry.stream_id.gen} R is not an embedded file stream"
                )
        self.verify_errors = errors
        return not errors


def _restore_mtime(path: str, entry: CatalogEntry):
    try:
        if entry.mtime_ns is not None:
            os.utime(path, ns=(entry.mtime_ns, entry.mtime_ns))
        elif entry.mtime is not None:
            os.utime(path, (entry.mtime, entry.mtime))
    except (OSError, OverflowError, ValueError) as exc:
        log.warning("failed to set timestamps on %s: %s", path, exc)

"""
Final layout of a document: offsets, cross-reference index and trailer.

Layout (object stream mode, PDF 1.5)::

    %PDF-1.5
    %<binary marker>
    n 0 obj ... endobj          streams and anything not packable, by number
    g 0 obj <</Type /ObjStm>>   packed groups of small dictionaries
    x 0 obj <</Type /XRef>>     compressed xref stream doubling as trailer
    startxref
    <offset of x>
    %%EOF

In table mode (PDF 1.4) every object is written directly and a classic
``xref`` table plus ``trailer`` dictionary replaces the xref stream.
"""

from __future__ import annotations

import logging
import struct
from typing import BinaryIO, Dict, List, Optional, Tuple

from .codec import Codec
from .constants import (
    DEFAULT_MAX_OBJECTS_PER_GROUP,
    PDF_BINARY_MARKER,
    PDF_EOF_MARKER,
    PDF_HEADER_PREFIX,
    PDF_VERSION_OBJSTM,
    PDF_VERSION_TABLE,
)
from .errors import DanglingReferenceError
from .objects import Array, Dictionary, Name, ObjectId, ObjectTable, Stream, String, ref, serialize, serialize_indirect
from .packer import is_packable, pack_objects

log = logging.getLogger(__name__)

# xref row kinds
XREF_FREE = 0
XREF_DIRECT = 1
XREF_PACKED = 2


def _width(n: int) -> int:
    return max(1, (n.bit_length() + 7) // 8)


class DocumentAssembler:
    def __init__(
        self,
        table: ObjectTable,
        *,
        use_object_streams: bool = True,
        max_objects_per_group: int = DEFAULT_MAX_OBJECTS_PER_GROUP,
        codec: Optional[Codec] = None,
    ):
        self.table = table
        self.use_object_streams = use_object_streams
        self.max_objects_per_group = max_objects_per_group
        self.codec = codec or Codec()
        # object number -> (kind, field2, field3)
        self.locations: Dict[int, Tuple[int, int, int]] = {}
        self.group_count = 0

    @property
    def version(self) -> str:
        return PDF_VERSION_OBJSTM if self.use_object_streams else PDF_VERSION_TABLE

    def write(
        self,
        fh: BinaryIO,
        *,
        root: ObjectId,
        info: Optional[ObjectId] = None,
        doc_id: Optional[bytes] = None,
    ) -> int:
        """Write the whole document to ``fh``; return the number of bytes written."""
        self.table.check_references()
        for label, oid in (("Root", root), ("Info", info)):
            if oid is not None and oid not in self.table:
                raise DanglingReferenceError(f"trailer /{label} names undefined object {oid.num} {oid.gen}")
        start = fh.tell()

        def here() -> int:
            return fh.tell() - start

        fh.write(PDF_HEADER_PREFIX + self.version.encode("ascii") + b"\n" + PDF_BINARY_MARKER + b"\n")

        objects = self.table.items()
        if self.use_object_streams:
            packable = [(oid, obj) for oid, obj in objects if is_packable(oid, obj)]
            direct = [(oid, obj) for oid, obj in objects if not is_packable(oid, obj)]
        else:
            packable, direct = [], objects

        for oid, obj in direct:
            self.locations[oid.num] = (XREF_DIRECT, here(), oid.gen)
            fh.write(serialize_indirect(oid, obj))

        groups = pack_objects(self.table, packable, max_per_group=self.max_objects_per_group, codec=self.codec) if packable else []
        for g in groups:
            self.locations[g.oid.num] = (XREF_DIRECT, here(), 0)
            fh.write(serialize_indirect(g.oid, g.stream))
            for index, member in enumerate(g.members):
                self.locations[member.num] = (XREF_PACKED, g.oid.num, index)
        self.group_count = len(groups)

        trailer = Dictionary(Root=ref(root))
        if info is not None:
            trailer["Info"] = ref(info)
        if doc_id is not None:
            trailer["ID"] = Array([String(doc_id, hex=True), String(doc_id, hex=True)])

        if self.use_object_streams:
            xref_id = self.table.new_id()
            xref_off = here()
            self.locations[xref_id.num] = (XREF_DIRECT, xref_off, 0)
            fh.write(serialize_indirect(xref_id, self._xref_stream(trailer)))
        else:
            xref_off = here()
            fh.write(self._xref_table())
            trailer["Size"] = self.table.size
            fh.write(b"trailer\n" + serialize(trailer) + b"\n")
        fh.write(b"startxref\n%d\n" % xref_off + PDF_EOF_MARKER + b"\n")
        total = here()
        log.debug(
            "assembled %d objects (%d packed in %d group(s)), %d bytes",
            self.table.size - 1,
            len(packable),
            len(groups),
            total,
        )
        return total

    def _rows(self) -> List[Tuple[int, int, int]]:
        rows = []
        for num in range(self.table.size):
            if num == 0:
                rows.append((XREF_FREE, 0, 65535))
            else:
                rows.append(self.locations.get(num, (XREF_FREE, 0, 0)))
        return rows

    def _xref_stream(self, trailer: Dictionary) -> Stream:
        rows = self._rows()
        w2 = _width(max(r[1] for r in rows))
        w3 = _width(max(r[2] for r in rows))
        payload = bytearray()
        for kind, f2, f3 in rows:
            payload += struct.pack(">B", kind)
            payload += f2.to_bytes(w2, "big")
            payload += f3.to_bytes(w3, "big")
        stored, flt = self.codec.compress(bytes(payload))
        d = Dictionary(Type=Name("XRef"), Size=self.table.size, W=Array([1, w2, w3]))
        d.update(trailer)
        if flt is not None:
            d["Filter"] = flt
        return Stream(d, stored)

    def _xref_table(self) -> bytes:
        rows = self._rows()
        out = [b"xref\n0 %d\n" % len(rows)]
        for kind, f2, f3 in rows:
            if kind == XREF_DIRECT:
                out.append(b"%010d %05d n\r\n" % (f2, f3))
            else:
                out.append(b"%010d %05d f\r\n" % (0, f3))
        return b"".join(out)

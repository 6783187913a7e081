"""
PDF object model used by the writer and the reader.

Objects are plain Python values drawn from a closed set of kinds:

- ``None`` (null), ``bool``, ``int``, ``float``
- :class:`Name`, :class:`String`
- :class:`Array` (or any ``list``), :class:`Dictionary` (or any ``dict``)
- :class:`Reference` to an indirect object
- :class:`Stream`, only at the top level of an indirect object

:func:`serialize` handles exactly these kinds and raises ``TypeError`` for
anything else. Indirect objects live in an :class:`ObjectTable`, which hands
out object numbers from a single counter. Ids can be allocated before the
object they name exists so that the graph may contain forward references;
offsets are only decided by the assembler.
"""

from __future__ import annotations

import datetime
import re
import threading
from dataclasses import dataclass
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from .errors import DanglingReferenceError


class ObjectId(NamedTuple):
    num: int
    gen: int = 0


class Name(str):
    """A PDF name, stored without its leading slash."""


@dataclass(frozen=True)
class String:
    value: bytes
    hex: bool = False

    @classmethod
    def text(cls, s: str) -> "String":
        """Encode a PDF text string (ASCII as-is, otherwise UTF-16BE with BOM).

        Undecodable filename bytes (surrogate escapes) are shown as "?".
        """
        try:
            raw = s.encode("ascii")
        except UnicodeEncodeError:
            raw = b"\xfe\xff" + s.encode("utf-16-be", errors="replace")
        return cls(raw)

    def to_text(self) -> str:
        if self.value.startswith(b"\xfe\xff"):
            return self.value[2:].decode("utf-16-be", errors="replace")
        return self.value.decode("latin-1")


@dataclass(frozen=True)
class Reference:
    oid: ObjectId

    @property
    def num(self) -> int:
        return self.oid.num

    @property
    def gen(self) -> int:
        return self.oid.gen


class Dictionary(dict):
    """Mapping of name (without slash) to object."""


class Array(list):
    pass


class Stream:
    """Dictionary plus stored payload.

    ``data`` is the payload exactly as it appears in the file, i.e. after the
    filter named in ``/Filter`` was applied. ``/Length`` is kept in sync with
    it on construction; the payload is not meant to change afterwards.
    """

    __slots__ = ("dictionary", "data")

    def __init__(self, dictionary: Optional[Dict] = None, data: bytes = b""):
        self.dictionary = Dictionary(dictionary or {})
        self.data = bytes(data)
        self.dictionary["Length"] = len(self.data)

    @property
    def filter(self):
        return self.dictionary.get("Filter")

    def __repr__(self) -> str:
        return f"Stream({dict(self.dictionary)!r}, <{len(self.data)} bytes>)"


def ref(oid: ObjectId) -> Reference:
    return Reference(oid)


# ---------------------------------------------------------------------------
# serialization

_NAME_REGULAR = frozenset(
    c for c in range(0x21, 0x7F) if chr(c) not in "()<>[]{}/%#"
)
_STRING_ESCAPES = {
    0x5C: b"\\\\",
    0x28: b"\\(",
    0x29: b"\\)",
    0x0D: b"\\r",
    0x0A: b"\\n",
}


def _serialize_name(name: str) -> bytes:
    out = bytearray(b"/")
    for b in name.encode("utf-8"):
        if b in _NAME_REGULAR:
            out.append(b)
        else:
            out += b"#%02X" % b
    return bytes(out)


def _serialize_string(s: String) -> bytes:
    if s.hex:
        return b"<" + s.value.hex().upper().encode("ascii") + b">"
    out = bytearray(b"(")
    for b in s.value:
        esc = _STRING_ESCAPES.get(b)
        if esc is not None:
            out += esc
        else:
            out.append(b)
    out += b")"
    return bytes(out)


def _serialize_number(n) -> bytes:
    if isinstance(n, int):
        return str(n).encode("ascii")
    text = f"{n:.6f}".rstrip("0").rstrip(".")
    return (text or "0").encode("ascii")


def serialize(obj) -> bytes:
    """Render a direct object. Streams must go through :func:`serialize_indirect`."""
    if obj is None:
        return b"null"
    if isinstance(obj, bool):
        return b"true" if obj else b"false"
    if isinstance(obj, (int, float)):
        return _serialize_number(obj)
    if isinstance(obj, Name):
        return _serialize_name(obj)
    if isinstance(obj, String):
        return _serialize_string(obj)
    if isinstance(obj, Reference):
        return b"%d %d R" % (obj.num, obj.gen)
    if isinstance(obj, dict):
        parts = [b"<<"]
        for k, v in obj.items():
            parts.append(_serialize_name(k) + b" " + serialize(v))
        parts.append(b">>")
        return b" ".join(parts)
    if isinstance(obj, list):
        return b"[" + b" ".join(serialize(v) for v in obj) + b"]"
    if isinstance(obj, Stream):
        raise TypeError("streams cannot be nested inside other objects")
    raise TypeError(f"not a PDF object: {type(obj).__name__}")


def serialize_body(obj) -> bytes:
    """Object body without the ``obj``/``endobj`` wrapper."""
    if isinstance(obj, Stream):
        return serialize(obj.dictionary) + b"\nstream\n" + obj.data + b"\nendstream"
    return serialize(obj)


def serialize_indirect(oid: ObjectId, obj) -> bytes:
    return b"%d %d obj\n" % (oid.num, oid.gen) + serialize_body(obj) + b"\nendobj\n"


def iter_references(obj) -> Iterator[Reference]:
    if isinstance(obj, Reference):
        yield obj
    elif isinstance(obj, Stream):
        yield from iter_references(obj.dictionary)
    elif isinstance(obj, dict):
        for v in obj.values():
            yield from iter_references(v)
    elif isinstance(obj, list):
        for v in obj:
            yield from iter_references(v)


# ---------------------------------------------------------------------------
# dates

_PDF_DATE_RE = re.compile(
    r"^D:(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?(?:([Zz+\-])(\d{2})?'?(\d{2})?'?)?"
)


def pdf_date(ts: Optional[float]) -> Optional[String]:
    if ts is None:
        return None
    dt = datetime.datetime.fromtimestamp(int(ts), tz=datetime.timezone.utc)
    return String(dt.strftime("D:%Y%m%d%H%M%SZ").encode("ascii"))


def parse_pdf_date(value: str) -> Optional[int]:
    """Parse a PDF date string into epoch seconds; ``None`` if unparseable."""
    m = _PDF_DATE_RE.match(value.strip())
    if not m:
        return None
    year = int(m.group(1))
    month, day, hour, minute, second = (
        int(g) if g else d for g, d in zip(m.group(2, 3, 4, 5, 6), (1, 1, 0, 0, 0))
    )
    offset = datetime.timedelta(0)
    sign = m.group(7)
    if sign in ("+", "-"):
        offset = datetime.timedelta(hours=int(m.group(8) or 0), minutes=int(m.group(9) or 0))
        if sign == "-":
            offset = -offset
    try:
        dt = datetime.datetime(year, month, day, hour, minute, second, tzinfo=datetime.timezone(offset))
    except ValueError:
        return None
    return int(dt.timestamp())


# ---------------------------------------------------------------------------
# object table


class ObjectTable:
    """Flat arena of indirect objects keyed by :class:`ObjectId`.

    ``new_id`` is safe to call from several threads; everything else is meant
    for the single thread that builds and assembles the document.
    """

    def __init__(self):
        self._objects: Dict[ObjectId, object] = {}
        self._allocated: set = set()
        self._next_num = 1
        self._lock = threading.Lock()

    def new_id(self) -> ObjectId:
        with self._lock:
            oid = ObjectId(self._next_num, 0)
            self._next_num += 1
            self._allocated.add(oid)
        return oid

    def add(self, obj) -> ObjectId:
        oid = self.new_id()
        self._objects[oid] = obj
        return oid

    def set(self, oid: ObjectId, obj) -> None:
        if oid not in self._allocated:
            raise ValueError(f"object id {oid.num} {oid.gen} was never allocated")
        if oid in self._objects:
            raise ValueError(f"object {oid.num} {oid.gen} is already defined")
        self._objects[oid] = obj

    def get(self, oid: ObjectId):
        return self._objects[oid]

    def __contains__(self, oid) -> bool:
        return oid in self._objects

    def __len__(self) -> int:
        return len(self._objects)

    @property
    def size(self) -> int:
        """Value for the trailer's ``/Size``: one past the highest number."""
        return self._next_num

    def items(self) -> List[Tuple[ObjectId, object]]:
        return sorted(self._objects.items(), key=lambda kv: kv[0])

    def check_references(self) -> None:
        """Raise :class:`DanglingReferenceError` for any unresolvable reference."""
        unfilled = self._allocated - set(self._objects)
        for oid, obj in self.items():
            for r in iter_references(obj):
                if r.oid not in self._objects:
                    state = "never filled" if r.oid in unfilled else "never allocated"
                    raise DanglingReferenceError(
                        f"object {oid.num} {oid.gen} references {r.num} {r.gen} R, which was {state}"
                    )

"""
Tokenizer and parser for PDF object syntax.

Works on any buffer supporting slicing and ``re`` (``bytes`` or ``mmap``).
Parsing errors raise :class:`MalformedContainerError`.
"""

from __future__ import annotations

import re
from typing import Callable, Optional, Tuple

from .errors import MalformedContainerError
from .objects import Array, Dictionary, Name, ObjectId, Reference, Stream, String

WHITESPACE = b"\x00\t\n\x0c\r "

_WS_RE = re.compile(rb"(?:[\x00\t\n\x0c\r ]+|%[^\r\n]*)*")
_TOKEN_RE = re.compile(rb"[^\x00\t\n\x0c\r ()<>\[\]{}/%]+")
_INT_RE = re.compile(rb"[+-]?\d+$")
_NUM_RE = re.compile(rb"[+-]?(?:\d+\.?\d*|\.\d+)$")
_REF_TAIL_RE = re.compile(rb"[\x00\t\n\x0c\r ]+(\d+)[\x00\t\n\x0c\r ]+R(?=[\x00\t\n\x0c\r ()<>\[\]{}/%]|$)")
_OBJ_HEADER_RE = re.compile(rb"[\x00\t\n\x0c\r ]*(\d+)[\x00\t\n\x0c\r ]+(\d+)[\x00\t\n\x0c\r ]+obj\b")
_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")

_ESCAPES = {
    ord("n"): b"\n",
    ord("r"): b"\r",
    ord("t"): b"\t",
    ord("b"): b"\b",
    ord("f"): b"\f",
    ord("("): b"(",
    ord(")"): b")",
    ord("\\"): b"\\",
}


class _Keyword(str):
    """Bare keyword token such as ``endobj`` or ``stream``."""


LengthResolver = Callable[[Reference], object]


class ObjectParser:
    def __init__(self, data):
        self.data = data

    # -- low level ---------------------------------------------------------

    def skip_ws(self, pos: int) -> int:
        return _WS_RE.match(self.data, pos).end()

    def _fail(self, pos: int, msg: str):
        raise MalformedContainerError(f"{msg} at offset {pos}")

    def parse_object(self, pos: int) -> Tuple[object, int]:
        """Parse one direct object starting at ``pos``; return it and the end offset."""
        obj, end = self._parse(pos)
        if isinstance(obj, _Keyword):
            self._fail(pos, f"unexpected keyword {obj!r}")
        return obj, end

    def _parse(self, pos: int):
        data = self.data
        pos = self.skip_ws(pos)
        if pos >= len(data):
            self._fail(pos, "unexpected end of data")
        c = data[pos : pos + 1]
        if c == b"/":
            return self._parse_name(pos + 1)
        if c == b"(":
            return self._parse_literal(pos + 1)
        if c == b"<":
            if data[pos + 1 : pos + 2] == b"<":
                return self._parse_dict(pos + 2)
            return self._parse_hex(pos + 1)
        if c == b"[":
            return self._parse_array(pos + 1)
        if c in (b"]", b">", b")", b"{", b"}"):
            self._fail(pos, f"unexpected delimiter {c!r}")
        m = _TOKEN_RE.match(data, pos)
        if not m:
            self._fail(pos, "unreadable token")
        tok = m.group(0)
        end = m.end()
        if _INT_RE.match(tok):
            value = int(tok)
            # "n g R" is a reference; anything else leaves the integer alone.
            rm = _REF_TAIL_RE.match(data, end)
            if rm and value >= 0:
                return Reference(ObjectId(value, int(rm.group(1)))), rm.end()
            return value, end
        if _NUM_RE.match(tok):
            return float(tok), end
        if tok == b"true":
            return True, end
        if tok == b"false":
            return False, end
        if tok == b"null":
            return None, end
        return _Keyword(tok.decode("latin-1")), end

    def _parse_name(self, pos: int) -> Tuple[Name, int]:
        m = _TOKEN_RE.match(self.data, pos)
        if not m:
            return Name(""), pos
        raw = m.group(0)
        if b"#" in raw:
            out = bytearray()
            i = 0
            while i < len(raw):
                b = raw[i]
                hx = raw[i + 1 : i + 3]
                if b == 0x23 and len(hx) == 2 and all(x in _HEX_DIGITS for x in hx):
                    out.append(int(hx, 16))
                    i += 3
                else:
                    out.append(b)
                    i += 1
            raw = bytes(out)
        return Name(raw.decode("utf-8", errors="surrogateescape")), m.end()

    def _parse_literal(self, pos: int) -> Tuple[String, int]:
        data = self.data
        out = bytearray()
        depth = 1
        i = pos
        n = len(data)
        while i < n:
            b = data[i]
            if b == 0x5C:  # backslash
                i += 1
                if i >= n:
                    break
                e = data[i]
                if e in _ESCAPES:
                    out += _ESCAPES[e]
                    i += 1
                elif 0x30 <= e <= 0x37:
                    j = i
                    while j < n and j < i + 3 and 0x30 <= data[j] <= 0x37:
                        j += 1
                    out.append(int(data[i:j], 8) & 0xFF)
                    i = j
                elif e == 0x0D:
                    i += 2 if data[i + 1 : i + 2] == b"\n" else 1
                elif e == 0x0A:
                    i += 1
                else:
                    out.append(e)
                    i += 1
                continue
            if b == 0x28:
                depth += 1
            elif b == 0x29:
                depth -= 1
                if depth == 0:
                    return String(bytes(out)), i + 1
            elif b == 0x0D:
                # Unescaped EOLs read as a single newline
                out.append(0x0A)
                i += 2 if data[i + 1 : i + 2] == b"\n" else 1
                continue
            out.append(b)
            i += 1
        self._fail(pos, "unterminated literal string")

    def _parse_hex(self, pos: int) -> Tuple[String, int]:
        end = self.data.find(b">", pos)
        if end < 0:
            self._fail(pos, "unterminated hex string")
        digits = bytes(c for c in self.data[pos:end] if c not in WHITESPACE)
        if len(digits) % 2:
            digits += b"0"
        try:
            value = bytes.fromhex(digits.decode("ascii"))
        except ValueError:
            self._fail(pos, "bad hex string")
        return String(value, hex=True), end + 1

    def _parse_array(self, pos: int) -> Tuple[Array, int]:
        items = Array()
        while True:
            pos = self.skip_ws(pos)
            if self.data[pos : pos + 1] == b"]":
                return items, pos + 1
            if pos >= len(self.data):
                self._fail(pos, "unterminated array")
            obj, pos = self.parse_object(pos)
            items.append(obj)

    def _parse_dict(self, pos: int) -> Tuple[Dictionary, int]:
        d = Dictionary()
        while True:
            pos = self.skip_ws(pos)
            if self.data[pos : pos + 2] == b">>":
                return d, pos + 2
            if self.data[pos : pos + 1] != b"/":
                self._fail(pos, "dictionary key is not a name")
            key, pos = self._parse_name(pos + 1)
            value, pos = self.parse_object(pos)
            d[str(key)] = value

    # -- indirect objects ----------------------------------------------------

    def parse_indirect(
        self,
        pos: int,
        expected: Optional[ObjectId] = None,
        resolve_length: Optional[LengthResolver] = None,
    ) -> Tuple[ObjectId, object, int]:
        """Parse ``n g obj ... endobj`` at ``pos`` (streams included)."""
        m = _OBJ_HEADER_RE.match(self.data, pos)
        if not m:
            self._fail(pos, "expected indirect object header")
        oid = ObjectId(int(m.group(1)), int(m.group(2)))
        if expected is not None and oid != expected:
            self._fail(pos, f"expected object {expected.num} {expected.gen}, found {oid.num} {oid.gen}")
        obj, end = self.parse_object(m.end())
        after = self.skip_ws(end)
        if isinstance(obj, dict) and self.data[after : after + 6] == b"stream":
            obj, end = self._parse_stream_body(obj, after + 6, resolve_length)
            after = self.skip_ws(end)
        if self.data[after : after + 6] == b"endobj":
            after += 6
        return oid, obj, after

    def _parse_stream_body(self, d: Dictionary, pos: int, resolve_length) -> Tuple[Stream, int]:
        data = self.data
        if data[pos : pos + 2] == b"\r\n":
            pos += 2
        elif data[pos : pos + 1] in (b"\n", b"\r"):
            pos += 1
        length = d.get("Length")
        if isinstance(length, Reference):
            if resolve_length is None:
                self._fail(pos, "indirect /Length without a resolver")
            length = resolve_length(length)
        if not isinstance(length, int) or isinstance(length, bool) or length < 0:
            self._fail(pos, "stream has no usable /Length")
        end = pos + length
        if end > len(data):
            self._fail(pos, "stream runs past end of file")
        payload = bytes(data[pos:end])
        tail = self.skip_ws(end)
        if data[tail : tail + 9] != b"endstream":
            self._fail(end, "missing endstream after declared /Length")
        return Stream(d, payload), tail + 9


def parse_bytes(data: bytes):
    """Parse a single direct object from ``data``."""
    obj, _ = ObjectParser(data).parse_object(0)
    return obj

from __future__ import annotations

import zlib
from typing import Iterator, Optional, Tuple

from .constants import COMPRESSION_LEVEL, FILTER_FLATE
from .errors import CompressionError, UnsupportedFilter
from .objects import Name


def filter_name(value) -> Optional[str]:
    """Normalize a ``/Filter`` value (name, one-element array or absent)."""
    if value is None:
        return None
    if isinstance(value, list):
        if not value:
            return None
        if len(value) != 1:
            raise UnsupportedFilter(f"filter chains are not supported: {[str(v) for v in value]}")
        value = value[0]
    if not isinstance(value, str):
        raise UnsupportedFilter(f"filter is not a name: {value!r}")
    return str(value)


class Codec:
    """Deflate codec for stream payloads.

    ``compress`` returns the stored bytes plus the filter to declare. When
    deflate does not make the payload smaller the raw bytes are stored and no
    filter is declared.
    """

    def __init__(self, level: int = COMPRESSION_LEVEL):
        self.level = level

    def compress(self, data: bytes) -> Tuple[bytes, Optional[Name]]:
        compressed = zlib.compress(data, self.level)
        if len(compressed) < len(data):
            return compressed, Name(FILTER_FLATE)
        return bytes(data), None

    def compressobj(self):
        return zlib.compressobj(self.level)

    def decompress(self, data: bytes, filter_value=None, *, decode_parms=None) -> bytes:
        return b"".join(self.iter_decompress(data, filter_value, decode_parms=decode_parms))

    def iter_decompress(
        self, data: bytes, filter_value=None, *, decode_parms=None, piece_size: int = 1_048_576
    ) -> Iterator[bytes]:
        name = filter_name(filter_value)
        if name is None:
            yield bytes(data)
            return
        if name != FILTER_FLATE:
            raise UnsupportedFilter(f"unsupported filter: /{name}")
        predictor = 1
        columns = 1
        if isinstance(decode_parms, list):
            decode_parms = decode_parms[0] if decode_parms else None
        if isinstance(decode_parms, dict):
            predictor = int(decode_parms.get("Predictor", 1))
            columns = int(decode_parms.get("Columns", 1))
        if predictor > 1:
            # Predicted rows need the whole image; only used for small xref streams.
            yield _undo_png_predictor(_inflate_all(data), predictor, columns)
            return
        d = zlib.decompressobj()
        view = memoryview(data)
        try:
            for pos in range(0, len(view), piece_size):
                out = d.decompress(view[pos : pos + piece_size])
                if out:
                    yield out
            tail = d.flush()
        except zlib.error as e:
            raise CompressionError(f"deflate stream is corrupt: {e}")
        if not d.eof:
            raise CompressionError("deflate stream is truncated")
        if tail:
            yield tail


def _inflate_all(data: bytes) -> bytes:
    try:
        d = zlib.decompressobj()
        out = d.decompress(data) + d.flush()
    except zlib.error as e:
        raise CompressionError(f"deflate stream is corrupt: {e}")
    if not d.eof:
        raise CompressionError("deflate stream is truncated")
    return out


def _undo_png_predictor(data: bytes, predictor: int, columns: int) -> bytes:
    if predictor < 10:
        raise UnsupportedFilter(f"unsupported predictor: {predictor}")
    row_len = columns + 1
    if len(data) % row_len:
        raise CompressionError("predicted data is not a whole number of rows")
    prev = bytearray(columns)
    out = bytearray()
    for start in range(0, len(data), row_len):
        kind = data[start]
        row = bytearray(data[start + 1 : start + row_len])
        for i in range(columns):
            left = row[i - 1] if i else 0
            up = prev[i]
            upleft = prev[i - 1] if i else 0
            if kind == 0:
                pass
            elif kind == 1:
                row[i] = (row[i] + left) & 0xFF
            elif kind == 2:
                row[i] = (row[i] + up) & 0xFF
            elif kind == 3:
                row[i] = (row[i] + ((left + up) >> 1)) & 0xFF
            elif kind == 4:
                p = left + up - upleft
                pa, pb, pc = abs(p - left), abs(p - up), abs(p - upleft)
                if pa <= pb and pa <= pc:
                    pred = left
                elif pb <= pc:
                    pred = up
                else:
                    pred = upleft
                row[i] = (row[i] + pred) & 0xFF
            else:
                raise CompressionError(f"bad PNG predictor row type: {kind}")
        out += row
        prev = row
    return bytes(out)

from __future__ import annotations

from Cryptodome.Hash import MD5


def md5_digest(data: bytes) -> bytes:
    return MD5.new(data).digest()


def new_md5():
    """Incremental MD5 hasher (``update``/``digest``) for streamed payloads."""
    return MD5.new()


def document_id(*parts: bytes) -> bytes:
    """Derive the 16-byte trailer ``/ID`` from identifying document material."""
    h = MD5.new()
    for p in parts:
        h.update(len(p).to_bytes(8, "big"))
        h.update(p)
    return h.digest()

from __future__ import annotations

import argparse
import os
import random
import sys
from typing import Optional

from slorpit.errors import SlorpitError
from slorpit.reader import XREF_DIRECT, ArchiveReader


def _flip_byte(path: str, offset: int, xor_val: int = 0xFF) -> None:
    if offset < 0:
        raise ValueError("Offset must be non-negative")
    with open(path, "r+b") as f:
        f.seek(offset)
        b = f.read(1)
        if not b:
            raise ValueError("Offset beyond end of file")
        f.seek(offset)
        f.write(bytes([b[0] ^ (xor_val & 0xFF)]))
        f.flush()
        os.fsync(f.fileno())


def payload_offset(archive: str, r: ArchiveReader, oid) -> tuple[int, int]:
    """Absolute offset and length of the payload of stream ``oid``."""
    loc = r.xref.get(oid.num)
    if loc is None or loc[0] != XREF_DIRECT:
        raise ValueError(f"Object {oid.num} is not stored directly")
    stream = r.get_object(oid)
    with open(archive, "rb") as f:
        raw = f.read()
    start = raw.find(b"stream", loc[1])
    if start < 0:
        raise ValueError(f"Object {oid.num} has no stream keyword")
    start = raw.find(stream.data, start) if stream.data else start
    return start, len(stream.data)


def cmd_by_offset(args: argparse.Namespace) -> None:
    _flip_byte(args.archive, args.offset, xor_val=args.xor)
    print(f"Flipped 1 byte at offset {args.offset}")


def cmd_catalog(args: argparse.Namespace) -> None:
    with ArchiveReader(args.archive) as r:
        start, length = payload_offset(args.archive, r, r.catalog_id)
    if args.within < 0 or args.within >= length:
        raise ValueError(f"--within must be within catalog payload (0..{length - 1})")
    _flip_byte(args.archive, start + args.within, xor_val=args.xor)
    print(f"Flipped 1 byte in catalog stream at archive offset {start + args.within}")


def cmd_entry(args: argparse.Namespace) -> None:
    with ArchiveReader(args.archive) as r:
        entries = r.list()
        if args.index < 0 or args.index >= len(entries):
            raise ValueError(f"Entry index out of range (0..{len(entries) - 1})")
        entry = entries[args.index]
        start, length = payload_offset(args.archive, r, entry.stream_id)
    if args.within < 0 or args.within >= length:
        raise ValueError(f"--within must be within entry payload (0..{length - 1})")
    _flip_byte(args.archive, start + args.within, xor_val=args.xor)
    print(f"Flipped 1 byte in {entry.path} at archive offset {start + args.within}")


def cmd_truncate(args: argparse.Namespace) -> None:
    size = os.path.getsize(args.archive)
    keep = max(0, size - args.bytes)
    with open(args.archive, "r+b") as f:
        f.truncate(keep)
    print(f"Truncated archive from {size} to {keep} bytes")


def cmd_random(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    flips = 0
    size = os.path.getsize(args.archive)
    with open(args.archive, "r+b") as f:
        for _ in range(args.count):
            pos = rng.randrange(0, size)
            f.seek(pos)
            b = f.read(1)
            if not b:
                continue
            f.seek(pos)
            f.write(bytes([b[0] ^ (args.xor & 0xFF)]))
            flips += 1
        f.flush()
        os.fsync(f.fileno())
    print(f"Flipped {flips} byte(s) at random offsets")


def main(argv: Optional[list[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="slorpit.corrupt", description="Corrupt PDF archives for testing")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_off = sub.add_parser("by-offset", help="Flip one byte at an absolute archive offset")
    p_off.add_argument("archive", help="Path to .pdf archive")
    p_off.add_argument("--offset", type=int, required=True, help="Absolute byte offset in archive")
    p_off.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_off.set_defaults(func=cmd_by_offset)

    p_cat = sub.add_parser("catalog", help="Flip a byte in the catalog stream payload")
    p_cat.add_argument("archive", help="Path to .pdf archive")
    p_cat.add_argument("--within", type=int, default=4, help="Byte offset within payload (default 4)")
    p_cat.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_cat.set_defaults(func=cmd_catalog)

    p_ent = sub.add_parser("entry", help="Flip a byte in one embedded file's payload")
    p_ent.add_argument("archive", help="Path to .pdf archive")
    p_ent.add_argument("--index", type=int, default=0, help="Catalog entry index (0-based)")
    p_ent.add_argument("--within", type=int, default=4, help="Byte offset within payload (default 4)")
    p_ent.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_ent.set_defaults(func=cmd_entry)

    p_trunc = sub.add_parser("truncate", help="Cut bytes off the end of the archive")
    p_trunc.add_argument("archive", help="Path to .pdf archive")
    p_trunc.add_argument("--bytes", type=int, default=32, help="Bytes to remove (default 32)")
    p_trunc.set_defaults(func=cmd_truncate)

    p_rand = sub.add_parser("random", help="Flip N random bytes anywhere in the archive")
    p_rand.add_argument("archive", help="Path to .pdf archive")
    p_rand.add_argument("--count", type=int, default=1, help="Number of random byte flips (default 1)")
    p_rand.add_argument("--seed", type=int, default=None, help="PRNG seed for reproducibility")
    p_rand.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_rand.set_defaults(func=cmd_random)

    args = ap.parse_args(argv)
    try:
        args.func(args)
    except (SlorpitError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()

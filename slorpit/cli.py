from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from typing import List

from slorpit import __version__
from slorpit.constants import DEFAULT_MAX_OBJECTS_PER_GROUP
from slorpit.errors import (
    CatalogInconsistencyError,
    CompressionError,
    MalformedContainerError,
    SlorpitError,
)
from slorpit.listing import format_size, format_timestamp
from slorpit.reader import XREF_PACKED, ArchiveReader
from slorpit.walker import walk_inputs
from slorpit.writer import ArchiveWriter


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _shown(path: str) -> str:
    """Printable form of a path that may carry undecodable filename bytes."""
    return path.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def _remove_partial(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        print(f"Warning: failed to remove partial output {path}: {exc}", file=sys.stderr)


def cmd_create(
    output: str,
    inputs: list[str],
    *,
    jobs: int = 1,
    use_object_streams: bool = True,
    group_size: int = DEFAULT_MAX_OBJECTS_PER_GROUP,
    quiet: bool = False,
    keep_dir_name: bool = True,
) -> bool:
    """Create a PDF archive from files and directories.

    Args:
        output: Destination .pdf path (overwritten if present).
        inputs: Files and directories to store.
        jobs: Number of files compressed concurrently.
        use_object_streams: Pack small objects into object streams (PDF 1.5);
            when False a classic xref table is written (PDF 1.4).
        group_size: Maximum objects per object stream.
        quiet: Limit output to the summary line.
        keep_dir_name: Store directory inputs under their own name; when False
            their files are stored relative to the directory.
    """
    t0 = time.time()
    items = list(walk_inputs(inputs, keep_dir_name=keep_dir_name))
    total_bytes = sum(it.size for it in items) or 1
    processed = 0

    def _progress(entry) -> None:
        nonlocal processed
        processed += entry.size
        if not quiet:
            pct = processed * 100.0 / total_bytes
            print(f" {pct:6.2f}% adding: {_shown(entry.path)}")

    w = ArchiveWriter(
        output,
        use_object_streams=use_object_streams,
        max_objects_per_group=group_size,
        jobs=jobs,
    )
    try:
        with w:
            w.add_files(items, on_added=_progress)
            if not quiet:
                print(" Finalizing (catalog, listing, cross-reference)...", flush=True)
            w.finalize()
    except (SlorpitError, OSError):
        _remove_partial(output)
        raise

    dt = max(0.000001, time.time() - t0)
    mib = processed / (1024.0 * 1024.0)
    ratio = (w.bytes_written * 100.0 / processed) if processed else 0.0
    print(
        f"Done: {len(w.entries)} files, {mib:.2f} MiB in {dt:.1f}s; "
        f"archive {format_size(w.bytes_written)} ({ratio:.1f}% of input)"
    )
    return True


def cmd_extract(archive: str, *, outdir: str = ".", quiet: bool = False) -> bool:
    """Extract every file of an archive under ``outdir``.

    Entries that fail to decode are reported and skipped; returns False when
    any entry failed.
    """
    t0 = time.time()

    def _report(entry, exc) -> None:
        if exc is not None:
            print(f"Error: {_shown(entry.path)}: {exc}", file=sys.stderr)
        elif not quiet:
            print(f" extracted: {_shown(entry.path)} ({format_size(entry.size)})")

    with ArchiveReader(archive) as r:
        if r.legacy_catalog:
            print("Warning: legacy catalog without stream references; matching streams by order", file=sys.stderr)
        report = r.extract_all(outdir, on_entry=_report)
        total = len(r.entries)

    dt = max(0.000001, time.time() - t0)
    mib = sum(e.size for e in report.extracted) / (1024.0 * 1024.0)
    print(
        f"Done: extracted {len(report.extracted)}/{total} files ({mib:.2f} MiB) in {dt:.1f}s; "
        f"failed={len(report.failed)}"
    )
    return report.ok


def cmd_list(archive: str) -> bool:
    """List archive entries: size, modification time and path."""
    with ArchiveReader(archive) as r:
        entries = r.list()
    for e in entries:
        print(f"{e.size}\t{format_timestamp(e.mtime)}\t{_shown(e.path)}")
    return True


def cmd_info(archive: str) -> bool:
    with ArchiveReader(archive) as r:
        info = r.info
        packed = sum(1 for kind, _a, _b in r.xref.values() if kind == XREF_PACKED)
        print(f"Archive: {archive}")
        print(f"  PDF version: {r.version}")
        print(f"  Producer: {info.get('Producer', 'N/A')}")
        print(f"  Created: {format_timestamp(r.created)} UTC")
        print(f"  Objects: {len(r.xref)} ({packed} in object streams)")
        print(f"  Catalog: {'legacy' if r.legacy_catalog else 'current'} format")
        print(f"  Entries: {len(r.entries)}")
        print(f"  Total size: {format_size(sum(e.size for e in r.entries))}")
    return True


def cmd_verify(archive: str) -> bool:
    """Decode every entry and check sizes, checksums and catalog completeness.

    Prints:
        "OK" on success, "FAIL" followed by the problems otherwise.
    """
    with ArchiveReader(archive) as r:
        ok = r.verify()
        print("OK" if ok else "FAIL")
        for problem in r.verify_errors:
            print(f"  {problem}", file=sys.stderr)
    return ok


def _run(fn, *args, **kwargs) -> None:
    """Run a command and translate its outcome into an exit status."""
    try:
        ok = fn(*args, **kwargs)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (MalformedContainerError, CompressionError, CatalogInconsistencyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Hint: the archive structure or catalog is damaged.", file=sys.stderr)
        sys.exit(2)
    except (ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (SlorpitError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(0 if ok else 1)


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="slorpit",
        description="Store files inside a valid PDF document and get them back",
        epilog="Archives open in any PDF viewer, which shows a listing of the stored files.",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_create = sub.add_parser("create", help="Create archive")
    ap_create.add_argument("output", help="Output .pdf path")
    ap_create.add_argument("inputs", nargs="+", help="Input files/directories")
    ap_create.add_argument("--jobs", "-j", type=int, default=1, help="Files compressed in parallel (default 1)")
    ap_create.add_argument(
        "--no-object-streams",
        action="store_true",
        help="Write a classic xref table (PDF 1.4) instead of object and xref streams",
    )
    ap_create.add_argument(
        "--group-size",
        type=int,
        default=DEFAULT_MAX_OBJECTS_PER_GROUP,
        help=f"Maximum objects per object stream (default {DEFAULT_MAX_OBJECTS_PER_GROUP})",
    )
    ap_create.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_extract = sub.add_parser("extract", help="Extract files")
    ap_extract.add_argument("archive", help="Archive path")
    ap_extract.add_argument("--outdir", default=".", help="Output directory")
    ap_extract.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")

    ap_info = sub.add_parser("info", help="Show archive information")
    ap_info.add_argument("archive", help="Archive path")

    ap_verify = sub.add_parser("verify", help="Verify archive integrity")
    ap_verify.add_argument("archive", help="Archive path")

    args = ap.parse_args(argv)
    _configure_logging(args.verbose)
    if args.cmd == "create":
        if args.group_size < 1:
            ap.error("--group-size must be at least 1")
        _run(
            cmd_create,
            args.output,
            args.inputs,
            jobs=args.jobs,
            use_object_streams=not args.no_object_streams,
            group_size=args.group_size,
            quiet=args.quiet,
        )
    elif args.cmd == "extract":
        _run(cmd_extract, args.archive, outdir=args.outdir, quiet=args.quiet)
    elif args.cmd == "list":
        _run(cmd_list, args.archive)
    elif args.cmd == "info":
        _run(cmd_info, args.archive)
    elif args.cmd == "verify":
        _run(cmd_verify, args.archive)
    else:
        raise RuntimeError("Unknown command")


def slorp_main(argv: List[str] | None = None):
    """``slorp OUTPUT FILES...``

    Directory inputs are stored relative to the directory, without its name.
    """
    ap = argparse.ArgumentParser(
        prog="slorp",
        description="Pack files into a PDF archive",
        epilog="Files inside a directory input are stored relative to that directory.",
    )
    ap.add_argument("output", help="Output .pdf path")
    ap.add_argument("inputs", nargs="+", help="Input files/directories")
    args = ap.parse_args(argv)
    _configure_logging(False)
    _run(cmd_create, args.output, args.inputs, keep_dir_name=False)


def unslorp_main(argv: List[str] | None = None):
    """``unslorp ARCHIVE [OUTDIR]``"""
    ap = argparse.ArgumentParser(prog="unslorp", description="Extract files from a PDF archive")
    ap.add_argument("archive", help="Archive path")
    ap.add_argument("outdir", nargs="?", default=".", help="Output directory (default .)")
    args = ap.parse_args(argv)
    _configure_logging(False)
    _run(cmd_extract, args.archive, outdir=args.outdir)


if __name__ == "__main__":
    main()

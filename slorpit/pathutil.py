from __future__ import annotations

import os


def to_archive_path(p: str) -> str:
    """Convert a path to the archive's forward-slash form.

    Only the separator direction changes. Leading slashes, ``.`` and ``..``
    segments are kept exactly as given.
    """
    p = p.replace("\\", "/")
    if os.sep != "/":
        p = p.replace(os.sep, "/")
    return p


def destination_path(outdir: str, arc_path: str) -> str:
    """Filesystem path an archive entry is written to under ``outdir``.

    The archive path is joined as-is; absolute or parent-traversing entries
    land wherever they point.
    """
    return os.path.join(outdir, arc_path.replace("/", os.sep))

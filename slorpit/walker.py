from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Iterable, Iterator, NamedTuple, Optional

from .pathutil import to_archive_path


class WalkItem(NamedTuple):
    arc_path: str
    fs_path: str
    size: int
    mtime: Optional[int]
    mtime_ns: Optional[int]


def _item(arc: str, full: str) -> WalkItem:
    try:
        st = os.stat(full)
    except OSError:
        return WalkItem(to_archive_path(arc), full, 0, None, None)
    return WalkItem(to_archive_path(arc), full, st.st_size, int(st.st_mtime), st.st_mtime_ns)


def walk_inputs(inputs: Iterable[str], *, keep_dir_name: bool = True) -> Iterator[WalkItem]:
    """Expand input paths into files to archive.

    A file is stored under its base name. A directory is walked recursively
    and its files stored as ``<dirname>/<relative path>``, in sorted order;
    with ``keep_dir_name=False`` the directory name is dropped and paths are
    relative to the directory itself. Anything else is reported on stderr and
    skipped.
    """
    for raw in inputs:
        p = Path(raw)
        if p.is_file():
            yield _item(p.name, str(p))
        elif p.is_dir():
            if not keep_dir_name:
                base = ""
            elif p.name in ("", ".", ".."):
                base = p.resolve().name
            else:
                base = p.name
            for root, dirnames, filenames in os.walk(str(p)):
                dirnames.sort()
                for f in sorted(filenames):
                    full = os.path.join(root, f)
                    if not os.path.isfile(full):
                        continue
                    rel = os.path.relpath(full, start=str(p))
                    yield _item(os.path.join(base, rel) if base else rel, full)
        else:
            print(f"Warning: {raw} is neither a file nor directory, skipping", file=sys.stderr)

from __future__ import annotations

import concurrent.futures as _fut
import logging
import time
from typing import BinaryIO, Callable, Iterable, List, Optional

from . import __version__
from .assembler import DocumentAssembler
from .catalog import build_catalog_stream
from .codec import Codec
from .constants import CATALOG_KEY, COMPRESSION_LEVEL, DEFAULT_MAX_OBJECTS_PER_GROUP, LISTING_TITLE, PRODUCER
from .embedder import FileEntry, PreparedPayload, embed, embed_bytes, embed_file, prepare_file
from .hashutil import document_id
from .listing import build_listing, page_tree
from .objects import Array, Dictionary, Name, ObjectTable, String, pdf_date, ref

log = logging.getLogger(__name__)


class ArchiveWriter:
    """Builds a PDF archive in memory and writes it out on :meth:`finalize`.

    Files are compressed as they are added (optionally on a thread pool via
    ``jobs``); object offsets are only decided once, during finalize.
    """

    def __init__(
        self,
        out_path: str,
        *,
        compression_level: int = COMPRESSION_LEVEL,
        use_object_streams: bool = True,
        max_objects_per_group: int = DEFAULT_MAX_OBJECTS_PER_GROUP,
        jobs: int = 1,
    ):
        self.out_path = out_path
        self.f: Optional[BinaryIO] = None
        self.codec = Codec(compression_level)
        self.use_object_streams = use_object_streams
        self.max_objects_per_group = max_objects_per_group
        self.jobs = max(1, int(jobs))
        self.table = ObjectTable()
        self.entries: List[FileEntry] = []
        # Allocated up front; pages refer to it before it is defined
        self.pages_id = self.table.new_id()
        self.bytes_written = 0
        self._finalized = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        self.f = open(self.out_path, "wb")

    def close(self):
        if self.f is not None:
            self.f.close()
            self.f = None

    def _check_open(self):
        if self.f is None:
            raise RuntimeError("Archive not open")
        if self._finalized:
            raise RuntimeError("Archive already finalized")

    def _register(self, prepared: PreparedPayload) -> FileEntry:
        return self._keep(embed(self.table, prepared))

    def _keep(self, entry: FileEntry) -> FileEntry:
        self.entries.append(entry)
        return entry

    def add_bytes(self, arc_path: str, data: bytes, *, mtime: Optional[float] = None) -> FileEntry:
        """Store an in-memory payload under ``arc_path``."""
        self._check_open()
        return self._keep(embed_bytes(self.table, arc_path, data, mtime=mtime, codec=self.codec))

    def add_file(self, arc_path: str, fs_path: str, *, mtime_ns: Optional[int] = None) -> FileEntry:
        """Read, compress and store a filesystem file under ``arc_path``."""
        self._check_open()
        return self._keep(embed_file(self.table, arc_path, fs_path, mtime_ns=mtime_ns, codec=self.codec))

    def add_files(self, items: Iterable, on_added: Optional[Callable[[FileEntry], None]] = None) -> List[FileEntry]:
        """Add walker items (``arc_path``, ``fs_path``, ``mtime_ns``).

        With ``jobs > 1`` files are read and compressed concurrently; entries
        are still registered in input order.
        """
        self._check_open()
        items = list(items)

        def _prepare(item) -> PreparedPayload:
            return prepare_file(item.arc_path, item.fs_path, mtime_ns=item.mtime_ns, codec=self.codec)

        added: List[FileEntry] = []
        if self.jobs > 1 and len(items) > 1:
            with _fut.ThreadPoolExecutor(max_workers=self.jobs) as ex:
                for prepared in ex.map(_prepare, items):
                    added.append(self._register(prepared))
                    if on_added is not None:
                        on_added(added[-1])
        else:
            for item in items:
                added.append(self._register(_prepare(item)))
                if on_added is not None:
                    on_added(added[-1])
        return added

    def finalize(self) -> int:
        """Add catalog, listing and document structure, then write the file.

        Returns the number of bytes written.
        """
        self._check_open()
        table = self.table
        catalog_id = table.add(build_catalog_stream(self.entries, self.codec))
        page_ids = build_listing(table, self.pages_id, self.entries, self.codec)
        table.set(self.pages_id, page_tree(page_ids))

        root = Dictionary(Type=Name("Catalog"), Pages=ref(self.pages_id))
        if self.entries:
            root["Names"] = Dictionary(EmbeddedFiles=Dictionary(Names=self._embedded_files_names()))
        root[CATALOG_KEY] = ref(catalog_id)
        root_id = table.add(root)

        now = time.time()
        info_id = table.add(
            Dictionary(
                Title=String.text(LISTING_TITLE),
                Producer=String.text(f"{PRODUCER} {__version__}"),
                CreationDate=pdf_date(now),
            )
        )
        doc_id = document_id(
            str(self.out_path).encode("utf-8", errors="surrogateescape"),
            repr(now).encode("ascii"),
            str(len(self.entries)).encode("ascii"),
        )
        assembler = DocumentAssembler(
            table,
            use_object_streams=self.use_object_streams,
            max_objects_per_group=self.max_objects_per_group,
            codec=self.codec,
        )
        self._finalized = True
        self.bytes_written = assembler.write(self.f, root=root_id, info=info_id, doc_id=doc_id)
        self.f.flush()
        log.debug("wrote %s: %d files, %d bytes", self.out_path, len(self.entries), self.bytes_written)
        return self.bytes_written

    def _embedded_files_names(self) -> Array:
        """Flat name tree: sorted, unique keys mapping to file specifications."""
        keyed = []
        seen = set()
        for e in self.entries:
            key = String.text(e.path)
            n = 1
            while key.value in seen:
                n += 1
                key = String.text(f"{e.path} ({n})")
            seen.add(key.value)
            keyed.append((key, e.filespec_id))
        keyed.sort(key=lambda kv: kv[0].value)
        names = Array()
        for key, spec_id in keyed:
            names.append(key)
            names.append(ref(spec_id))
        return names

"""
Slorpit: PDF files that are also archives.

An archive is an ordinary PDF 1.5 document: opening it in a viewer shows a
table of the stored files, and every file is also attached as an embedded
file stream. A JSON catalog stream referenced from the document catalog
records path, size, modification time and stream reference for each file;
the extractor relies on it alone.

- Deflate-compressed embedded file streams with exact decoded length and MD5
- Small dictionaries packed into object streams, indexed by an xref stream
- Classic xref-table output (PDF 1.4) when object streams are disabled
- Listing, extraction and verification via CLI

Stored paths always use "/" as separator; backslashes in input names are
turned into "/" when archiving, so a Windows-style "a\\b.txt" is stored as
"a/b.txt" on every platform.

No path sanitization is done on extraction: archives may name absolute or
parent-relative paths, and those are written as given. Only open archives
from trusted sources, or extract into a sandbox.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "objects",
    "writer",
    "reader",
    "catalog",
    "listing",
]

# Programmatic API: slorpit.writer.ArchiveWriter / slorpit.reader.ArchiveReader,
# and the CLI functions in slorpit.cli (cmd_create/cmd_extract) which take normal parameters.

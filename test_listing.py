from __future__ import annotations

import contextlib
import io
import os
import tempfile
import unittest
from pathlib import Path

from slorpit.catalog import CatalogEntry
from slorpit.listing import (
    escape_text,
    format_size,
    format_timestamp,
    page_content,
    paginate,
    rows_per_page,
)
from slorpit.pathutil import destination_path, to_archive_path
from slorpit.walker import walk_inputs


class ListingTests(unittest.TestCase):
    def test_sizes(self):
        self.assertEqual(format_size(0), "0 B")
        self.assertEqual(format_size(1023), "1023 B")
        self.assertEqual(format_size(1536), "1.5 KB")
        self.assertEqual(format_size(5 * 1024 * 1024), "5.0 MB")
        self.assertEqual(format_size(3 * 1024 ** 3), "3.0 GB")

    def test_timestamps(self):
        self.assertEqual(format_timestamp(1700000000), "2023-11-14 22:13")
        self.assertEqual(format_timestamp(None), "N/A")

    def test_escape(self):
        self.assertEqual(escape_text("a(b)\\c"), "a\\(b\\)\\\\c")
        self.assertEqual(escape_text("naïve\n"), "na?ve?")

    def test_pagination(self):
        self.assertEqual(len(paginate([])), 1)
        first = rows_per_page(True)
        entries = list(range(first + 1))
        pages = paginate(entries)
        self.assertEqual(len(pages), 2)
        self.assertEqual(len(pages[0]), first)
        self.assertEqual(list(pages[1]), [first])
        self.assertGreater(rows_per_page(False), first)

    def test_page_content(self):
        long_name = "dir/" + "x" * 80 + ".txt"
        entries = [CatalogEntry(path="a(1).txt", size=2048, mtime=None), CatalogEntry(path=long_name, size=1)]
        text = page_content(entries, total=2, page_no=0, page_count=1).decode("ascii")
        self.assertTrue(text.startswith("BT\n/F1 12 Tf"))
        self.assertTrue(text.endswith("ET\n"))
        self.assertIn("(Archive contains 2 files) Tj", text)
        self.assertIn("(a\\(1\\).txt) Tj", text)
        self.assertIn("(2.0 KB) Tj", text)
        self.assertIn("(N/A) Tj", text)
        self.assertIn("(...", text)
        self.assertNotIn(long_name, text)
        later = page_content([], total=2, page_no=1, page_count=2).decode("ascii")
        self.assertIn("(continued, page 2 of 2) Tj", later)


class PathTests(unittest.TestCase):
    def test_archive_paths(self):
        self.assertEqual(to_archive_path("a\\b\\c.txt"), "a/b/c.txt")
        self.assertEqual(to_archive_path("/abs/../x"), "/abs/../x")

    def test_destination_is_not_sanitized(self):
        self.assertEqual(destination_path("out", "a/b.txt"), os.path.join("out", "a", "b.txt"))
        self.assertEqual(destination_path("out", "../up.txt"), os.path.join("out", "..", "up.txt"))


class WalkerTests(unittest.TestCase):
    def test_files_dirs_and_missing(self):
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            (base / "tree" / "z").mkdir(parents=True)
            (base / "tree" / "b.txt").write_bytes(b"bb")
            (base / "tree" / "a.txt").write_bytes(b"a")
            (base / "tree" / "z" / "deep.txt").write_bytes(b"")
            (base / "single.txt").write_bytes(b"single")
            err = io.StringIO()
            with contextlib.redirect_stderr(err):
                items = list(walk_inputs([str(base / "single.txt"), str(base / "tree"), str(base / "missing")]))
            self.assertEqual(
                [i.arc_path for i in items],
                ["single.txt", "tree/a.txt", "tree/b.txt", "tree/z/deep.txt"],
            )
            self.assertEqual(items[0].size, 6)
            self.assertEqual(items[0].mtime_ns, (base / "single.txt").stat().st_mtime_ns)
            self.assertIn("Warning:", err.getvalue())
            self.assertIn("missing", err.getvalue())

    def test_directory_name_can_be_dropped(self):
        with tempfile.TemporaryDirectory() as tmp:
            tree = Path(tmp) / "tree"
            (tree / "sub").mkdir(parents=True)
            (tree / "top.txt").write_bytes(b"t")
            (tree / "sub" / "inner.txt").write_bytes(b"i")
            items = list(walk_inputs([str(tree)], keep_dir_name=False))
        self.assertEqual([i.arc_path for i in items], ["top.txt", "sub/inner.txt"])


if __name__ == "__main__":
    unittest.main()

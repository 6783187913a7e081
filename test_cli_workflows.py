from __future__ import annotations

import contextlib
import io
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Dict

from slorpit.cli import main, slorp_main, unslorp_main
from slorpit.reader import ArchiveReader


def _build_fixture_tree(root: Path) -> Dict[str, bytes]:
    files: Dict[str, bytes] = {}
    (root / "docs" / "notes").mkdir(parents=True)
    content = b"hello world\n" * 20
    (root / "docs" / "readme.txt").write_bytes(content)
    files["docs/readme.txt"] = content

    bin_data = os.urandom(2048)
    (root / "docs" / "notes" / "binary.bin").write_bytes(bin_data)
    files["docs/notes/binary.bin"] = bin_data

    (root / "docs" / "notes" / "empty.txt").write_text("")
    files["docs/notes/empty.txt"] = b""
    return files


def _compare_trees(src: Path, dst: Path):
    for root_src, dirs_src, files_src in os.walk(src):
        rel = os.path.relpath(root_src, src)
        root_dst = os.path.join(dst, rel) if rel != "." else dst
        assert os.path.isdir(root_dst), f"Missing directory: {root_dst}"
        for name in files_src:
            src_path = os.path.join(root_src, name)
            dst_path = os.path.join(root_dst, name)
            assert os.path.isfile(dst_path), f"Missing file: {dst_path}"
            with open(src_path, "rb") as sf, open(dst_path, "rb") as df:
                assert sf.read() == df.read(), f"File contents differ: {dst_path}"
            assert os.stat(src_path).st_mtime_ns == os.stat(dst_path).st_mtime_ns, f"mtime differs: {dst_path}"


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, module: str = "slorpit.cli", cwd: Path | None = None):
        cmd = [sys.executable, "-m", module] + list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def call(self, entry, argv):
        """Run a console entry point in-process; return (exit code, stdout, stderr)."""
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            with self.assertRaises(SystemExit) as cm:
                entry(argv)
        return cm.exception.code, out.getvalue(), err.getvalue()

    def setUp(self):
        tmp_src = tempfile.TemporaryDirectory()
        tmp_workspace = tempfile.TemporaryDirectory()
        self.addCleanup(tmp_src.cleanup)
        self.addCleanup(tmp_workspace.cleanup)
        self.src_root = Path(tmp_src.name)
        self.workspace = Path(tmp_workspace.name)
        self.files = _build_fixture_tree(self.src_root)

    def test_create_verify_extract_subprocess(self):
        archive = self.workspace / "archive.pdf"
        create = self.run_cli(["create", str(archive), str(self.src_root / "docs"), "--quiet"])
        self.assertIn("Done: 3 files", create.stdout)

        verify_proc = self.run_cli(["verify", str(archive)])
        self.assertIn("OK", verify_proc.stdout)

        extract_dir = self.workspace / "extract"
        self.run_cli(["extract", str(archive), "--outdir", str(extract_dir)])
        _compare_trees(self.src_root / "docs", extract_dir / "docs")

    def test_list_and_info(self):
        archive = self.workspace / "archive.pdf"
        code, _out, _err = self.call(main, ["create", str(archive), str(self.src_root / "docs"), "-j", "2"])
        self.assertEqual(code, 0)

        code, out, _err = self.call(main, ["list", str(archive)])
        self.assertEqual(code, 0)
        listed = [line.split("\t")[-1] for line in out.splitlines()]
        self.assertEqual(sorted(listed), sorted(self.files))
        self.assertIn(f"{len(self.files['docs/readme.txt'])}\t", out)

        code, out, _err = self.call(main, ["info", str(archive)])
        self.assertEqual(code, 0)
        self.assertIn("PDF version: 1.5", out)
        self.assertIn("Entries: 3", out)
        self.assertIn("Producer: slorpit", out)
        self.assertRegex(out, r"Created: \d{4}-\d{2}-\d{2} \d{2}:\d{2} UTC")

    def test_classic_table_option(self):
        archive = self.workspace / "table.pdf"
        code, _out, _err = self.call(
            main, ["create", str(archive), str(self.src_root / "docs"), "--no-object-streams", "--quiet"]
        )
        self.assertEqual(code, 0)
        self.assertTrue(archive.read_bytes().startswith(b"%PDF-1.4"))
        code, out, _err = self.call(main, ["verify", str(archive)])
        self.assertEqual((code, out.strip()), (0, "OK"))

    def test_compat_entry_points(self):
        archive = self.workspace / "compat.pdf"
        code, _out, _err = self.call(slorp_main, [str(archive), str(self.src_root / "docs" / "readme.txt")])
        self.assertEqual(code, 0)
        outdir = self.workspace / "compat_out"
        code, out, _err = self.call(unslorp_main, [str(archive), str(outdir)])
        self.assertEqual(code, 0)
        self.assertIn("extracted 1/1", out)
        self.assertEqual((outdir / "readme.txt").read_bytes(), self.files["docs/readme.txt"])

    def test_slorp_stores_directory_contents_without_its_name(self):
        archive = self.workspace / "dir.pdf"
        code, _out, _err = self.call(slorp_main, [str(archive), str(self.src_root / "docs")])
        self.assertEqual(code, 0)
        with ArchiveReader(str(archive)) as r:
            self.assertEqual(
                sorted(e.path for e in r.list()),
                ["notes/binary.bin", "notes/empty.txt", "readme.txt"],
            )
        outdir = self.workspace / "dir_out"
        code, _out, _err = self.call(unslorp_main, [str(archive), str(outdir)])
        self.assertEqual(code, 0)
        _compare_trees(self.src_root / "docs", outdir)

    def test_missing_input_is_skipped_with_warning(self):
        archive = self.workspace / "partial.pdf"
        code, _out, err = self.call(
            main, ["create", str(archive), str(self.src_root / "docs" / "readme.txt"), str(self.src_root / "nope")]
        )
        self.assertEqual(code, 0)
        self.assertIn("Warning:", err)
        with ArchiveReader(str(archive)) as r:
            self.assertEqual([e.path for e in r.list()], ["readme.txt"])

    def test_damaged_entry_exits_one(self):
        archive = self.workspace / "damaged.pdf"
        self.call(main, ["create", str(archive), str(self.src_root / "docs"), "--quiet"])
        with ArchiveReader(str(archive)) as r:
            target = next(e for e in r.list() if e.path == "docs/readme.txt")
            kind, offset, _gen = r.xref[target.stream_id.num]
            payload = r.get_object(target.stream_id).data
        raw = bytearray(archive.read_bytes())
        start = raw.find(payload, raw.find(b"stream", offset))
        raw[start + len(payload) // 2] ^= 0xFF
        archive.write_bytes(bytes(raw))

        code, out, err = self.call(main, ["extract", str(archive), "--outdir", str(self.workspace / "x"), "--quiet"])
        self.assertEqual(code, 1)
        self.assertIn("docs/readme.txt", err)
        self.assertIn("failed=1", out)
        self.assertTrue((self.workspace / "x" / "docs" / "notes" / "binary.bin").exists())

        code, out, _err = self.call(main, ["verify", str(archive)])
        self.assertEqual(code, 1)
        self.assertIn("FAIL", out)

    def test_fatal_errors_exit_two(self):
        not_pdf = self.workspace / "not.pdf"
        not_pdf.write_bytes(b"just text")
        code, _out, err = self.call(main, ["list", str(not_pdf)])
        self.assertEqual(code, 2)
        self.assertIn("Error:", err)

        code, _out, err = self.call(main, ["extract", str(self.workspace / "missing.pdf")])
        self.assertEqual(code, 2)
        self.assertIn("Error:", err)


if __name__ == "__main__":
    unittest.main()

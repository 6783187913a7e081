from __future__ import annotations

import io
import threading
import unittest

from slorpit.assembler import DocumentAssembler
from slorpit.errors import DanglingReferenceError, MalformedContainerError
from slorpit.objects import (
    Array,
    Dictionary,
    Name,
    ObjectId,
    ObjectTable,
    Stream,
    String,
    parse_pdf_date,
    pdf_date,
    ref,
    serialize,
    serialize_indirect,
)
from slorpit.parser import ObjectParser, parse_bytes


class SerializeTests(unittest.TestCase):
    def test_scalars(self):
        self.assertEqual(serialize(None), b"null")
        self.assertEqual(serialize(True), b"true")
        self.assertEqual(serialize(False), b"false")
        self.assertEqual(serialize(42), b"42")
        self.assertEqual(serialize(-7), b"-7")
        self.assertEqual(serialize(1.5), b"1.5")
        self.assertEqual(serialize(2.0), b"2")

    def test_names_escape_delimiters(self):
        self.assertEqual(serialize(Name("Type")), b"/Type")
        self.assertEqual(serialize(Name("A B")), b"/A#20B")
        self.assertEqual(serialize(Name("x/y")), b"/x#2Fy")

    def test_strings(self):
        self.assertEqual(serialize(String(b"a(b)c\\")), b"(a\\(b\\)c\\\\)")
        self.assertEqual(serialize(String(b"\x01\xff", hex=True)), b"<01FF>")
        self.assertEqual(String.text("plain").value, b"plain")
        self.assertTrue(String.text("café").value.startswith(b"\xfe\xff"))
        self.assertEqual(String.text("café").to_text(), "café")

    def test_containers_and_refs(self):
        d = Dictionary(Type=Name("Page"), Kids=Array([ref(ObjectId(3)), ref(ObjectId(4, 1))]))
        self.assertEqual(serialize(d), b"<< /Type /Page /Kids [3 0 R 4 1 R] >>")

    def test_stream_only_at_top_level(self):
        s = Stream(Dictionary(), b"abc")
        with self.assertRaises(TypeError):
            serialize(Dictionary(S=s))
        out = serialize_indirect(ObjectId(5), s)
        self.assertTrue(out.startswith(b"5 0 obj\n<< /Length 3 >>\nstream\nabc\nendstream"))
        self.assertTrue(out.endswith(b"endobj\n"))

    def test_unknown_kind_rejected(self):
        with self.assertRaises(TypeError):
            serialize(object())
        with self.assertRaises(TypeError):
            serialize({"k": {1, 2}})


class ParserTests(unittest.TestCase):
    def test_parse_what_serialize_writes(self):
        d = Dictionary(
            Type=Name("Filespec"),
            F=String.text("docs/a (1).txt"),
            ID=Array([String(b"\x00\x10", hex=True)]),
            N=Array([1, -2, 3.25, True, None]),
            R=ref(ObjectId(12)),
            Sub=Dictionary(Odd=Name("has space")),
        )
        parsed = parse_bytes(serialize(d))
        self.assertEqual(parsed["Type"], "Filespec")
        self.assertIsInstance(parsed["Type"], Name)
        self.assertEqual(parsed["F"].to_text(), "docs/a (1).txt")
        self.assertEqual(parsed["ID"][0].value, b"\x00\x10")
        self.assertEqual(parsed["N"], [1, -2, 3.25, True, None])
        self.assertEqual(parsed["R"].oid, ObjectId(12, 0))
        self.assertEqual(parsed["Sub"]["Odd"], "has space")

    def test_literal_escapes_and_comments(self):
        obj = parse_bytes(b"% comment\n(line\\nnext \\101 (nested) \\\n joined)")
        self.assertEqual(obj.value, b"line\nnext A (nested)  joined")

    def test_integers_not_followed_by_R_stay_integers(self):
        self.assertEqual(parse_bytes(b"[1 2 3]"), [1, 2, 3])
        self.assertEqual(parse_bytes(b"[1 0 R 2]")[0].oid, ObjectId(1, 0))

    def test_indirect_stream_with_indirect_length(self):
        data = b"7 0 obj\n<< /Length 8 0 R >>\nstream\nhello\nendstream\nendobj\n"
        parser = ObjectParser(data)
        oid, obj, _ = parser.parse_indirect(0, expected=ObjectId(7), resolve_length=lambda r: 5)
        self.assertEqual(oid, ObjectId(7))
        self.assertEqual(obj.data, b"hello")

    def test_errors_are_malformed_container(self):
        with self.assertRaises(MalformedContainerError):
            parse_bytes(b"<< /A 1")
        with self.assertRaises(MalformedContainerError):
            parse_bytes(b"(unterminated")
        with self.assertRaises(MalformedContainerError):
            parse_bytes(b"endobj")
        with self.assertRaises(MalformedContainerError):
            ObjectParser(b"3 0 obj\n1\nendobj").parse_indirect(0, expected=ObjectId(4))
        with self.assertRaises(MalformedContainerError):
            ObjectParser(b"1 0 obj\n<< /Length 99 >>\nstream\nabc\nendstream").parse_indirect(0)


class DateTests(unittest.TestCase):
    def test_pdf_date_roundtrip(self):
        ts = 1700000000
        self.assertEqual(pdf_date(ts).value, b"D:20231114221320Z")
        self.assertEqual(parse_pdf_date("D:20231114221320Z"), ts)
        self.assertEqual(parse_pdf_date("D:20231114231320+01'00'"), ts)
        self.assertIsNone(pdf_date(None))
        self.assertIsNone(parse_pdf_date("yesterday"))


class ObjectTableTests(unittest.TestCase):
    def test_ids_are_sequential_and_unique_across_threads(self):
        table = ObjectTable()
        seen = []
        lock = threading.Lock()

        def worker():
            ids = [table.new_id() for _ in range(200)]
            with lock:
                seen.extend(ids)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(set(seen)), 800)
        self.assertEqual(sorted(o.num for o in seen), list(range(1, 801)))
        self.assertEqual(table.size, 801)

    def test_forward_reference_then_set(self):
        table = ObjectTable()
        later = table.new_id()
        child = table.add(Dictionary(Parent=ref(later)))
        table.set(later, Dictionary(Kids=Array([ref(child)])))
        table.check_references()
        with self.assertRaises(ValueError):
            table.set(later, Dictionary())
        with self.assertRaises(ValueError):
            table.set(ObjectId(99), Dictionary())

    def test_reference_never_filled(self):
        table = ObjectTable()
        hole = table.new_id()
        root = table.add(Dictionary(Type=Name("Catalog"), Pages=ref(hole)))
        with self.assertRaises(DanglingReferenceError) as cm:
            DocumentAssembler(table).write(io.BytesIO(), root=root)
        self.assertIn("never filled", str(cm.exception))

    def test_reference_never_allocated(self):
        table = ObjectTable()
        root = table.add(Dictionary(Type=Name("Catalog"), Pages=ref(ObjectId(40))))
        with self.assertRaises(DanglingReferenceError) as cm:
            table.check_references()
        self.assertIn("never allocated", str(cm.exception))

    def test_root_must_exist(self):
        table = ObjectTable()
        table.add(Dictionary())
        with self.assertRaises(DanglingReferenceError):
            DocumentAssembler(table).write(io.BytesIO(), root=ObjectId(9))


if __name__ == "__main__":
    unittest.main()

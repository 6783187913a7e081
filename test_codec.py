from __future__ import annotations

import hashlib
import os
import tempfile
import unittest
import zlib

from slorpit.catalog import parse_time
from slorpit.codec import Codec, filter_name
from slorpit.constants import READ_CHUNK_SIZE
from slorpit.embedder import embed_bytes, prepare_file
from slorpit.errors import CompressionError, MalformedContainerError, UnsupportedFilter
from slorpit.objects import Array, Dictionary, Name, ObjectId, ObjectTable, Stream, ref
from slorpit.packer import UnpackedGroup, build_group, is_packable, pack_objects, partition


class CodecTests(unittest.TestCase):
    def setUp(self):
        self.codec = Codec()

    def test_compressible_data_gets_flate(self):
        data = b"hello world\n" * 100
        stored, flt = self.codec.compress(data)
        self.assertEqual(flt, "FlateDecode")
        self.assertLess(len(stored), len(data))
        self.assertEqual(self.codec.decompress(stored, flt), data)

    def test_incompressible_data_stored_raw(self):
        data = os.urandom(4096)
        stored, flt = self.codec.compress(data)
        self.assertIsNone(flt)
        self.assertEqual(stored, data)
        self.assertEqual(self.codec.decompress(stored, None), data)

    def test_empty_input(self):
        stored, flt = self.codec.compress(b"")
        self.assertIsNone(flt)
        self.assertEqual(self.codec.decompress(stored, flt), b"")

    def test_filter_forms(self):
        self.assertIsNone(filter_name(None))
        self.assertIsNone(filter_name(Array()))
        self.assertEqual(filter_name(Name("FlateDecode")), "FlateDecode")
        self.assertEqual(filter_name(Array([Name("FlateDecode")])), "FlateDecode")
        with self.assertRaises(UnsupportedFilter):
            filter_name(Array([Name("ASCIIHexDecode"), Name("FlateDecode")]))

    def test_unknown_filter_rejected(self):
        with self.assertRaises(UnsupportedFilter):
            self.codec.decompress(b"data", Name("LZWDecode"))
        self.assertTrue(issubclass(UnsupportedFilter, CompressionError))

    def test_corrupt_and_truncated_deflate(self):
        good = zlib.compress(b"abcdefgh" * 500)
        with self.assertRaises(CompressionError):
            self.codec.decompress(b"\x00\x01garbage", Name("FlateDecode"))
        with self.assertRaises(CompressionError):
            self.codec.decompress(good[: len(good) // 2], Name("FlateDecode"))

    def test_streaming_pieces_join_to_payload(self):
        data = os.urandom(1000) * 50
        stored = zlib.compress(data)
        pieces = list(self.codec.iter_decompress(stored, Name("FlateDecode"), piece_size=257))
        self.assertGreater(len(pieces), 1)
        self.assertEqual(b"".join(pieces), data)

    def test_png_up_predictor(self):
        rows = bytes([2, 1, 2, 3, 2, 0, 0, 1])
        parms = Dictionary(Predictor=12, Columns=3)
        out = self.codec.decompress(zlib.compress(rows), Name("FlateDecode"), decode_parms=parms)
        self.assertEqual(out, bytes([1, 2, 3, 1, 2, 4]))


class PackerTests(unittest.TestCase):
    def _members(self, n):
        return [(ObjectId(i + 1), Dictionary(Type=Name("Filespec"), Index=i)) for i in range(n)]

    def test_streams_and_nonzero_generations_stay_direct(self):
        self.assertTrue(is_packable(ObjectId(1), Dictionary()))
        self.assertFalse(is_packable(ObjectId(1), Stream(Dictionary(), b"x")))
        self.assertFalse(is_packable(ObjectId(1, 2), Dictionary()))

    def test_partition_respects_group_size(self):
        groups = partition(self._members(7), 3)
        self.assertEqual([len(g) for g in groups], [3, 3, 1])
        with self.assertRaises(ValueError):
            partition(self._members(2), 0)

    def test_group_roundtrip(self):
        members = self._members(5)
        stream = build_group(members, Codec())
        self.assertEqual(stream.dictionary["Type"], "ObjStm")
        self.assertEqual(stream.dictionary["N"], 5)
        group = UnpackedGroup(stream, Codec())
        self.assertEqual([oid for oid, _ in group], [oid for oid, _ in members])
        self.assertEqual(group.get(3, expected_num=4)["Index"], 3)
        with self.assertRaises(MalformedContainerError):
            group.get(3, expected_num=9)
        with self.assertRaises(MalformedContainerError):
            group.get(5)

    def test_pack_objects_allocates_group_ids(self):
        table = ObjectTable()
        members = [(table.add(d), d) for _, d in self._members(4)]
        table.add(Dictionary(Kids=Array([ref(members[0][0])])))
        groups = pack_objects(table, members, max_per_group=2, codec=Codec())
        self.assertEqual(len(groups), 2)
        self.assertEqual([g.oid.num for g in groups], [6, 7])
        self.assertEqual(groups[1].members, [members[2][0], members[3][0]])
        self.assertEqual(table.size, 8)

    def test_not_an_object_stream(self):
        with self.assertRaises(MalformedContainerError):
            UnpackedGroup(Stream(Dictionary(Type=Name("XRef")), b""), Codec())


class EmbedderTests(unittest.TestCase):
    def test_incompressible_file_stored_from_first_read(self):
        data = os.urandom(2 * READ_CHUNK_SIZE + 17)
        with tempfile.TemporaryDirectory() as tmp:
            src = os.path.join(tmp, "noise.bin")
            with open(src, "wb") as fh:
                fh.write(data)
            p = prepare_file("noise.bin", src, mtime_ns=1_600_000_000_000_000_000)
        self.assertIsNone(p.filter)
        self.assertEqual(p.stored, data)
        self.assertEqual(p.size, len(data))
        self.assertEqual(p.checksum, hashlib.md5(data).digest())
        self.assertEqual(p.mtime, 1_600_000_000)

    def test_embed_bytes_registers_stream_and_filespec(self):
        table = ObjectTable()
        entry = embed_bytes(table, "dir\\x.txt", b"xyz" * 100, mtime=1700000000)
        self.assertEqual(entry.path, "dir/x.txt")
        stream = table.get(entry.stream_id)
        self.assertEqual(stream.dictionary["Type"], "EmbeddedFile")
        self.assertEqual(stream.dictionary["DL"], 300)
        self.assertEqual(Codec().decompress(stream.data, stream.dictionary["Filter"]), b"xyz" * 100)
        spec = table.get(entry.filespec_id)
        self.assertEqual(spec["EF"]["F"], ref(entry.stream_id))


class TimeStringTests(unittest.TestCase):
    def test_accepted_forms(self):
        self.assertEqual(parse_time("1700000000"), 1700000000)
        self.assertEqual(parse_time(" 1700000000.75 "), 1700000000)
        self.assertEqual(parse_time("2023-11-14T22:13:20Z"), 1700000000)
        self.assertEqual(parse_time("2023-11-14T23:13:20+01:00"), 1700000000)
        self.assertEqual(parse_time("2023-11-14T22:13:20"), 1700000000)
        self.assertEqual(parse_time("D:20231114221320Z"), 1700000000)

    def test_unrecognized(self):
        self.assertIsNone(parse_time("last tuesday"))
        self.assertIsNone(parse_time("inf"))


if __name__ == "__main__":
    unittest.main()

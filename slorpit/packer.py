"""
Object streams: many small dictionaries stored in one compressed stream.

A group's payload is an offset table followed by the member bodies::

    12 0 13 57 14 120 ...  <</Type /Filespec ...>> <</Type /Font ...>> ...
    ^ /First points here ---------------^

Members are addressed in the cross-reference index as (group, index), so
reading one member means inflating the group once and slicing at its offset.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .codec import Codec
from .errors import MalformedContainerError
from .objects import Dictionary, Name, ObjectId, Stream, serialize
from .parser import ObjectParser


@dataclass
class PackedGroup:
    oid: ObjectId
    stream: Stream
    members: List[ObjectId]


def is_packable(oid: ObjectId, obj) -> bool:
    """Streams stay individually addressable; generation must be 0."""
    return oid.gen == 0 and not isinstance(obj, Stream)


def partition(objects: Sequence[Tuple[ObjectId, object]], max_per_group: int) -> List[List[Tuple[ObjectId, object]]]:
    if max_per_group < 1:
        raise ValueError("max_per_group must be at least 1")
    groups = []
    for start in range(0, len(objects), max_per_group):
        groups.append(list(objects[start : start + max_per_group]))
    return groups


def build_group(members: Sequence[Tuple[ObjectId, object]], codec: Codec) -> Stream:
    """Serialize ``members`` into one ``/Type /ObjStm`` stream."""
    header = []
    bodies = bytearray()
    for oid, obj in members:
        if not is_packable(oid, obj):
            raise ValueError(f"object {oid.num} {oid.gen} cannot be packed")
        header.append(b"%d %d" % (oid.num, len(bodies)))
        bodies += serialize(obj)
        bodies += b"\n"
    head = b" ".join(header) + b"\n"
    payload = head + bytes(bodies)
    stored, flt = codec.compress(payload)
    d = Dictionary(Type=Name("ObjStm"), N=len(members), First=len(head))
    if flt is not None:
        d["Filter"] = flt
    return Stream(d, stored)


def pack_objects(
    table,
    objects: Sequence[Tuple[ObjectId, object]],
    *,
    max_per_group: int,
    codec: Codec,
) -> List[PackedGroup]:
    """Pack ``objects`` into groups, allocating each group's id from ``table``.

    The group streams are returned, not stored in ``table``; the assembler
    writes them after the directly addressed objects.
    """
    groups = []
    for members in partition(objects, max_per_group):
        oid = table.new_id()
        groups.append(PackedGroup(oid=oid, stream=build_group(members, codec), members=[m for m, _ in members]))
    return groups


class UnpackedGroup:
    """Decoded object stream; members parsed lazily by index."""

    def __init__(self, stream: Stream, codec: Codec):
        d = stream.dictionary
        if d.get("Type") != "ObjStm":
            raise MalformedContainerError("object is not an object stream")
        try:
            self.count = int(d["N"])
            self.first = int(d["First"])
        except (KeyError, TypeError, ValueError):
            raise MalformedContainerError("object stream lacks /N or /First")
        self.payload = codec.decompress(stream.data, d.get("Filter"), decode_parms=d.get("DecodeParms"))
        if self.first > len(self.payload):
            raise MalformedContainerError("object stream /First is past the payload")
        head = self.payload[: self.first].split()
        if len(head) < 2 * self.count:
            raise MalformedContainerError("object stream offset table is short")
        self.offsets: List[Tuple[int, int]] = [
            (int(head[2 * i]), int(head[2 * i + 1])) for i in range(self.count)
        ]
        self._parser = ObjectParser(self.payload)
        self._cache: Dict[int, object] = {}

    def get(self, index: int, expected_num: int = -1):
        if index < 0 or index >= self.count:
            raise MalformedContainerError(f"object stream index {index} out of range")
        if index not in self._cache:
            num, off = self.offsets[index]
            if expected_num >= 0 and num != expected_num:
                raise MalformedContainerError(
                    f"object stream slot {index} holds object {num}, expected {expected_num}"
                )
            obj, _ = self._parser.parse_object(self.first + off)
            self._cache[index] = obj
        return self._cache[index]

    def __iter__(self):
        for i, (num, _off) in enumerate(self.offsets):
            yield ObjectId(num, 0), self.get(i)

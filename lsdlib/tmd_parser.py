"""TMD model files: an object table whose entries point at vertex, normal
and primitive blocks.

Layout:
    u32 id (0x41), u32 flags, u32 object count
    object table: count x 28 bytes
        vert_top, n_vert, normal_top, n_normal, primitive_top, n_primitive, scale
    vertex blocks:    n_vert   x (i16 x, i16 y, i16 z, i16 pad)
    normal blocks:    n_normal x (1.3.12 x, y, z, pad)
    primitive blocks: n_primitive x (4-byte header + packet)

When flag bit 0 (FIXP) is clear the *_top offsets are relative to the start
of the object table; when set they are absolute file offsets.
"""
from dataclasses import dataclass, field
from typing import List

import numpy as np

from lsdlib.binary_io import BinaryWriter
from lsdlib.debug_console import DebugConsole
from lsdlib.errors import BadFormatError
from lsdlib.fixed_point import ONE
from lsdlib.tmd_packets import TmdPrimitive, read_primitive, write_primitive


@dataclass(frozen=True)
class TmdHeader:
    id: int
    flags: int
    num_objects: int

    @property
    def fixp(self) -> bool:
        return bool(self.flags & 0x1)


@dataclass(frozen=True)
class TmdObjectEntry:
    vert_top: int
    n_vert: int
    normal_top: int
    n_normal: int
    primitive_top: int
    n_primitive: int
    scale: int


@dataclass(frozen=True, eq=False)
class TmdObject:
    entry: TmdObjectEntry
    vertices: np.ndarray  # Shape: (n_vert, 3), dtype: int16
    normals_raw: np.ndarray  # Shape: (n_normal, 3), dtype: int16, 1.3.12
    primitives: List[TmdPrimitive] = field(default_factory=list)

    @property
    def normals(self) -> np.ndarray:
        return self.normals_raw.astype(np.float32) / ONE


@dataclass(frozen=True, eq=False)
class Tmd:
    header: TmdHeader
    objects: List[TmdObject]


class TMDParser:
    MAGIC = 0x41
    HEADER_SIZE = 12
    OBJECT_ENTRY_SIZE = 28

    def __init__(self, reader):
        self.reader = reader

    def parse(self) -> Tmd:
        file_top = self.reader.tell()
        header = self._read_header()
        table_top = self.reader.tell()
        # FIXP offsets count from the start of the TMD itself
        base = file_top if header.fixp else table_top

        entries = [self._read_object_entry() for _ in range(header.num_objects)]
        objects = []
        for index, entry in enumerate(entries):
            DebugConsole.log(
                f"TMD object {index}: {entry.n_vert} verts, {entry.n_normal} normals, "
                f"{entry.n_primitive} primitives"
            )
            objects.append(self._read_object(entry, base))
        return Tmd(header=header, objects=objects)

    def _read_header(self) -> TmdHeader:
        start = self.reader.tell()
        magic = self.reader.read_u32()
        if magic != self.MAGIC:
            raise BadFormatError(
                f"TMD did not have correct magic number: {magic:#x}", offset=start
            )
        return TmdHeader(
            id=magic,
            flags=self.reader.read_u32(),
            num_objects=self.reader.read_u32(),
        )

    def _read_object_entry(self) -> TmdObjectEntry:
        (vert_top, n_vert, normal_top, n_normal,
         primitive_top, n_primitive, scale) = self.reader.read_struct("IIIIIIi", 28)
        return TmdObjectEntry(
            vert_top=vert_top,
            n_vert=n_vert,
            normal_top=normal_top,
            n_normal=n_normal,
            primitive_top=primitive_top,
            n_primitive=n_primitive,
            scale=scale,
        )

    def _read_svector_block(self, base, top, count) -> np.ndarray:
        self.reader.seek_from(base, top)
        # x, y, z, pad per entry; drop the pad column
        return self.reader.read_array("i2", count, columns=4)[:, :3].copy()

    def _read_object(self, entry: TmdObjectEntry, base: int) -> TmdObject:
        vertices = self._read_svector_block(base, entry.vert_top, entry.n_vert)
        normals = self._read_svector_block(base, entry.normal_top, entry.n_normal)

        self.reader.seek_from(base, entry.primitive_top)
        primitives = [read_primitive(self.reader) for _ in range(entry.n_primitive)]
        return TmdObject(
            entry=entry, vertices=vertices, normals_raw=normals, primitives=primitives
        )


def write_tmd(tmd: Tmd, writer) -> None:
    """Serialize a Tmd with blocks laid out object by object.

    Offsets in the written object table are recomputed relative to the
    object table; the FIXP bit is cleared.
    """
    header = tmd.header
    writer.write_u32(TMDParser.MAGIC)
    writer.write_u32(header.flags & ~0x1)
    writer.write_u32(len(tmd.objects))

    table_size = TMDParser.OBJECT_ENTRY_SIZE * len(tmd.objects)
    blocks = []
    cursor = table_size
    for obj in tmd.objects:
        vert_top = cursor
        cursor += 8 * len(obj.vertices)
        normal_top = cursor
        cursor += 8 * len(obj.normals_raw)
        primitive_top = cursor
        body = _pack_primitives(obj.primitives, writer.endian)
        cursor += len(body)
        writer.write_struct(
            "IIIIIIi",
            vert_top, len(obj.vertices),
            normal_top, len(obj.normals_raw),
            primitive_top, len(obj.primitives),
            obj.entry.scale,
        )
        blocks.append((obj, body))

    for obj, body in blocks:
        for table in (obj.vertices, obj.normals_raw):
            for x, y, z in table:
                writer.write_struct("hhhh", int(x), int(y), int(z), 0)
        writer.write_bytes(body)


def _pack_primitives(primitives, endian) -> bytes:
    scratch = BinaryWriter(endian=endian)
    for primitive in primitives:
        write_primitive(primitive, scratch)
    return scratch.getvalue()

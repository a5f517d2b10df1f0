"""TMD primitive packets.

Each polygon or line primitive in a TMD object starts with a 4-byte header
(olen, ilen, flag, mode) followed by a packet whose layout is fixed by the
(mode, flag) pair. The layouts below are the authoritative table: every row
lists its fields in stream order, and decoding and encoding both walk that
list. ``ilen`` is the packet length in 32-bit words and always equals the
size of the field list.

Packets decode into one of four frozen record types. The record type is
fixed by whether the shape is lit (stores normal indices) and textured
(stores a texture page, a CLUT and UVs):

    unlit, untextured  -> ColoredPrimitive
    unlit, textured    -> TexturedColoredPrimitive
    lit, untextured    -> LitColoredPrimitive
    lit, textured      -> LitTexturedPrimitive
"""
import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Tuple, Union

from lsdlib.errors import BadFormatError, UnsupportedVariantError

# ==============================================================================
# 1. Field tokens
# ==============================================================================
# token -> (struct fragment, number of unpacked values)
COLOR = "color"      # r, g, b, 1 pad byte
VERTEX = "vertex"    # u16 index into the object's vertex table
NORMAL = "normal"    # u16 index into the object's normal table
UV = "uv"            # u8 u, u8 v
CLUT = "clut"        # u16 colour lookup descriptor (CBA)
TPAGE = "tpage"      # u16 texture page descriptor (TSB)
PAD16 = "pad16"      # 2 bytes, written as zero

FIELD_FORMATS = {
    COLOR: ("3Bx", 3),
    VERTEX: ("H", 1),
    NORMAL: ("H", 1),
    UV: ("2B", 2),
    CLUT: ("H", 1),
    TPAGE: ("H", 1),
    PAD16: ("2x", 0),
}

# Shared texture blocks: uv0 cba | uv1 tsb | uv2 pad (| uv3 pad)
_TRI_TEXTURE = (UV, CLUT, UV, TPAGE, UV, PAD16)
_QUAD_TEXTURE = _TRI_TEXTURE + (UV, PAD16)


# ==============================================================================
# 2. Descriptors
# ==============================================================================
class SemiTransparency(IntEnum):
    HALF_BACK_HALF_FRONT = 0   # 0.5 * B + 0.5 * F
    BACK_PLUS_FRONT = 1        # 1.0 * B + 1.0 * F
    BACK_MINUS_FRONT = 2       # 1.0 * B - 1.0 * F
    BACK_PLUS_QUARTER = 3      # 1.0 * B + 0.25 * F


class TextureColorMode(IntEnum):
    CLUT_4BIT = 0
    CLUT_8BIT = 1
    DIRECT_15BIT = 2
    RESERVED = 3


@dataclass(frozen=True)
class TexturePage:
    """16-bit TSB descriptor: page number, blend rate and colour mode."""

    raw: int

    @property
    def page(self) -> int:
        return self.raw & 0x1F

    @property
    def semi_transparency(self) -> SemiTransparency:
        return SemiTransparency((self.raw >> 5) & 0x3)

    @property
    def color_mode(self) -> TextureColorMode:
        return TextureColorMode((self.raw >> 7) & 0x3)


@dataclass(frozen=True)
class ColorLookup:
    """16-bit CBA descriptor locating a CLUT in VRAM."""

    raw: int

    @property
    def x(self) -> int:
        """Horizontal position in pixels (stored in 16-pixel units)"""
        return (self.raw & 0x3F) * 16

    @property
    def y(self) -> int:
        return (self.raw >> 6) & 0x1FF


@dataclass(frozen=True)
class Color:
    r: int
    g: int
    b: int

    @property
    def normalized(self) -> Tuple[float, float, float]:
        return (self.r / 255, self.g / 255, self.b / 255)


# ==============================================================================
# 3. Shapes and the layout table
# ==============================================================================
class PrimitiveShape(Enum):
    """Every supported primitive shape, valued by its (mode, flag) pair."""

    TRI_FLAT_UNLIT = (0x21, 0x1)
    TRI_FLAT_TEX_UNLIT = (0x25, 0x1)
    TRI_GRAD_UNLIT = (0x31, 0x1)
    TRI_GRAD_TEX_UNLIT = (0x35, 0x1)
    TRI_FLAT_LIT = (0x20, 0x0)
    TRI_FLAT_GRAD_LIT = (0x20, 0x4)
    TRI_FLAT_TEX_LIT = (0x24, 0x0)
    TRI_SHADED_LIT = (0x30, 0x0)
    TRI_SHADED_GRAD_LIT = (0x30, 0x4)
    TRI_SHADED_TEX_LIT = (0x34, 0x0)
    QUAD_FLAT_UNLIT = (0x29, 0x1)
    QUAD_FLAT_TEX_UNLIT = (0x2D, 0x1)
    QUAD_GRAD_UNLIT = (0x39, 0x1)
    QUAD_GRAD_TEX_UNLIT = (0x3D, 0x1)
    QUAD_FLAT_LIT = (0x28, 0x0)
    QUAD_FLAT_GRAD_LIT = (0x28, 0x4)
    QUAD_FLAT_TEX_LIT = (0x2C, 0x0)
    QUAD_SHADED_LIT = (0x38, 0x0)
    QUAD_SHADED_GRAD_LIT = (0x38, 0x4)
    QUAD_SHADED_TEX_LIT = (0x3C, 0x0)
    LINE_FLAT = (0x40, 0x1)
    LINE_GRAD = (0x50, 0x1)

    @property
    def mode(self) -> int:
        return self.value[0]

    @property
    def flag(self) -> int:
        return self.value[1]


@dataclass(frozen=True)
class PrimitiveLayout:
    shape: PrimitiveShape
    ilen: int
    olen: int
    fields: Tuple[str, ...]

    @property
    def struct_format(self) -> str:
        return "".join(FIELD_FORMATS[f][0] for f in self.fields)

    @property
    def size(self) -> int:
        return struct.calcsize("<" + self.struct_format)

    def count(self, token) -> int:
        return sum(1 for f in self.fields if f == token)

    @property
    def vertex_count(self) -> int:
        return self.count(VERTEX)

    @property
    def is_lit(self) -> bool:
        return NORMAL in self.fields

    @property
    def is_textured(self) -> bool:
        return TPAGE in self.fields

    @property
    def is_gradient(self) -> bool:
        return self.count(COLOR) > 1


def _layout(shape, ilen, olen, *fields):
    return PrimitiveLayout(shape=shape, ilen=ilen, olen=olen, fields=tuple(fields))


_S = PrimitiveShape

PRIMITIVE_LAYOUTS: Dict[Tuple[int, int], PrimitiveLayout] = {
    layout.shape.value: layout
    for layout in (
        # 3 vertex, no light source calculation
        _layout(_S.TRI_FLAT_UNLIT, 3, 4,
                COLOR, VERTEX, VERTEX, VERTEX, PAD16),
        _layout(_S.TRI_FLAT_TEX_UNLIT, 6, 7,
                *_TRI_TEXTURE, COLOR, VERTEX, VERTEX, VERTEX, PAD16),
        _layout(_S.TRI_GRAD_UNLIT, 5, 6,
                COLOR, COLOR, COLOR, VERTEX, VERTEX, VERTEX, PAD16),
        _layout(_S.TRI_GRAD_TEX_UNLIT, 8, 9,
                *_TRI_TEXTURE, COLOR, COLOR, COLOR, VERTEX, VERTEX, VERTEX, PAD16),
        # 3 vertex, light source calculation
        _layout(_S.TRI_FLAT_LIT, 3, 4,
                COLOR, NORMAL, VERTEX, VERTEX, VERTEX),
        _layout(_S.TRI_FLAT_GRAD_LIT, 5, 6,
                COLOR, COLOR, COLOR, NORMAL, VERTEX, VERTEX, VERTEX),
        _layout(_S.TRI_FLAT_TEX_LIT, 5, 7,
                *_TRI_TEXTURE, NORMAL, VERTEX, VERTEX, VERTEX),
        _layout(_S.TRI_SHADED_LIT, 4, 6,
                COLOR, NORMAL, VERTEX, NORMAL, VERTEX, NORMAL, VERTEX),
        _layout(_S.TRI_SHADED_GRAD_LIT, 6, 6,
                COLOR, COLOR, COLOR, NORMAL, VERTEX, NORMAL, VERTEX, NORMAL, VERTEX),
        _layout(_S.TRI_SHADED_TEX_LIT, 6, 9,
                *_TRI_TEXTURE, NORMAL, VERTEX, NORMAL, VERTEX, NORMAL, VERTEX),
        # 4 vertex, no light source calculation
        _layout(_S.QUAD_FLAT_UNLIT, 3, 5,
                COLOR, VERTEX, VERTEX, VERTEX, VERTEX),
        _layout(_S.QUAD_FLAT_TEX_UNLIT, 7, 9,
                *_QUAD_TEXTURE, COLOR, VERTEX, VERTEX, VERTEX, VERTEX),
        _layout(_S.QUAD_GRAD_UNLIT, 6, 8,
                COLOR, COLOR, COLOR, COLOR, VERTEX, VERTEX, VERTEX, VERTEX),
        _layout(_S.QUAD_GRAD_TEX_UNLIT, 10, 12,
                *_QUAD_TEXTURE, COLOR, COLOR, COLOR, COLOR,
                VERTEX, VERTEX, VERTEX, VERTEX),
        # 4 vertex, light source calculation
        _layout(_S.QUAD_FLAT_LIT, 4, 5,
                COLOR, NORMAL, VERTEX, VERTEX, VERTEX, VERTEX, PAD16),
        _layout(_S.QUAD_FLAT_GRAD_LIT, 7, 8,
                COLOR, COLOR, COLOR, COLOR, NORMAL,
                VERTEX, VERTEX, VERTEX, VERTEX, PAD16),
        _layout(_S.QUAD_FLAT_TEX_LIT, 7, 9,
                *_QUAD_TEXTURE, NORMAL, VERTEX, VERTEX, VERTEX, VERTEX, PAD16),
        _layout(_S.QUAD_SHADED_LIT, 5, 8,
                COLOR, NORMAL, VERTEX, NORMAL, VERTEX, NORMAL, VERTEX, NORMAL, VERTEX),
        _layout(_S.QUAD_SHADED_GRAD_LIT, 8, 8,
                COLOR, COLOR, COLOR, COLOR,
                NORMAL, VERTEX, NORMAL, VERTEX, NORMAL, VERTEX, NORMAL, VERTEX),
        _layout(_S.QUAD_SHADED_TEX_LIT, 8, 12,
                *_QUAD_TEXTURE,
                NORMAL, VERTEX, NORMAL, VERTEX, NORMAL, VERTEX, NORMAL, VERTEX),
        # straight lines
        _layout(_S.LINE_FLAT, 2, 3,
                COLOR, VERTEX, VERTEX),
        _layout(_S.LINE_GRAD, 3, 4,
                COLOR, COLOR, VERTEX, VERTEX),
    )
}


# ==============================================================================
# 4. Packet records
# ==============================================================================
@dataclass(frozen=True)
class ColoredPrimitive:
    shape: PrimitiveShape
    vertices: Tuple[int, ...]
    colors: Tuple[Color, ...]


@dataclass(frozen=True)
class TexturedColoredPrimitive:
    shape: PrimitiveShape
    vertices: Tuple[int, ...]
    colors: Tuple[Color, ...]
    texture: TexturePage
    color_lookup: ColorLookup
    uvs: Tuple[Tuple[int, int], ...]


@dataclass(frozen=True)
class LitColoredPrimitive:
    shape: PrimitiveShape
    vertices: Tuple[int, ...]
    normals: Tuple[int, ...]
    colors: Tuple[Color, ...]


@dataclass(frozen=True)
class LitTexturedPrimitive:
    shape: PrimitiveShape
    vertices: Tuple[int, ...]
    normals: Tuple[int, ...]
    texture: TexturePage
    color_lookup: ColorLookup
    uvs: Tuple[Tuple[int, int], ...]


PrimitivePacket = Union[
    ColoredPrimitive,
    TexturedColoredPrimitive,
    LitColoredPrimitive,
    LitTexturedPrimitive,
]

# (is_lit, is_textured) -> record type
_RECORD_TYPES = {
    (False, False): ColoredPrimitive,
    (False, True): TexturedColoredPrimitive,
    (True, False): LitColoredPrimitive,
    (True, True): LitTexturedPrimitive,
}


def layout_for(mode: int, flag: int, offset: Optional[int] = None) -> PrimitiveLayout:
    layout = PRIMITIVE_LAYOUTS.get((mode, flag))
    if layout is None:
        raise UnsupportedVariantError(
            f"Unsupported primitive mode={mode:#04x} flag={flag:#03x}",
            variant=(mode, flag),
            offset=offset,
        )
    return layout


# ==============================================================================
# 5. Codec
# ==============================================================================
def decode(mode: int, flag: int, reader) -> PrimitivePacket:
    """Decode one primitive packet body selected by (mode, flag).

    Reads exactly ``ilen * 4`` bytes from ``reader``.

    Raises:
        UnsupportedVariantError: the pair is not in the layout table
        TruncatedInputError: the stream ends inside the packet
    """
    layout = layout_for(mode, flag, reader.tell())
    values = iter(reader.read_struct(layout.struct_format, layout.size))

    vertices: List[int] = []
    normals: List[int] = []
    colors: List[Color] = []
    uvs: List[Tuple[int, int]] = []
    texture = color_lookup = None
    for token in layout.fields:
        if token == COLOR:
            colors.append(Color(next(values), next(values), next(values)))
        elif token == VERTEX:
            vertices.append(next(values))
        elif token == NORMAL:
            normals.append(next(values))
        elif token == UV:
            uvs.append((next(values), next(values)))
        elif token == CLUT:
            color_lookup = ColorLookup(next(values))
        elif token == TPAGE:
            texture = TexturePage(next(values))

    kwargs = {"shape": layout.shape, "vertices": tuple(vertices)}
    if layout.is_lit:
        kwargs["normals"] = tuple(normals)
    if layout.is_textured:
        kwargs.update(texture=texture, color_lookup=color_lookup, uvs=tuple(uvs))
    if colors:
        kwargs["colors"] = tuple(colors)
    return _RECORD_TYPES[(layout.is_lit, layout.is_textured)](**kwargs)


def _checked(packet, name, layout, token):
    items = getattr(packet, name)
    expected = layout.count(token)
    if len(items) != expected:
        raise ValueError(
            f"{layout.shape.name} needs {expected} {name}, got {len(items)}"
        )
    return iter(items)


def encode(packet: PrimitivePacket, writer) -> None:
    """Write the packet body; the exact inverse of decode()."""
    layout = PRIMITIVE_LAYOUTS[packet.shape.value]
    if type(packet) is not _RECORD_TYPES[(layout.is_lit, layout.is_textured)]:
        raise TypeError(f"{type(packet).__name__} cannot carry {layout.shape.name}")

    vertices = _checked(packet, "vertices", layout, VERTEX)
    normals = _checked(packet, "normals", layout, NORMAL) if layout.is_lit else None
    colors = _checked(packet, "colors", layout, COLOR) if COLOR in layout.fields else None
    uvs = _checked(packet, "uvs", layout, UV) if layout.is_textured else None

    values = []
    for token in layout.fields:
        if token == COLOR:
            color = next(colors)
            values.extend((color.r, color.g, color.b))
        elif token == VERTEX:
            values.append(next(vertices))
        elif token == NORMAL:
            values.append(next(normals))
        elif token == UV:
            values.extend(next(uvs))
        elif token == CLUT:
            values.append(packet.color_lookup.raw)
        elif token == TPAGE:
            values.append(packet.texture.raw)
    writer.write_struct(layout.struct_format, *values)


# ==============================================================================
# 6. Primitive header
# ==============================================================================
# Render-only bits that do not change a packet's layout
MODE_SEMI_TRANSPARENT = 0x02  # ABE
FLAG_DOUBLE_SIDED = 0x02      # FCE


@dataclass(frozen=True)
class PrimitiveHeader:
    olen: int
    ilen: int
    flag: int
    mode: int

    @property
    def layout_key(self) -> Tuple[int, int]:
        return (self.mode & ~MODE_SEMI_TRANSPARENT, self.flag & ~FLAG_DOUBLE_SIDED)

    @property
    def semi_transparent(self) -> bool:
        return bool(self.mode & MODE_SEMI_TRANSPARENT)

    @property
    def double_sided(self) -> bool:
        return bool(self.flag & FLAG_DOUBLE_SIDED)


@dataclass(frozen=True)
class TmdPrimitive:
    header: PrimitiveHeader
    packet: PrimitivePacket


def read_primitive(reader) -> TmdPrimitive:
    """Read a primitive header and the packet it announces."""
    start = reader.tell()
    olen, ilen, flag, mode = reader.read_struct("BBBB", 4)
    header = PrimitiveHeader(olen=olen, ilen=ilen, flag=flag, mode=mode)
    layout = layout_for(*header.layout_key, offset=start)
    if ilen != layout.ilen:
        raise BadFormatError(
            f"{layout.shape.name} declares ilen={ilen}, layout has {layout.ilen}",
            offset=start,
        )
    return TmdPrimitive(header=header, packet=decode(*header.layout_key, reader))


def write_primitive(primitive: TmdPrimitive, writer) -> None:
    header = primitive.header
    writer.write_struct("BBBB", header.olen, header.ilen, header.flag, header.mode)
    encode(primitive.packet, writer)


def make_header(shape: PrimitiveShape, semi_transparent=False, double_sided=False):
    """Build the header a writer should emit for a freshly made packet"""
    layout = PRIMITIVE_LAYOUTS[shape.value]
    mode = shape.mode | (MODE_SEMI_TRANSPARENT if semi_transparent else 0)
    flag = shape.flag | (FLAG_DOUBLE_SIDED if double_sided else 0)
    return PrimitiveHeader(olen=layout.olen, ilen=layout.ilen, flag=flag, mode=mode)

"""Signed fixed-point scalars used by TMD normals and TOD transforms.

Both widths keep 12 fractional bits: 16-bit values are 1.3.12 (sign, 3
integer bits, 12 fraction bits) and 32-bit values are 1.19.12. The raw
integer is stored so that re-encoding is exact.
"""
import struct
from dataclasses import dataclass

from lsdlib.errors import TruncatedInputError

FRACTION_BITS = 12
ONE = 1 << FRACTION_BITS  # 4096


@dataclass(frozen=True)
class FixedPoint16:
    raw: int

    @property
    def value(self) -> float:
        return self.raw / ONE

    @classmethod
    def from_float(cls, value: float) -> "FixedPoint16":
        raw = int(round(value * ONE))
        if not -0x8000 <= raw <= 0x7FFF:
            raise OverflowError(f"{value} does not fit in 1.3.12 fixed point")
        return cls(raw)

    def __float__(self):
        return self.value


@dataclass(frozen=True)
class FixedPoint32:
    raw: int

    @property
    def value(self) -> float:
        return self.raw / ONE

    @classmethod
    def from_float(cls, value: float) -> "FixedPoint32":
        raw = int(round(value * ONE))
        if not -0x80000000 <= raw <= 0x7FFFFFFF:
            raise OverflowError(f"{value} does not fit in 1.19.12 fixed point")
        return cls(raw)

    def __float__(self):
        return self.value


def decode16(data: bytes) -> FixedPoint16:
    if len(data) != 2:
        raise TruncatedInputError(2, len(data))
    return FixedPoint16(struct.unpack("<h", data)[0])


def decode32(data: bytes) -> FixedPoint32:
    if len(data) != 4:
        raise TruncatedInputError(4, len(data))
    return FixedPoint32(struct.unpack("<i", data)[0])


def encode16(value: FixedPoint16) -> bytes:
    return struct.pack("<h", value.raw)


def encode32(value: FixedPoint32) -> bytes:
    return struct.pack("<i", value.raw)


def read_fixed16(reader) -> FixedPoint16:
    return decode16(reader.read_bytes(2))


def read_fixed32(reader) -> FixedPoint32:
    return decode32(reader.read_bytes(4))


def read_fixed32_vec3(reader):
    return tuple(read_fixed32(reader) for _ in range(3))


def write_fixed16(writer, value: FixedPoint16):
    writer.write_bytes(encode16(value))


def write_fixed32(writer, value: FixedPoint32):
    writer.write_bytes(encode32(value))

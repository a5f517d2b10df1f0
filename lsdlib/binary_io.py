import io
import os
import struct
from typing import Tuple

import numpy as np

from lsdlib.errors import TruncatedInputError


class BinaryReader:
    """Little-endian cursor over a seekable binary stream.

    The reader owns the stream position; every decoder takes the reader as
    an explicit argument and advances it. Nothing rolls the position back
    when a decode fails.
    """

    def __init__(self, stream, endian="<"):
        self.stream = stream
        self.endian = endian

    @classmethod
    def from_bytes(cls, data, endian="<"):
        return cls(io.BytesIO(bytes(data)), endian=endian)

    def read_bytes(self, num_bytes):
        offset = self.tell()
        data = self.stream.read(num_bytes)
        if len(data) < num_bytes:
            raise TruncatedInputError(num_bytes, len(data), offset)
        return data

    def skip(self, num_bytes):
        """Consume and discard padding bytes"""
        self.read_bytes(num_bytes)

    def read_struct(self, fmt, num_bytes):
        return struct.unpack(self.endian + fmt, self.read_bytes(num_bytes))

    def read_u8(self):
        return self.read_struct("B", 1)[0]

    def read_i8(self):
        return self.read_struct("b", 1)[0]

    def read_i16(self):
        return self.read_struct("h", 2)[0]

    def read_u16(self):
        return self.read_struct("H", 2)[0]

    def read_u32(self):
        return self.read_struct("I", 4)[0]

    def read_i32(self):
        return self.read_struct("i", 4)[0]

    def read_vec3_i32(self) -> Tuple[int, ...]:
        return self.read_struct("iii", 12)

    def read_array(self, dtype, count, columns=1) -> np.ndarray:
        """Read ``count`` rows of ``columns`` values into a new numpy array"""
        dtype = np.dtype(dtype).newbyteorder(self.endian)
        data = self.read_bytes(dtype.itemsize * count * columns)
        array = np.frombuffer(data, dtype=dtype).astype(dtype.newbyteorder("="))
        if columns > 1:
            array = array.reshape(count, columns)
        return array

    def tell(self):
        return self.stream.tell()

    def seek(self, offset, whence=0):
        return self.stream.seek(offset, whence)

    def seek_from(self, base, offset):
        """Seek to ``offset`` bytes past the absolute position ``base``"""
        return self.stream.seek(base + offset, os.SEEK_SET)

    def size(self):
        current_pos = self.tell()
        self.stream.seek(0, os.SEEK_END)
        end_pos = self.stream.tell()
        self.stream.seek(current_pos, os.SEEK_SET)
        return end_pos

    def is_eof(self):
        return self.tell() >= self.size()


class BinaryWriter:
    """Counterpart of BinaryReader used by the packet encoders."""

    def __init__(self, stream=None, endian="<"):
        self.stream = stream if stream is not None else io.BytesIO()
        self.endian = endian

    def write_bytes(self, data):
        self.stream.write(data)

    def pad(self, num_bytes):
        self.stream.write(b"\x00" * num_bytes)

    def write_struct(self, fmt, *values):
        self.stream.write(struct.pack(self.endian + fmt, *values))

    def write_u8(self, value):
        self.write_struct("B", value)

    def write_u16(self, value):
        self.write_struct("H", value)

    def write_i16(self, value):
        self.write_struct("h", value)

    def write_u32(self, value):
        self.write_struct("I", value)

    def write_i32(self, value):
        self.write_struct("i", value)

    def tell(self):
        return self.stream.tell()

    def getvalue(self) -> bytes:
        return self.stream.getvalue()

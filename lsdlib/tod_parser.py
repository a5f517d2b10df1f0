"""TOD animation data.

A TOD file is a header followed by frames; each frame holds packets that
update one object's state. The packet's type (low nibble) picks the payload
kind and its flag nibble says which optional sub-fields follow.
"""
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from lsdlib.debug_console import DebugConsole
from lsdlib.errors import BadFormatError, UnsupportedVariantError
from lsdlib.fixed_point import (
    FixedPoint16,
    FixedPoint32,
    read_fixed16,
    read_fixed32,
    read_fixed32_vec3,
)
from lsdlib.tmd_packets import Color


# ==============================================================================
# 1. Type codes and flag tables
# ==============================================================================
class PacketType(IntEnum):
    ATTRIBUTE = 0
    COORDINATE = 1
    TMD_DATA_ID = 2
    PARENT_OBJECT_ID = 3
    MATRIX = 4
    TMD_DATA = 5
    LIGHT_SOURCE = 6
    CAMERA = 7
    OBJECT_CONTROL = 8


class DataType(IntEnum):
    ABSOLUTE = 0
    DIFFERENTIAL = 1


class CoordinateFlag(IntFlag):
    DIFFERENTIAL = 1 << 0
    ROTATION = 1 << 1
    SCALE = 1 << 2
    TRANSLATION = 1 << 3


class LightSourceFlag(IntFlag):
    DIFFERENTIAL = 1 << 0
    DIRECTION = 1 << 1
    COLOR = 1 << 2


class CameraFlag(IntFlag):
    TRANSLATION_ROTATION = 1 << 0  # clear: position and angle
    DIFFERENTIAL = 1 << 1
    POSITION_REFERENCE = 1 << 2
    Z_ANGLE = 1 << 3
    # translation/rotation cameras reuse bits 2 and 3
    ROTATION = 1 << 2
    TRANSLATION = 1 << 3


class CameraType(IntEnum):
    POSITION_AND_ANGLE = 0
    TRANSLATION_AND_ROTATION = 1


class ObjectControl(IntEnum):
    CREATE = 0
    KILL = 1


class AttributeMask(IntFlag):
    MATERIAL_DAMPING = 0b11
    LIGHTING_MODE_FOG = 1 << 2
    LIGHTING_MODE_MATERIAL = 1 << 3
    LIGHTING_MODE = 1 << 4
    LIGHT_SOURCE = 1 << 5
    NEAR_Z_OVERFLOW = 1 << 6
    BACK_CLIPPING = 1 << 7
    SEMI_TRANSPARENCY_TYPE = 0x30000000
    SEMI_TRANSPARENCY_TOGGLE = 1 << 29
    DISPLAY = 1 << 30


# ==============================================================================
# 2. Payloads
# ==============================================================================
@dataclass(frozen=True)
class AttributePayload:
    flag: int
    mask: int
    new_values: int

    @property
    def difference_mask(self) -> AttributeMask:
        return AttributeMask(self.mask)


@dataclass(frozen=True)
class CoordinatePayload:
    flag: int
    rotation: Optional[Tuple[FixedPoint32, FixedPoint32, FixedPoint32]] = None
    scale: Optional[Tuple[FixedPoint16, FixedPoint16, FixedPoint16]] = None
    translation: Optional[Tuple[int, int, int]] = None

    @property
    def data_type(self) -> DataType:
        return DataType(int(self.flag & CoordinateFlag.DIFFERENTIAL))

    @property
    def has_rotation(self) -> bool:
        return bool(self.flag & CoordinateFlag.ROTATION)

    @property
    def has_scale(self) -> bool:
        return bool(self.flag & CoordinateFlag.SCALE)

    @property
    def has_translation(self) -> bool:
        return bool(self.flag & CoordinateFlag.TRANSLATION)


@dataclass(frozen=True)
class ObjectIdPayload:
    """TMD data id (type 2) or parent object id (type 3)."""

    kind: PacketType
    flag: int
    object_id: int


@dataclass(frozen=True)
class MatrixPayload:
    flag: int
    rotation: Tuple[Tuple[FixedPoint16, ...], ...]  # 3 rows of 3
    translation: Tuple[FixedPoint32, FixedPoint32, FixedPoint32]

    def rotation_array(self) -> np.ndarray:
        return np.array([[v.value for v in row] for row in self.rotation])


@dataclass(frozen=True)
class LightSourcePayload:
    flag: int
    direction: Tuple[FixedPoint32, FixedPoint32, FixedPoint32]
    color: Optional[Color] = None

    @property
    def data_type(self) -> DataType:
        return DataType(int(self.flag & LightSourceFlag.DIFFERENTIAL))

    @property
    def has_color(self) -> bool:
        return bool(self.flag & LightSourceFlag.COLOR)


@dataclass(frozen=True)
class CameraPositionPayload:
    """Camera given as eye position, reference point and z angle."""

    flag: int
    position: Optional[Tuple[FixedPoint32, FixedPoint32, FixedPoint32]] = None
    reference: Optional[Tuple[FixedPoint32, FixedPoint32, FixedPoint32]] = None
    z_angle: Optional[FixedPoint32] = None

    camera_type = CameraType.POSITION_AND_ANGLE

    @property
    def data_type(self) -> DataType:
        return DataType((self.flag >> 1) & 0x1)


@dataclass(frozen=True)
class CameraTransformPayload:
    """Camera given as a rotation and translation."""

    flag: int
    rotation: Optional[Tuple[FixedPoint32, FixedPoint32, FixedPoint32]] = None
    translation: Optional[Tuple[FixedPoint32, FixedPoint32, FixedPoint32]] = None

    camera_type = CameraType.TRANSLATION_AND_ROTATION

    @property
    def data_type(self) -> DataType:
        return DataType((self.flag >> 1) & 0x1)


@dataclass(frozen=True)
class ObjectControlPayload:
    flag: int

    @property
    def control(self) -> ObjectControl:
        return ObjectControl(self.flag & 0x1)


PacketPayload = Union[
    AttributePayload,
    CoordinatePayload,
    ObjectIdPayload,
    MatrixPayload,
    LightSourcePayload,
    CameraPositionPayload,
    CameraTransformPayload,
    ObjectControlPayload,
]


# ==============================================================================
# 3. Packets, frames, header
# ==============================================================================
@dataclass(frozen=True)
class TodPacket:
    object_id: int
    packet_type: PacketType
    flag: int
    length: int  # in 32-bit words, header included; advisory
    payload: PacketPayload
    payload_size: int  # bytes actually consumed by the payload


@dataclass(frozen=True)
class TodFrame:
    frame_size: int
    num_packets: int
    frame_number: int
    packets: List[TodPacket] = field(default_factory=list)


@dataclass(frozen=True)
class TodHeader:
    id: int
    version: int
    # Time one frame is displayed, in ticks of 1/60 second
    resolution: int
    num_frames: int


@dataclass(frozen=True)
class Tod:
    header: TodHeader
    frames: List[TodFrame]


# ==============================================================================
# 4. Parser
# ==============================================================================
class TODParser:
    MAGIC = 0x50
    PACKET_HEADER_SIZE = 4

    def __init__(self, reader, legacy_frame_count=False):
        """
        Args:
            reader: BinaryReader positioned at the TOD header
            legacy_frame_count: read one frame fewer than the header declares,
                as older tools did
        """
        self.reader = reader
        self.legacy_frame_count = legacy_frame_count
        self.header = None
        self._payload_readers = {
            PacketType.ATTRIBUTE: self._read_attribute,
            PacketType.COORDINATE: self._read_coordinate,
            PacketType.TMD_DATA_ID: self._read_object_id,
            PacketType.PARENT_OBJECT_ID: self._read_object_id,
            PacketType.MATRIX: self._read_matrix,
            PacketType.LIGHT_SOURCE: self._read_light_source,
            PacketType.CAMERA: self._read_camera,
            PacketType.OBJECT_CONTROL: self._read_object_control,
        }

    def parse(self) -> Tod:
        self.header = self.read_header()
        frame_count = self.header.num_frames
        if self.legacy_frame_count:
            frame_count = max(frame_count - 1, 0)
        DebugConsole.log(
            f"TOD: {self.header.num_frames} frames declared, reading {frame_count}"
        )
        frames = [self.read_frame() for _ in range(frame_count)]
        return Tod(header=self.header, frames=frames)

    def read_header(self) -> TodHeader:
        start = self.reader.tell()
        magic = self.reader.read_u8()
        if magic != self.MAGIC:
            raise BadFormatError(
                f"TOD did not have correct magic number: {magic:#x}", offset=start
            )
        return TodHeader(
            id=magic,
            version=self.reader.read_u8(),
            resolution=self.reader.read_u16(),
            num_frames=self.reader.read_u32(),
        )

    def read_frame(self) -> TodFrame:
        frame_size = self.reader.read_u16()
        num_packets = self.reader.read_u16()
        frame_number = self.reader.read_u32()
        packets = [self.read_packet() for _ in range(num_packets)]
        return TodFrame(
            frame_size=frame_size,
            num_packets=num_packets,
            frame_number=frame_number,
            packets=packets,
        )

    def read_packet(self) -> TodPacket:
        start = self.reader.tell()
        object_id = self.reader.read_u16()
        type_and_flag = self.reader.read_u8()
        length = self.reader.read_u8()
        type_code = type_and_flag & 0xF
        flag = (type_and_flag >> 4) & 0xF

        if type_code == PacketType.TMD_DATA:
            raise UnsupportedVariantError(
                "PacketType TMD_DATA is not currently supported",
                variant=type_code,
                offset=start,
            )
        handler = self._payload_readers.get(type_code)
        if handler is None:
            raise UnsupportedVariantError(
                f"Packet type {type_code:#x} is not supported",
                variant=type_code,
                offset=start,
            )

        payload_start = self.reader.tell()
        payload = handler(PacketType(type_code), flag)
        payload_size = self.reader.tell() - payload_start

        if length * 4 != self.PACKET_HEADER_SIZE + payload_size:
            DebugConsole.log(
                f"TOD packet at {start:#x}: declared {length} words, "
                f"consumed {self.PACKET_HEADER_SIZE + payload_size} bytes"
            )
        return TodPacket(
            object_id=object_id,
            packet_type=PacketType(type_code),
            flag=flag,
            length=length,
            payload=payload,
            payload_size=payload_size,
        )

    def _read_attribute(self, kind, flag) -> AttributePayload:
        return AttributePayload(
            flag=flag,
            mask=self.reader.read_u32(),
            new_values=self.reader.read_u32(),
        )

    def _read_coordinate(self, kind, flag) -> CoordinatePayload:
        rotation = scale = translation = None
        if flag & CoordinateFlag.ROTATION:
            rotation = read_fixed32_vec3(self.reader)
        if flag & CoordinateFlag.SCALE:
            scale = tuple(read_fixed16(self.reader) for _ in range(3))
            self.reader.skip(2)  # padding
        if flag & CoordinateFlag.TRANSLATION:
            translation = self.reader.read_vec3_i32()
        return CoordinatePayload(
            flag=flag, rotation=rotation, scale=scale, translation=translation
        )

    def _read_object_id(self, kind, flag) -> ObjectIdPayload:
        object_id = self.reader.read_u16()
        self.reader.skip(2)  # padding
        return ObjectIdPayload(kind=kind, flag=flag, object_id=object_id)

    def _read_matrix(self, kind, flag) -> MatrixPayload:
        rotation = tuple(
            tuple(read_fixed16(self.reader) for _ in range(3)) for _ in range(3)
        )
        # MATRIX aligns its translation vector to 4 bytes
        self.reader.skip(2)
        translation = read_fixed32_vec3(self.reader)
        return MatrixPayload(flag=flag, rotation=rotation, translation=translation)

    def _read_light_source(self, kind, flag) -> LightSourcePayload:
        direction = read_fixed32_vec3(self.reader)
        color = None
        if flag & LightSourceFlag.COLOR:
            r, g, b = self.reader.read_struct("3Bx", 4)
            color = Color(r, g, b)
        return LightSourcePayload(flag=flag, direction=direction, color=color)

    def _read_camera(self, kind, flag):
        if flag & CameraFlag.TRANSLATION_ROTATION:
            rotation = translation = None
            if flag & CameraFlag.ROTATION:
                rotation = read_fixed32_vec3(self.reader)
            if flag & CameraFlag.TRANSLATION:
                translation = read_fixed32_vec3(self.reader)
            return CameraTransformPayload(
                flag=flag, rotation=rotation, translation=translation
            )

        position = reference = z_angle = None
        if flag & CameraFlag.POSITION_REFERENCE:
            position = read_fixed32_vec3(self.reader)
            reference = read_fixed32_vec3(self.reader)
        if flag & CameraFlag.Z_ANGLE:
            z_angle = read_fixed32(self.reader)
        return CameraPositionPayload(
            flag=flag, position=position, reference=reference, z_angle=z_angle
        )

    def _read_object_control(self, kind, flag) -> ObjectControlPayload:
        return ObjectControlPayload(flag=flag)


def decode_header(reader) -> TodHeader:
    return TODParser(reader).read_header()


def decode_frame(reader) -> TodFrame:
    return TODParser(reader).read_frame()


def decode_packet(reader) -> TodPacket:
    return TODParser(reader).read_packet()


def read_tod(reader, legacy_frame_count=False) -> Tod:
    return TODParser(reader, legacy_frame_count=legacy_frame_count).parse()


# flag bits each payload kind consults, for tooling and tests
PAYLOAD_FLAGS: Dict[PacketType, type] = {
    PacketType.COORDINATE: CoordinateFlag,
    PacketType.LIGHT_SOURCE: LightSourceFlag,
    PacketType.CAMERA: CameraFlag,
}

"""Tests for TOD animation parsing."""
import logging
import struct

import numpy as np
import pytest

from lsdlib.binary_io import BinaryReader
from lsdlib.errors import BadFormatError, TruncatedInputError, UnsupportedVariantError
from lsdlib.tmd_packets import Color
from lsdlib.tod_parser import (
    PAYLOAD_FLAGS,
    AttributeMask,
    AttributePayload,
    CameraPositionPayload,
    CameraTransformPayload,
    CameraType,
    CoordinateFlag,
    CoordinatePayload,
    DataType,
    LightSourcePayload,
    MatrixPayload,
    ObjectControl,
    ObjectControlPayload,
    ObjectIdPayload,
    PacketType,
    TODParser,
    decode_frame,
    decode_header,
    decode_packet,
    read_tod,
)

ONE = 4096


def build_packet(object_id, packet_type, flag, payload=b"", length=None):
    """Packet header (id, type|flag<<4, length in words) plus payload."""
    if length is None:
        length = (4 + len(payload)) // 4
    return struct.pack("<HBB", object_id, (flag << 4) | packet_type, length) + payload


def build_frame(frame_number, packets):
    body = b"".join(packets)
    size = (8 + len(body)) // 4
    return struct.pack("<HHI", size, len(packets), frame_number) + body


def build_tod(frames, num_frames=None, resolution=1):
    if num_frames is None:
        num_frames = len(frames)
    return struct.pack("<BBHI", 0x50, 0x1, resolution, num_frames) + b"".join(frames)


def fixed32(*values):
    return struct.pack(f"<{len(values)}i", *(int(v * ONE) for v in values))


def fixed16(*values):
    return struct.pack(f"<{len(values)}h", *(int(v * ONE) for v in values))


def read_one(data):
    reader = BinaryReader.from_bytes(data)
    packet = decode_packet(reader)
    assert reader.tell() == len(data)
    return packet


# ==============================================================================
# Header and frames
# ==============================================================================
def test_header():
    header = decode_header(BinaryReader.from_bytes(build_tod([], num_frames=30, resolution=2)))
    assert header.id == 0x50
    assert header.version == 1
    assert header.resolution == 2
    assert header.num_frames == 30


def test_header_bad_magic():
    data = struct.pack("<BBHI", 0x51, 1, 1, 0)
    with pytest.raises(BadFormatError) as excinfo:
        decode_header(BinaryReader.from_bytes(data))
    assert excinfo.value.offset == 0


def test_frame_reads_declared_packet_count():
    frame_data = build_frame(7, [
        build_packet(1, PacketType.OBJECT_CONTROL, 0x0),
        build_packet(2, PacketType.TMD_DATA_ID, 0x0, struct.pack("<Hxx", 9)),
    ])
    reader = BinaryReader.from_bytes(frame_data + b"\xff" * 8)
    frame = decode_frame(reader)
    assert frame.frame_number == 7
    assert frame.num_packets == 2
    assert [p.object_id for p in frame.packets] == [1, 2]
    assert frame.frame_size == 5
    assert reader.tell() == len(frame_data)


def test_single_frame_is_read():
    """A header declaring one frame yields that frame."""
    data = build_tod([build_frame(0, [build_packet(1, PacketType.OBJECT_CONTROL, 0x1)])])
    tod = read_tod(BinaryReader.from_bytes(data))
    assert tod.header.num_frames == 1
    assert len(tod.frames) == 1
    assert tod.frames[0].packets[0].payload.control is ObjectControl.KILL


def test_single_frame_legacy_count_reads_none():
    """The legacy policy reads one frame fewer than declared."""
    data = build_tod([build_frame(0, [build_packet(1, PacketType.OBJECT_CONTROL, 0x1)])])
    tod = read_tod(BinaryReader.from_bytes(data), legacy_frame_count=True)
    assert tod.frames == []


def test_legacy_count_with_several_frames():
    frames = [build_frame(i, [build_packet(1, PacketType.OBJECT_CONTROL, 0)]) for i in range(3)]
    tod = TODParser(BinaryReader.from_bytes(build_tod(frames)), legacy_frame_count=True).parse()
    assert [f.frame_number for f in tod.frames] == [0, 1]


def test_zero_frames():
    assert read_tod(BinaryReader.from_bytes(build_tod([]))).frames == []
    assert read_tod(BinaryReader.from_bytes(build_tod([])), legacy_frame_count=True).frames == []


def test_truncated_frame():
    data = build_tod([build_frame(0, [build_packet(1, PacketType.ATTRIBUTE, 0, b"\x00" * 8)])])
    with pytest.raises(TruncatedInputError):
        read_tod(BinaryReader.from_bytes(data[:-3]))


# ==============================================================================
# Packet header
# ==============================================================================
def test_type_and_flag_nibbles():
    packet = read_one(build_packet(0x1234, PacketType.OBJECT_CONTROL, 0xF))
    assert packet.object_id == 0x1234
    assert packet.packet_type is PacketType.OBJECT_CONTROL
    assert packet.flag == 0xF
    assert packet.length == 1


def test_tmd_data_packet_is_unsupported():
    with pytest.raises(UnsupportedVariantError) as excinfo:
        decode_packet(BinaryReader.from_bytes(build_packet(1, PacketType.TMD_DATA, 0, b"\x00" * 16)))
    assert excinfo.value.variant == 5


@pytest.mark.parametrize("type_code", [9, 0xA, 0xF])
def test_unknown_packet_type_is_unsupported(type_code):
    with pytest.raises(UnsupportedVariantError):
        decode_packet(BinaryReader.from_bytes(build_packet(1, type_code, 0, b"\x00" * 16)))


def test_unsupported_packet_aborts_frame():
    data = build_tod([build_frame(0, [
        build_packet(1, PacketType.OBJECT_CONTROL, 0),
        build_packet(2, PacketType.TMD_DATA, 0, b"\x00" * 8),
    ])])
    with pytest.raises(UnsupportedVariantError):
        read_tod(BinaryReader.from_bytes(data))


def test_length_mismatch_is_logged_not_raised(caplog):
    data = build_packet(1, PacketType.ATTRIBUTE, 0, b"\x00" * 8, length=7)
    with caplog.at_level(logging.DEBUG, logger="lsdlib"):
        packet = read_one(data)
    assert packet.length == 7
    assert packet.payload_size == 8
    assert "declared 7 words" in caplog.text


# ==============================================================================
# Payloads
# ==============================================================================
def test_attribute_payload():
    mask = AttributeMask.DISPLAY | AttributeMask.BACK_CLIPPING
    payload = read_one(build_packet(1, PacketType.ATTRIBUTE, 0, struct.pack("<II", mask, 1 << 30))).payload
    assert isinstance(payload, AttributePayload)
    assert payload.mask == int(mask)
    assert payload.difference_mask & AttributeMask.DISPLAY
    assert payload.new_values == 1 << 30


def test_coordinate_rotation_and_translation():
    """Rotation + translation without scale consumes 12 + 0 + 12 bytes."""
    flag = CoordinateFlag.ROTATION | CoordinateFlag.TRANSLATION
    body = fixed32(0.5, -1.0, 2.0) + struct.pack("<3i", 100, -200, 300)
    packet = read_one(build_packet(3, PacketType.COORDINATE, flag, body))

    payload = packet.payload
    assert isinstance(payload, CoordinatePayload)
    assert packet.payload_size == 24
    assert payload.has_rotation
    assert not payload.has_scale
    assert payload.has_translation
    assert payload.scale is None
    assert [r.value for r in payload.rotation] == [0.5, -1.0, 2.0]
    assert payload.translation == (100, -200, 300)
    assert payload.data_type is DataType.ABSOLUTE


def test_coordinate_scale_skips_padding():
    flag = CoordinateFlag.DIFFERENTIAL | CoordinateFlag.SCALE
    body = fixed16(1.0, 2.0, 0.25) + b"\xee\xee"
    packet = read_one(build_packet(3, PacketType.COORDINATE, flag, body))
    assert packet.payload_size == 8
    assert [s.value for s in packet.payload.scale] == [1.0, 2.0, 0.25]
    assert packet.payload.rotation is None
    assert packet.payload.data_type is DataType.DIFFERENTIAL


def test_coordinate_all_fields():
    flag = CoordinateFlag.ROTATION | CoordinateFlag.SCALE | CoordinateFlag.TRANSLATION
    body = fixed32(0, 0, 0) + fixed16(1, 1, 1) + b"\x00\x00" + struct.pack("<3i", 1, 2, 3)
    packet = read_one(build_packet(3, PacketType.COORDINATE, flag, body))
    assert packet.payload_size == 32


@pytest.mark.parametrize("packet_type", [PacketType.TMD_DATA_ID, PacketType.PARENT_OBJECT_ID])
def test_object_id_payloads(packet_type):
    packet = read_one(build_packet(4, packet_type, 0, struct.pack("<Hxx", 0x0102)))
    assert isinstance(packet.payload, ObjectIdPayload)
    assert packet.payload.kind is packet_type
    assert packet.payload.object_id == 0x0102


def test_matrix_payload():
    rotation = fixed16(1, 0, 0, 0, 1, 0, 0, 0, 1) + b"\x00\x00"
    body = rotation + fixed32(10, -20, 0.5)
    packet = read_one(build_packet(5, PacketType.MATRIX, 0, body))

    payload = packet.payload
    assert isinstance(payload, MatrixPayload)
    assert packet.payload_size == 32
    np.testing.assert_array_equal(payload.rotation_array(), np.eye(3))
    assert [t.value for t in payload.translation] == [10.0, -20.0, 0.5]


def test_light_source_with_color():
    body = fixed32(0, -1, 0) + bytes([255, 128, 64, 0])
    packet = read_one(build_packet(6, PacketType.LIGHT_SOURCE, 0b0110, body))
    payload = packet.payload
    assert isinstance(payload, LightSourcePayload)
    assert payload.has_color
    assert payload.color == Color(255, 128, 64)
    assert [d.value for d in payload.direction] == [0.0, -1.0, 0.0]


def test_light_source_without_color():
    packet = read_one(build_packet(6, PacketType.LIGHT_SOURCE, 0b0011, fixed32(1, 0, 0)))
    assert packet.payload.color is None
    assert packet.payload.data_type is DataType.DIFFERENTIAL
    assert packet.payload_size == 12


def test_camera_position_and_angle():
    body = fixed32(1, 2, 3) + fixed32(4, 5, 6) + fixed32(0.5)
    packet = read_one(build_packet(7, PacketType.CAMERA, 0b1100, body))
    payload = packet.payload
    assert isinstance(payload, CameraPositionPayload)
    assert payload.camera_type is CameraType.POSITION_AND_ANGLE
    assert [v.value for v in payload.position] == [1, 2, 3]
    assert [v.value for v in payload.reference] == [4, 5, 6]
    assert payload.z_angle.value == 0.5


def test_camera_position_z_angle_only():
    packet = read_one(build_packet(7, PacketType.CAMERA, 0b1010, fixed32(0.25)))
    assert packet.payload.position is None
    assert packet.payload.data_type is DataType.DIFFERENTIAL
    assert packet.payload.z_angle.value == 0.25


def test_camera_translation_and_rotation():
    body = fixed32(0.5, 0, 0) + fixed32(7, 8, 9)
    packet = read_one(build_packet(7, PacketType.CAMERA, 0b1101, body))
    payload = packet.payload
    assert isinstance(payload, CameraTransformPayload)
    assert payload.camera_type is CameraType.TRANSLATION_AND_ROTATION
    assert [v.value for v in payload.rotation] == [0.5, 0, 0]
    assert [v.value for v in payload.translation] == [7, 8, 9]


def test_object_control_has_no_payload_bytes():
    packet = read_one(build_packet(8, PacketType.OBJECT_CONTROL, 0x0))
    assert isinstance(packet.payload, ObjectControlPayload)
    assert packet.payload.control is ObjectControl.CREATE
    assert packet.payload_size == 0


def test_flag_tables_are_exposed():
    assert PAYLOAD_FLAGS[PacketType.COORDINATE] is CoordinateFlag
    assert set(PAYLOAD_FLAGS) == {
        PacketType.COORDINATE, PacketType.LIGHT_SOURCE, PacketType.CAMERA,
    }

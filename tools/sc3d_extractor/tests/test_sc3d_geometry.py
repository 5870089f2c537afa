"""Tests for SC3D geometry decoding."""
import os
import struct
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sc3d_builders import (
    IDENTITY,
    KIND_COLOR,
    KIND_NORMAL,
    KIND_POSITION,
    KIND_TEXCOORD,
    geometry_payload,
    mesh_entry,
    pack_string,
    property_entry,
)
from sc3d_errors import DecodeError
from sc3d_geometry import ValueKind, decode_geometry, read_triangles
from sc3d_reader import ByteReader

TOLERANCE = 1.0 / 0x7F00


def decode(payload):
    return decode_geometry(ByteReader(payload))


def test_name_and_group():
    geometry = decode(geometry_payload(name="barrel", group="props"))

    assert geometry.name == "barrel"
    assert geometry.group == "props"
    assert geometry.meshes == []
    assert geometry.bind_matrix is None


def test_position_quantization():
    """Quantized positions decode back within one quantization step."""
    payload = geometry_payload(
        properties=[property_entry("POSITION", KIND_POSITION, [(1.0, -1.0, 0.5)])],
    )
    geometry = decode(payload)

    (x, y, z), = geometry.positions
    assert abs(x - 1.0) <= TOLERANCE
    assert abs(y + 1.0) <= TOLERANCE
    assert abs(z - 0.5) <= TOLERANCE


def test_scale_is_applied():
    payload = geometry_payload(
        properties=[property_entry("POSITION", KIND_POSITION, [(10.0, 5.0, -2.5)], scale=20.0)],
    )
    x, y, z = decode(payload).positions[0]

    assert abs(x - 10.0) <= 20.0 * TOLERANCE
    assert abs(y - 5.0) <= 20.0 * TOLERANCE
    assert abs(z + 2.5) <= 20.0 * TOLERANCE


def test_exact_decode_formula():
    raw = [(0x7F00, -0x3F80, 1)]
    payload = geometry_payload(
        properties=[property_entry("NORMAL", KIND_NORMAL, raw, scale=2.0, raw=True)],
    )
    prop = decode(payload).get_property("NORMAL")

    assert prop.kind == ValueKind.NORMAL
    assert prop.width == 6
    assert prop.count == 1
    assert prop.data == struct.pack(">3h", *raw[0])
    assert prop.values == [(2.0, -1.0, 2.0 / 0x7F00)]


def test_padded_elements():
    """Elements wider than their components are skipped over by width."""
    payload = geometry_payload(
        properties=[property_entry(
            "POSITION", KIND_POSITION, [(0x7F00, 0, 0), (0, 0x7F00, 0)], width=8, raw=True,
        )],
    )
    geometry = decode(payload)

    assert geometry.positions == [(1.0, 0.0, 0.0), (0.0, 1.0, 0.0)]


def test_texcoords_by_slot():
    payload = geometry_payload(
        properties=[
            property_entry("TEXCOORD", KIND_TEXCOORD, [(0x7F00, 0)], raw=True),
            property_entry("TEXCOORD", KIND_TEXCOORD, [(0, 0x7F00)], slot=1, raw=True),
        ],
    )
    geometry = decode(payload)

    assert len(geometry.properties["TEXCOORD"]) == 2
    assert geometry.texcoords(0) == [(1.0, 0.0)]
    assert geometry.texcoords(1) == [(0.0, 1.0)]
    assert geometry.texcoords(2) == []


def test_slot_gap_is_none():
    payload = geometry_payload(
        properties=[property_entry("TEXCOORD", KIND_TEXCOORD, [(0, 0)], slot=2, raw=True)],
    )
    geometry = decode(payload)

    assert geometry.properties["TEXCOORD"][:2] == [None, None]
    assert len(list(geometry.iter_properties())) == 1


def test_find_property_by_kind_when_name_differs():
    payload = geometry_payload(
        properties=[property_entry("VERTEX", KIND_POSITION, [(0x7F00, 0x7F00, 0x7F00)], raw=True)],
    )
    geometry = decode(payload)

    assert geometry.get_property("POSITION") is None
    assert geometry.positions == [(1.0, 1.0, 1.0)]


def test_color_without_alpha_is_opaque():
    payload = geometry_payload(
        properties=[property_entry("COLOR", KIND_COLOR, [(0x7F00, 0x3F80, 0)], raw=True)],
    )
    assert decode(payload).colors == [(1.0, 0.5, 0.0, 1.0)]


def test_color_with_alpha():
    """Colors are unsigned; alpha is read only from 8-byte elements."""
    payload = geometry_payload(
        properties=[property_entry("COLOR", KIND_COLOR, [(0xFE00, 0, 0x7F00, 0x3F80)], raw=True)],
    )
    assert decode(payload).colors == [(2.0, 0.0, 1.0, 0.5)]


def test_unknown_value_kind():
    with pytest.raises(DecodeError, match="Unknown value kind 9"):
        decode(geometry_payload(properties=[property_entry("X", 9, [(0, 0, 0)], raw=True)]))


def test_element_too_narrow():
    with pytest.raises(DecodeError, match="narrower"):
        decode(geometry_payload(
            properties=[property_entry("POSITION", KIND_POSITION, [(0, 0)], raw=True)],
        ))


def test_bind_matrix_and_joints():
    matrix = [float(i) for i in range(16)]
    payload = geometry_payload(
        bind_matrix=matrix,
        joints=[("root", IDENTITY), ("spine", matrix)],
    )
    geometry = decode(payload)

    assert geometry.bind_matrix == matrix
    assert [j.name for j in geometry.joints] == ["root", "spine"]
    assert geometry.joints[0].matrix == IDENTITY
    assert geometry.joints[1].matrix == matrix


def test_vertex_weights_normalized():
    payload = geometry_payload(
        joints=[("a", IDENTITY), ("b", IDENTITY)],
        weights=[((0, 1, 0, 0), (0xFFFF, 0, 0, 0)), ((1, 0, 0, 0), (0x8000, 0x7FFF, 0, 0))],
    )
    weights = decode(payload).weights

    assert weights[0].joints == (0, 1, 0, 0)
    assert weights[0].weights == (1.0, 0.0, 0.0, 0.0)
    assert weights[1].joints == (1, 0, 0, 0)
    assert abs(sum(weights[1].weights) - 1.0) < 1e-9


def test_triangles_mode_0102():
    """Width 2, one component: three 2-byte vertex indices per triangle."""
    data = struct.pack(">6H", 0, 1, 2, 2, 1, 3)
    reader = ByteReader(data)

    triangles = read_triangles(reader, 2, 0x0102)

    assert reader.at_end()
    assert [t.vertices for t in triangles] == [(0, 1, 2), (2, 1, 3)]
    for triangle in triangles:
        for corner in triangle.corners:
            assert corner.normal is None
            assert corner.texcoord is None
            assert corner.color is None


def test_triangles_component_order():
    """Components after the vertex are normal, texcoord, color."""
    corners = [(1, 2, 3, 4), (5, 6, 7, 8), (9, 10, 11, 12)]
    data = b"".join(struct.pack(">4B", *c) for c in corners)

    triangle, = read_triangles(ByteReader(data), 1, 0x0401)

    assert triangle.vertices == (1, 5, 9)
    assert [c.normal for c in triangle.corners] == [2, 6, 10]
    assert [c.texcoord for c in triangle.corners] == [3, 7, 11]
    assert [c.color for c in triangle.corners] == [4, 8, 12]


def test_triangles_two_components():
    data = struct.pack(">6I", 0, 10, 1, 11, 100000, 12)

    triangle, = read_triangles(ByteReader(data), 1, 0x0204)

    assert triangle.vertices == (0, 1, 100000)
    assert [c.normal for c in triangle.corners] == [10, 11, 12]
    assert all(c.texcoord is None for c in triangle.corners)


def test_triangles_three_components():
    data = struct.pack(">9H", 0, 1, 2, 3, 4, 5, 6, 7, 8)

    triangle, = read_triangles(ByteReader(data), 1, 0x0302)

    assert triangle.vertices == (0, 3, 6)
    assert [c.normal for c in triangle.corners] == [1, 4, 7]
    assert [c.texcoord for c in triangle.corners] == [2, 5, 8]
    assert all(c.color is None for c in triangle.corners)


@pytest.mark.parametrize("mode", [0x0103, 0x0100, 0x0108])
def test_invalid_index_width(mode):
    with pytest.raises(DecodeError, match="index width"):
        read_triangles(ByteReader(b"\x00" * 64), 1, mode)


@pytest.mark.parametrize("mode", [0x0002, 0x0502])
def test_invalid_component_count(mode):
    with pytest.raises(DecodeError, match="component count"):
        read_triangles(ByteReader(b"\x00" * 64), 1, mode)


def test_invalid_width_leaves_no_partial_geometry():
    """A bad second mesh fails the whole geometry decode."""
    good = mesh_entry([(0, 1, 2)])
    bad = pack_string("m") + pack_string("") + struct.pack(">HH", 1, 0x0103) + b"\x00" * 9
    payload = geometry_payload(meshes=[good, bad])

    with pytest.raises(DecodeError):
        decode(payload)


def test_meshes():
    payload = geometry_payload(
        properties=[property_entry("POSITION", KIND_POSITION, [(0, 0, 0)] * 4)],
        meshes=[
            mesh_entry([(0, 1, 2)], material="wood", aux="opaque"),
            mesh_entry([((0, 0), (1, 1), (2, 2)), ((2, 2), (3, 3), (0, 0))],
                       material="metal", width=1, components=2),
        ],
    )
    geometry = decode(payload)

    assert [m.material for m in geometry.meshes] == ["wood", "metal"]
    assert geometry.meshes[0].aux == "opaque"
    assert geometry.meshes[1].index_width == 1
    assert geometry.meshes[1].component_count == 2
    assert [t.vertices for t in geometry.meshes[1].triangles] == [(0, 1, 2), (2, 3, 0)]


def test_truncated_triangle_stream():
    mesh = mesh_entry([(0, 1, 2)])[:-2]
    with pytest.raises(DecodeError):
        decode(geometry_payload(meshes=[mesh]))

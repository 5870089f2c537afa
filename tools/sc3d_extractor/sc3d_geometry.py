"""Geometry decoding for SC3D GEOM chunks.

GEOM payload layout (big-endian):
- name, group: uint16 length + UTF-8
- propCount: uint8, then per property:
  - name (uint16 length + UTF-8)
  - kind: uint8 (0 position, 1 normal, 2 texcoord, 3 color)
  - slot: uint8 (secondary set index, e.g. second UV set)
  - width: uint8, element size in bytes is width * 2
  - scale: float32
  - count: uint32, then count * width bytes of quantized elements
- hasBindMatrix: uint8, then 16 float32 if set
- jointCount: uint8, then per joint: name + 16 float32
- weightCount: uint32, then per vertex: 4 x uint8 joint + 4 x uint16 weight
- meshCount: uint8, then per mesh:
  - material, aux string
  - triCount: uint16
  - mode: uint16 (low byte index width 1/2/4, high byte components 1-4)
  - triCount * 3 corners of `components` indices each

Quantized components decode as raw * scale / 0x7F00. Positions, normals and
texture coordinates are signed 16-bit; colors are unsigned 16-bit with an
alpha channel only when the element is 8 bytes wide.
"""
import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterator, List, Optional, Tuple

from sc3d_errors import DecodeError
from sc3d_reader import ByteReader

logger = logging.getLogger(__name__)

QUANTIZE_DIVISOR = 0x7F00
WEIGHT_DIVISOR = 0xFFFF

# Index width in bytes -> struct format
INDEX_FORMATS = {1: "B", 2: "H", 4: "I"}


class ValueKind(IntEnum):
    POSITION = 0
    NORMAL = 1
    TEXCOORD = 2
    COLOR = 3


# Canonical property names, checked before falling back to the kind byte
CANONICAL_NAMES = {
    ValueKind.POSITION: "POSITION",
    ValueKind.NORMAL: "NORMAL",
    ValueKind.TEXCOORD: "TEXCOORD",
    ValueKind.COLOR: "COLOR",
}


@dataclass
class Property:
    """One vertex attribute stream of a geometry."""
    name: str
    kind: ValueKind
    slot: int
    width: int
    scale: float
    count: int
    data: bytes
    values: List[Tuple[float, ...]] = field(default_factory=list)


@dataclass
class Joint:
    name: str
    matrix: List[float]  # 16 floats, file order


@dataclass
class VertexWeight:
    joints: Tuple[int, int, int, int]
    weights: Tuple[float, float, float, float]


@dataclass
class Corner:
    """One triangle corner: vertex index plus optional secondary indices."""
    vertex: int
    normal: Optional[int] = None
    texcoord: Optional[int] = None
    color: Optional[int] = None


@dataclass
class Triangle:
    corners: Tuple[Corner, Corner, Corner]

    @property
    def vertices(self) -> Tuple[int, int, int]:
        return tuple(c.vertex for c in self.corners)


@dataclass
class Mesh:
    """Triangle list drawn with a single material."""
    material: str
    aux: str
    mode: int
    triangles: List[Triangle] = field(default_factory=list)

    @property
    def index_width(self) -> int:
        return self.mode & 0xFF

    @property
    def component_count(self) -> int:
        return self.mode >> 8


@dataclass
class Geometry:
    """Decoded GEOM chunk."""
    name: str
    group: str
    properties: Dict[str, List[Optional[Property]]] = field(default_factory=dict)
    bind_matrix: Optional[List[float]] = None
    joints: List[Joint] = field(default_factory=list)
    weights: List[VertexWeight] = field(default_factory=list)
    meshes: List[Mesh] = field(default_factory=list)

    def iter_properties(self) -> Iterator[Property]:
        """Yield every property in table order, skipping empty slots."""
        for slots in self.properties.values():
            for prop in slots:
                if prop is not None:
                    yield prop

    def get_property(self, name: str, slot: int = 0) -> Optional[Property]:
        slots = self.properties.get(name, [])
        if 0 <= slot < len(slots):
            return slots[slot]
        return None

    def find_property(self, kind: ValueKind, slot: int = 0) -> Optional[Property]:
        """Find a property by kind, preferring its canonical name."""
        prop = self.get_property(CANONICAL_NAMES[kind], slot)
        if prop is not None and prop.kind == kind:
            return prop
        return next(
            (p for p in self.iter_properties() if p.kind == kind and p.slot == slot),
            None,
        )

    def _values(self, kind: ValueKind, slot: int = 0) -> List[Tuple[float, ...]]:
        prop = self.find_property(kind, slot)
        return prop.values if prop is not None else []

    @property
    def positions(self) -> List[Tuple[float, ...]]:
        return self._values(ValueKind.POSITION)

    @property
    def normals(self) -> List[Tuple[float, ...]]:
        return self._values(ValueKind.NORMAL)

    @property
    def colors(self) -> List[Tuple[float, ...]]:
        return self._values(ValueKind.COLOR)

    def texcoords(self, slot: int = 0) -> List[Tuple[float, ...]]:
        return self._values(ValueKind.TEXCOORD, slot)


def decode_values(kind: ValueKind, width: int, scale: float, data: bytes) -> List[Tuple[float, ...]]:
    """Dequantize a property's raw element bytes.

    Args:
        kind: Value kind, selects component count and signedness
        width: Element size in bytes
        scale: Property scale factor
        data: count * width bytes of elements

    Returns:
        One tuple per element (xyz, xyz, uv or rgba)

    Raises:
        DecodeError: If the element is too narrow for its kind
    """
    if kind == ValueKind.COLOR:
        components = 4 if width == 8 else 3
        fmt = f">{components}H"
    elif kind == ValueKind.TEXCOORD:
        fmt = ">2h"
    else:
        fmt = ">3h"

    needed = struct.calcsize(fmt)
    if width < needed:
        if not data:
            return []
        raise DecodeError(f"{kind.name} element of {width} bytes is narrower than {needed}")

    values = []
    for offset in range(0, len(data) - width + 1, width):
        raw = struct.unpack_from(fmt, data, offset)
        value = tuple(c * scale / QUANTIZE_DIVISOR for c in raw)
        if kind == ValueKind.COLOR and len(value) == 3:
            value += (1.0,)
        values.append(value)
    return values


def read_property(reader: ByteReader) -> Property:
    name = reader.string()
    kind_byte = reader.u8()
    try:
        kind = ValueKind(kind_byte)
    except ValueError:
        raise DecodeError(f"Unknown value kind {kind_byte} for property {name!r}") from None
    slot = reader.u8()
    width = reader.u8() * 2
    scale = reader.f32()
    count = reader.u32()
    if count and not width:
        raise DecodeError(f"Property {name!r} has zero element width")
    data = reader.read(count * width)
    return Property(
        name=name,
        kind=kind,
        slot=slot,
        width=width,
        scale=scale,
        count=count,
        data=data,
        values=decode_values(kind, width, scale, data),
    )


def read_triangles(reader: ByteReader, count: int, mode: int) -> List[Triangle]:
    """Read count triangles using the index layout packed in mode.

    Each corner holds `components` indices of `width` bytes: the vertex
    index first, then normal, texcoord and color in that order as far as
    the component count reaches.

    Raises:
        DecodeError: On an index width other than 1, 2 or 4, or a
            component count outside 1-4
    """
    width = mode & 0xFF
    components = mode >> 8
    index_format = INDEX_FORMATS.get(width)
    if index_format is None:
        raise DecodeError(f"Invalid triangle index width {width} (mode=0x{mode:04X})")
    if not 1 <= components <= 4:
        raise DecodeError(f"Invalid triangle component count {components} (mode=0x{mode:04X})")

    corner_format = f"{components}{index_format}"
    triangles = []
    for _ in range(count):
        corners = []
        for _ in range(3):
            indices = reader.unpack(corner_format) + (None,) * (4 - components)
            corners.append(Corner(*indices))
        triangles.append(Triangle(tuple(corners)))
    return triangles


def read_mesh(reader: ByteReader) -> Mesh:
    material = reader.string()
    aux = reader.string()
    count = reader.u16()
    mode = reader.u16()
    return Mesh(
        material=material,
        aux=aux,
        mode=mode,
        triangles=read_triangles(reader, count, mode),
    )


def decode_geometry(reader: ByteReader) -> Geometry:
    """Decode a GEOM chunk payload.

    Raises:
        DecodeError: On truncated data or an unsupported triangle layout;
            no partial Geometry is returned
    """
    name = reader.string()
    group = reader.string()

    properties: Dict[str, List[Optional[Property]]] = {}
    for _ in range(reader.u8()):
        prop = read_property(reader)
        slots = properties.setdefault(prop.name, [])
        while len(slots) <= prop.slot:
            slots.append(None)
        if slots[prop.slot] is not None:
            logger.warning(f"GEOM {name}: duplicate property {prop.name}[{prop.slot}], keeping last")
        slots[prop.slot] = prop

    bind_matrix = reader.matrix4() if reader.u8() else None

    joints = []
    for _ in range(reader.u8()):
        joint_name = reader.string()
        joints.append(Joint(name=joint_name, matrix=reader.matrix4()))

    weights = []
    for _ in range(reader.u32()):
        joint_ids = reader.unpack("4B")
        raw = reader.unpack("4H")
        weights.append(VertexWeight(
            joints=joint_ids,
            weights=tuple(w / WEIGHT_DIVISOR for w in raw),
        ))

    meshes = [read_mesh(reader) for _ in range(reader.u8())]

    return Geometry(
        name=name,
        group=group,
        properties=properties,
        bind_matrix=bind_matrix,
        joints=joints,
        weights=weights,
        meshes=meshes,
    )

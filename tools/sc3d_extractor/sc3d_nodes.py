"""Node hierarchy and keyframe decoding for SC3D NODE chunks.

NODE payload layout (big-endian):
- nodeCount: uint16, then per node:
  - name, parent: uint16 length + UTF-8 (parent is referenced by name)
  - hasTarget: uint16, if non-zero:
    - targetType: 4 chars (e.g. GEOM, CONT)
    - targetName: string
    - bindingCount: uint16, then bindingCount (symbol, target) string pairs
  - frameCount: uint16, if non-zero:
    - flags: uint8, bit6..4 scale X/Y/Z, bit3..1 position X/Y/Z, bit0 rotation
    - per frame: index uint16, rotation 4 x int16 / 0x7F00 (xyzw),
      position 3 x float32, scale 3 x float32

Frame 0 always carries every channel. Later frames only carry the channels
set in flags; every missing channel is taken from frame 0, not from the
previous frame.
"""
import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, List, Optional, Tuple

from sc3d_reader import ByteReader

logger = logging.getLogger(__name__)

ROTATION_DIVISOR = 0x7F00

FLAG_SCALE_X = 1 << 6
FLAG_SCALE_Y = 1 << 5
FLAG_SCALE_Z = 1 << 4
FLAG_POSITION_X = 1 << 3
FLAG_POSITION_Y = 1 << 2
FLAG_POSITION_Z = 1 << 1
FLAG_ROTATION = 1 << 0

POSITION_FLAGS = (FLAG_POSITION_X, FLAG_POSITION_Y, FLAG_POSITION_Z)
SCALE_FLAGS = (FLAG_SCALE_X, FLAG_SCALE_Y, FLAG_SCALE_Z)


@dataclass
class Target:
    """What a node instances, plus its material symbol bindings."""
    type: str
    name: str
    bindings: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class Frame:
    index: int
    position: Tuple[float, float, float]
    rotation: Tuple[float, float, float, float]  # x, y, z, w
    scale: Tuple[float, float, float]


@dataclass
class Node:
    name: str
    parent: str
    target: Optional[Target] = None
    flags: int = 0
    frames: List[Frame] = field(default_factory=list)

    @property
    def has_rotation(self) -> bool:
        return bool(self.flags & FLAG_ROTATION)


class NodeTree:
    """Node arena with parent/child edges resolved by name.

    Parent names may refer to nodes that appear later in the file. A parent
    name that matches no node makes the node a root.
    """

    def __init__(self, nodes: List[Node]):
        self.nodes = list(nodes)
        self._index: Dict[str, int] = {}
        for i, node in enumerate(self.nodes):
            self._index.setdefault(node.name, i)
        self._parents = [self._resolve_parent(i) for i in range(len(self.nodes))]

    def _resolve_parent(self, index: int) -> Optional[int]:
        parent = self._index.get(self.nodes[index].parent)
        if parent == index:
            return None
        return parent

    def index_of(self, name: str) -> Optional[int]:
        return self._index.get(name)

    def get(self, name: str) -> Optional[Node]:
        index = self._index.get(name)
        return self.nodes[index] if index is not None else None

    def parent_of(self, index: int) -> Optional[int]:
        return self._parents[index]

    def children_of(self, index: int) -> List[int]:
        return [i for i, parent in enumerate(self._parents) if parent == index]

    @property
    def roots(self) -> List[int]:
        return [i for i, parent in enumerate(self._parents) if parent is None]

    def depth(self, index: int) -> int:
        """Depth of a node (0 for roots); stops if the parent chain loops."""
        depth = 0
        current = self._parents[index]
        while current is not None and depth < len(self.nodes):
            depth += 1
            current = self._parents[current]
        return depth


@dataclass
class NodeList:
    """Decoded NODE chunk."""
    nodes: List[Node] = field(default_factory=list)

    @cached_property
    def tree(self) -> NodeTree:
        return NodeTree(self.nodes)


def _read_rotation(reader: ByteReader) -> Tuple[float, float, float, float]:
    return tuple(c / ROTATION_DIVISOR for c in reader.unpack("4h"))


def _read_axes(reader: ByteReader, flags: int, bits, fallback) -> Tuple[float, float, float]:
    return tuple(
        reader.f32() if flags & bit else fallback[axis]
        for axis, bit in enumerate(bits)
    )


def read_frames(reader: ByteReader, count: int) -> Tuple[int, List[Frame]]:
    """Read a node's keyframe track.

    Returns:
        (flags, frames); flags is 0 when the track is empty
    """
    if not count:
        return 0, []

    flags = reader.u8()
    frames: List[Frame] = []
    for i in range(count):
        index = reader.u16()
        if i == 0:
            rotation = _read_rotation(reader)
            position = reader.unpack("3f")
            scale = reader.unpack("3f")
        else:
            first = frames[0]
            rotation = _read_rotation(reader) if flags & FLAG_ROTATION else first.rotation
            position = _read_axes(reader, flags, POSITION_FLAGS, first.position)
            scale = _read_axes(reader, flags, SCALE_FLAGS, first.scale)
        frames.append(Frame(index=index, position=position, rotation=rotation, scale=scale))
    return flags, frames


def read_node(reader: ByteReader) -> Node:
    name = reader.string()
    parent = reader.string()

    target = None
    if reader.u16():
        target_type = reader.tag()
        target_name = reader.string()
        bindings = []
        for _ in range(reader.u16()):
            symbol = reader.string()
            bindings.append((symbol, reader.string()))
        target = Target(type=target_type, name=target_name, bindings=bindings)

    flags, frames = read_frames(reader, reader.u16())
    return Node(name=name, parent=parent, target=target, flags=flags, frames=frames)


def decode_node_list(reader: ByteReader) -> NodeList:
    """Decode a NODE chunk payload."""
    nodes = [read_node(reader) for _ in range(reader.u16())]
    names = set()
    for node in nodes:
        if node.name in names:
            logger.warning(f"NODE: duplicate node name {node.name!r}, parent lookups use the first")
        names.add(node.name)
    return NodeList(nodes=nodes)

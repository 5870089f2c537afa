"""Type definitions for the SC3D container format."""
from dataclasses import dataclass
from typing import Any, Optional

MAGIC = b"SC3D"

# length(4) + tag(4) + crc(4)
CHUNK_OVERHEAD = 12


@dataclass
class Header:
    """HEAD chunk contents."""

    version: int = 0
    frame_rate: int = 0
    material_count: int = 0
    library: Optional[str] = None


@dataclass
class EndMarker:
    """WEND chunk, terminates the chunk stream."""


@dataclass
class Opaque:
    """Chunk with an unknown tag, kept undecoded."""

    data: bytes = b""


@dataclass
class Chunk:
    """SC3D chunk record.

    `body` holds the decoded variant: Header, Geometry, NodeList, Material,
    Camera, EndMarker or Opaque.
    """

    tag: str
    length: int
    data: bytes
    crc: int
    computed_crc: int
    offset: int = 0
    body: Any = None

    @property
    def size(self) -> int:
        """Bytes occupied on disk, including length, tag and CRC."""
        return self.length + CHUNK_OVERHEAD

    @property
    def crc_valid(self) -> bool:
        return self.crc == self.computed_crc

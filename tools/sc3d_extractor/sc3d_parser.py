"""Parser for SC3D 3D asset containers.

File layout: the 4-byte magic "SC3D" followed by a stream of chunks, each
    length: uint32 (big-endian, payload size)
    tag:    4 ASCII chars
    data:   length bytes
    crc:    uint32, CRC-32 of tag + data
The stream ends at the first WEND chunk or at the end of the buffer.
"""
import logging
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Union

from sc3d_crc import compute_crc
from sc3d_errors import InvalidMagicError
from sc3d_geometry import Geometry, decode_geometry
from sc3d_material import Camera, Material, decode_camera, decode_material
from sc3d_nodes import Node, NodeList, decode_node_list
from sc3d_reader import ByteReader
from sc3d_types import CHUNK_OVERHEAD, MAGIC, Chunk, EndMarker, Header, Opaque

logger = logging.getLogger(__name__)

EXPECTED_HEADER_VERSION = 2


def decode_header(reader: ByteReader) -> Header:
    """Decode a HEAD chunk payload; an empty payload gives a default Header."""
    if reader.at_end():
        return Header()
    version = reader.i16()
    frame_rate = reader.i16()
    material_count = reader.i32()
    library = reader.string()
    if version != EXPECTED_HEADER_VERSION:
        logger.warning(f"HEAD: unexpected version {version} (expected {EXPECTED_HEADER_VERSION})")
    return Header(
        version=version,
        frame_rate=frame_rate,
        material_count=material_count,
        library=library or None,
    )


def decode_end(reader: ByteReader) -> EndMarker:
    return EndMarker()


DECODERS: Dict[str, Callable[[ByteReader], object]] = {
    "HEAD": decode_header,
    "GEOM": decode_geometry,
    "NODE": decode_node_list,
    "MATE": decode_material,
    "CAME": decode_camera,
    "WEND": decode_end,
}


def read_chunk(reader: ByteReader) -> Chunk:
    """Split the next chunk record off the stream.

    A CRC mismatch is logged and otherwise ignored.
    """
    offset = reader.position
    length = reader.u32()
    tag_bytes = reader.read(4)
    data = reader.read(length)
    crc = reader.u32()

    tag = tag_bytes.decode("ascii", errors="replace")
    computed_crc = compute_crc(tag_bytes + data)
    if computed_crc != crc:
        logger.warning(
            f"CRC mismatch for chunk {tag} at offset {offset}: "
            f"0x{crc:08x} != 0x{computed_crc:08x}"
        )

    return Chunk(
        tag=tag,
        length=length,
        data=data,
        crc=crc,
        computed_crc=computed_crc,
        offset=offset,
    )


def decode_chunk(chunk: Chunk):
    """Decode a chunk's payload into its tagged variant."""
    decoder = DECODERS.get(chunk.tag)
    if decoder is None:
        logger.warning(f"Unknown chunk {chunk.tag} at offset {chunk.offset}, keeping it opaque")
        return Opaque(data=chunk.data)

    reader = ByteReader(chunk.data, context=f"{chunk.tag} chunk at offset {chunk.offset}")
    body = decoder(reader)
    if reader.remaining:
        logger.warning(f"{chunk.tag} chunk at offset {chunk.offset}: {reader.remaining} bytes unprocessed")
    return body


class SC3DFile:
    """An SC3D container: the raw buffer and its decoded chunks."""

    def __init__(self, data: bytes, name: str = "unknown"):
        """Initialize from a byte buffer.

        Args:
            data: Complete file contents
            name: Name used in log messages and as the library name

        Raises:
            InvalidMagicError: If the buffer does not start with SC3D
        """
        data = bytes(data)
        if data[:len(MAGIC)] != MAGIC:
            raise InvalidMagicError(f"Invalid SC3D magic: {data[:len(MAGIC)]!r}")
        self.name = name
        self.data = data
        self.chunks: List[Chunk] = []
        self.loaded = False

    @classmethod
    def open(cls, source: Union[str, Path, BinaryIO, bytes]) -> "SC3DFile":
        """Create and load a container from a path, file object or bytes."""
        if isinstance(source, (str, Path)):
            path = Path(source)
            return cls(path.read_bytes(), name=path.name).load()
        if isinstance(source, (bytes, bytearray, memoryview)):
            return cls(source).load()
        source.seek(0)
        return cls(source.read(), name=getattr(source, "name", "unknown")).load()

    def load(self) -> "SC3DFile":
        """Split and decode every chunk, in file order.

        Decode errors propagate and leave the container unloaded.
        """
        if self.loaded:
            return self

        reader = ByteReader(self.data, offset=len(MAGIC), context=self.name)
        chunks = []
        while reader.remaining >= CHUNK_OVERHEAD:
            chunk = read_chunk(reader)
            chunk.body = decode_chunk(chunk)
            chunks.append(chunk)
            if isinstance(chunk.body, EndMarker):
                break

        if reader.remaining:
            logger.warning(f"{self.name}: {reader.remaining} trailing bytes after chunk stream")

        self.chunks = chunks
        self.loaded = True
        return self

    def find_chunk(self, tag: str) -> Optional[Chunk]:
        """First chunk with the given tag."""
        return next((c for c in self.chunks if c.tag == tag), None)

    def find_chunks(self, tag: str) -> List[Chunk]:
        return [c for c in self.chunks if c.tag == tag]

    def _bodies(self, kind) -> Iterator:
        return (c.body for c in self.chunks if isinstance(c.body, kind))

    @property
    def header(self) -> Optional[Header]:
        return next(self._bodies(Header), None)

    @property
    def node_list(self) -> Optional[NodeList]:
        return next(self._bodies(NodeList), None)

    def geometries(self) -> Iterator[Geometry]:
        return self._bodies(Geometry)

    def materials(self) -> Iterator[Material]:
        return self._bodies(Material)

    def cameras(self) -> Iterator[Camera]:
        return self._bodies(Camera)

    def nodes(self) -> Iterator[Node]:
        node_list = self.node_list
        return iter(node_list.nodes if node_list else [])

    def get_geometry(self, name: str) -> Optional[Geometry]:
        return next((g for g in self.geometries() if g.name == name), None)

    def get_material(self, name: str) -> Optional[Material]:
        return next((m for m in self.materials() if m.name == name), None)

    def resolve_library(self, resolver) -> Optional["SC3DFile"]:
        """Resolve the library named in the header through resolver.

        Returns:
            The shared library container, or None if the header names none
        """
        header = self.header
        if header is None or not header.library:
            return None
        return resolver.resolve(header.library)

    def __repr__(self) -> str:
        return f"SC3DFile(name={self.name!r}, chunks={len(self.chunks)}, loaded={self.loaded})"

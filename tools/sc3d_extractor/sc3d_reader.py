"""Bounds-checked big-endian cursor shared by every SC3D decoder."""
import struct
from typing import List, Tuple

from sc3d_errors import DecodeError


class ByteReader:
    """Sequential reader over a byte buffer.

    Every read checks the remaining length first and raises DecodeError
    instead of returning a short slice.
    """

    def __init__(self, data: bytes, offset: int = 0, context: str = ""):
        self.data = bytes(data)
        self.position = offset
        self.context = context

    @property
    def remaining(self) -> int:
        return len(self.data) - self.position

    def at_end(self) -> bool:
        return self.position >= len(self.data)

    def read(self, size: int) -> bytes:
        """Read exactly size bytes and advance."""
        if size < 0 or size > self.remaining:
            where = f" in {self.context}" if self.context else ""
            raise DecodeError(
                f"Read of {size} bytes at offset {self.position} exceeds buffer"
                f" of {len(self.data)} bytes{where}"
            )
        start = self.position
        self.position += size
        return self.data[start:self.position]

    def unpack(self, fmt: str) -> Tuple:
        """Read and unpack a struct format (big-endian is implied)."""
        if fmt[0] not in "<>!=@":
            fmt = ">" + fmt
        return struct.unpack(fmt, self.read(struct.calcsize(fmt)))

    def u8(self) -> int:
        return self.read(1)[0]

    def u16(self) -> int:
        return self.unpack("H")[0]

    def i16(self) -> int:
        return self.unpack("h")[0]

    def u32(self) -> int:
        return self.unpack("I")[0]

    def i32(self) -> int:
        return self.unpack("i")[0]

    def f32(self) -> float:
        return self.unpack("f")[0]

    def string(self) -> str:
        """Read a uint16 length-prefixed UTF-8 string."""
        length = self.u16()
        return self.read(length).decode("utf-8", errors="replace")

    def tag(self) -> str:
        """Read a 4-character ASCII tag."""
        return self.read(4).decode("ascii", errors="replace")

    def matrix4(self) -> List[float]:
        """Read 16 floats as a flat 4x4 matrix, in file order."""
        return list(self.unpack("16f"))

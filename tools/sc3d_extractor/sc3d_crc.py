"""CRC-32 used by SC3D chunk trailers.

Standard reflected CRC-32 (polynomial 0xEDB88320), computed with a
256-entry lookup table that is built on first use and reused afterwards.
"""
from typing import List, Optional

CRC_POLYNOMIAL = 0xEDB88320
CRC_SEED = 0xFFFFFFFF

_table: Optional[List[int]] = None


def crc_table() -> List[int]:
    """Return the CRC lookup table, building it once per process."""
    global _table
    if _table is None:
        table = []
        for i in range(256):
            c = i
            for _ in range(8):
                c = (CRC_POLYNOMIAL if c & 1 else 0) ^ (c >> 1)
            table.append(c)
        _table = table
    return _table


def compute_crc(data: bytes, seed: int = CRC_SEED) -> int:
    """Compute the CRC-32 of data.

    Args:
        data: Bytes to checksum
        seed: Initial register value

    Returns:
        Ones' complement of the final register, as an unsigned 32-bit int
    """
    table = crc_table()
    c = seed & 0xFFFFFFFF
    for byte in data:
        c = table[(c ^ byte) & 0xFF] ^ (c >> 8)
    return ~c & 0xFFFFFFFF

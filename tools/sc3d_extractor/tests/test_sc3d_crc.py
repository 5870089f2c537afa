"""Tests for the SC3D chunk checksum."""
import os
import sys
import zlib

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sc3d_crc import compute_crc, crc_table


def test_standard_check_value():
    """CRC-32 of '123456789' is the standard check value."""
    assert compute_crc(b"123456789") == 0xCBF43926


def test_empty_input():
    assert compute_crc(b"") == 0


def test_table_built_once():
    table = crc_table()
    assert len(table) == 256
    assert table[0] == 0
    assert table[1] == 0x77073096
    assert crc_table() is table


def test_matches_zlib():
    data = bytes(range(256)) * 3 + b"HEADpayload"
    assert compute_crc(data) == zlib.crc32(data) & 0xFFFFFFFF


def test_custom_seed():
    """Seed is the initial register; output is always complemented."""
    assert compute_crc(b"", seed=0) == 0xFFFFFFFF
    assert compute_crc(b"abc", seed=0x12345678) != compute_crc(b"abc")

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from wire_utils import (  # type: ignore  # pylint: disable=import-error
    be16,
    be32,
    le16,
    le32,
    ones_complement_checksum,
    ones_complement_sum,
    unpack_be16,
    unpack_be32,
    unpack_le16,
    unpack_le32,
)

# Textbook IPv4 header with the checksum field zeroed; its checksum is 0xB861.
SAMPLE_IPV4_HEADER = bytes.fromhex("450000730000400040110000c0a80001c0a800c7")


def test_byte_order_encoding():
    assert be16(0x1234) == b"\x12\x34"
    assert le16(0x1234) == b"\x34\x12"
    assert be32(0x01020304) == b"\x01\x02\x03\x04"
    assert le32(0x01020304) == b"\x04\x03\x02\x01"


def test_encoding_masks_to_width():
    assert be16(0x12345) == b"\x23\x45"
    assert be32(1 << 32) == b"\x00\x00\x00\x00"


def test_decoding_with_offset():
    data = b"\xff\x12\x34\x56\x78"
    assert unpack_be16(data, 1) == 0x1234
    assert unpack_le16(data, 1) == 0x3412
    assert unpack_be32(data, 1) == 0x12345678
    assert unpack_le32(data, 1) == 0x78563412


def test_ipv4_header_checksum():
    assert ones_complement_checksum(SAMPLE_IPV4_HEADER) == 0xB861


def test_checksum_verifies_to_all_ones():
    patched = SAMPLE_IPV4_HEADER[:10] + be16(0xB861) + SAMPLE_IPV4_HEADER[12:]
    assert ones_complement_sum(patched) == 0xFFFF
    assert ones_complement_checksum(patched) == 0


def test_odd_length_is_zero_padded():
    assert ones_complement_checksum(b"\x01") == 0xFEFF
    assert ones_complement_checksum(b"\x01\x02\x03") == ones_complement_checksum(b"\x01\x02\x03\x00")


@pytest.mark.parametrize(
    "seed, expected",
    [
        (0, 0xFFFF),
        (6, 0xFFF9),
        (0x1FFFF, 0xFFFE),
    ],
)
def test_seed_is_folded_in(seed, expected):
    assert ones_complement_checksum(b"", seed=seed) == expected

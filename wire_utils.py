"""Byte-order and checksum helpers shared by the frame builder."""

from __future__ import annotations

import struct

ETHERTYPE_IPV4 = 0x0800
ETHERTYPE_IPV6 = 0x86DD
ETHERTYPE_VLAN = 0x8100
ETHERTYPE_VLAN_NESTED = 0x9100

IPPROTO_TCP = 6
IPPROTO_UDP = 17

TCP_FLAG_FIN = 0x01
TCP_FLAG_SYN = 0x02
TCP_FLAG_RST = 0x04
TCP_FLAG_ACK = 0x10

ETHERNET_HEADER_LEN = 14
VLAN_TAG_LEN = 4
IPV4_HEADER_LEN = 20
IPV6_HEADER_LEN = 40
TCP_HEADER_LEN = 20
UDP_HEADER_LEN = 8


def be16(value: int) -> bytes:
    return struct.pack("!H", value & 0xFFFF)


def be32(value: int) -> bytes:
    return struct.pack("!I", value & 0xFFFFFFFF)


def le16(value: int) -> bytes:
    return struct.pack("<H", value & 0xFFFF)


def le32(value: int) -> bytes:
    return struct.pack("<I", value & 0xFFFFFFFF)


def unpack_be16(data: bytes, offset: int = 0) -> int:
    return struct.unpack_from("!H", data, offset)[0]


def unpack_be32(data: bytes, offset: int = 0) -> int:
    return struct.unpack_from("!I", data, offset)[0]


def unpack_le16(data: bytes, offset: int = 0) -> int:
    return struct.unpack_from("<H", data, offset)[0]


def unpack_le32(data: bytes, offset: int = 0) -> int:
    return struct.unpack_from("<I", data, offset)[0]


def ones_complement_sum(data: bytes, seed: int = 0) -> int:
    """Fold ``data`` as big-endian 16-bit words plus ``seed`` into 16 bits."""
    if len(data) % 2:
        data = bytes(data) + b"\x00"
    total = seed
    for idx in range(0, len(data), 2):
        total += (data[idx] << 8) + data[idx + 1]
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return total


def ones_complement_checksum(data: bytes, seed: int = 0) -> int:
    """Internet checksum of ``data``.

    ``seed`` carries any contribution that is not laid out in ``data`` itself,
    e.g. the protocol number and segment length of a TCP pseudo-header.
    """
    return (~ones_complement_sum(data, seed)) & 0xFFFF

"""Lay out Ethernet/VLAN/IP/TCP-or-UDP frames for a simulated connection."""

from __future__ import annotations

import ipaddress
import logging
import struct
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from seq_generator import SequenceGenerator
from wire_utils import (
    ETHERNET_HEADER_LEN,
    ETHERTYPE_IPV4,
    ETHERTYPE_IPV6,
    ETHERTYPE_VLAN,
    ETHERTYPE_VLAN_NESTED,
    IPPROTO_TCP,
    IPPROTO_UDP,
    IPV4_HEADER_LEN,
    IPV6_HEADER_LEN,
    TCP_FLAG_ACK,
    TCP_FLAG_FIN,
    TCP_FLAG_RST,
    TCP_FLAG_SYN,
    TCP_HEADER_LEN,
    UDP_HEADER_LEN,
    VLAN_TAG_LEN,
    be16,
    ones_complement_checksum,
)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

SYN = "syn"
SYN_ACK = "syn_ack"
FIN = "fin"
RST = "rst"
CONTROL_FLAGS = frozenset((SYN, SYN_ACK, FIN, RST))
SEQ_CONSUMING_FLAGS = frozenset((SYN, SYN_ACK, FIN))

FLAG_POLICY_REPEAT = "repeat"
FLAG_POLICY_EDGES = "edges"
FLAG_POLICIES = (FLAG_POLICY_REPEAT, FLAG_POLICY_EDGES)

TRANSPORT_TCP = "tcp"
TRANSPORT_UDP = "udp"

IP_TTL = 64
TCP_DATA_OFFSET = 0x50
TCP_WINDOW = 0x8000
IPV6_VERSION_WORD = 0x60000000

# Endpoint 0 is the server ("destination"), endpoint 1 the client ("source").
SERVER = 0
CLIENT = 1
SERVER_DIRECTIONS = frozenset(("server", "dst", "destination", SERVER))
CLIENT_DIRECTIONS = frozenset(("client", "src", "source", CLIENT))


@dataclass
class Endpoint:
    """One side of a connection."""

    mac: bytes
    ip: IPAddress
    port: int
    seq: int = 0

    @property
    def packed_ip(self) -> bytes:
        return self.ip.packed


def header_overhead(transport: str, ip_version: int, vlan_count: int = 0) -> int:
    """Bytes of headers every frame carries before any payload."""
    network = IPV6_HEADER_LEN if ip_version == 6 else IPV4_HEADER_LEN
    layer4 = TCP_HEADER_LEN if transport == TRANSPORT_TCP else UDP_HEADER_LEN
    return ETHERNET_HEADER_LEN + VLAN_TAG_LEN * vlan_count + network + layer4


def tcp_flag_byte(flags: Iterable[str]) -> int:
    """Control byte for ``flags``.

    The contributions are additive, so ``syn`` together with ``syn_ack``
    yields ``0x04``. Existing captures depend on that byte value.
    """
    flags = frozenset(flags)
    value = TCP_FLAG_ACK
    if SYN in flags:
        value = TCP_FLAG_SYN
    if SYN_ACK in flags:
        value += TCP_FLAG_SYN
    if FIN in flags:
        value += TCP_FLAG_FIN
    if RST in flags:
        value += TCP_FLAG_RST
    return value


def resolve_direction(direction) -> Tuple[int, int]:
    """Map a direction name to ``(src, dst)`` endpoint indices."""
    if direction is None or direction in SERVER_DIRECTIONS:
        return SERVER, CLIENT
    if direction in CLIENT_DIRECTIONS:
        return CLIENT, SERVER
    raise ValueError(f"unknown direction: {direction!r}")


def split_payload(payload: bytes, chunk_size: int) -> List[bytes]:
    if chunk_size <= 0:
        raise ValueError(f"chunk size must be positive, got {chunk_size}")
    if len(payload) <= chunk_size:
        return [payload]
    return [payload[offset:offset + chunk_size] for offset in range(0, len(payload), chunk_size)]


def chunk_flags(flags: frozenset, index: int, total: int, policy: str) -> frozenset:
    """Flags carried by chunk ``index`` of ``total`` under ``policy``."""
    if policy == FLAG_POLICY_REPEAT or total == 1:
        return flags
    if index > 0:
        flags = flags - {SYN, SYN_ACK}
    if index < total - 1:
        flags = flags - {FIN, RST}
    return flags


class FrameBuilder:
    """Render frames for one connection and hand each to ``sink``.

    ``sink`` receives the bare link-layer frame; the capture session owns the
    clock and record framing.
    """

    def __init__(
        self,
        endpoints: Sequence[Endpoint],
        *,
        transport: str,
        ip_version: int,
        mtu: int,
        ip_id: SequenceGenerator,
        sink: Callable[[bytes], None],
        vlan: Sequence[int] = (),
        flag_policy: str = FLAG_POLICY_REPEAT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.endpoints = list(endpoints)
        self.transport = transport
        self.ip_version = ip_version
        self.mtu = mtu
        self.vlan = tuple(vlan)
        self.flag_policy = flag_policy
        self._ip_id = ip_id
        self._sink = sink
        self._logger = logger or logging.getLogger(__name__)

    @property
    def overhead(self) -> int:
        return header_overhead(self.transport, self.ip_version, len(self.vlan))

    @property
    def max_payload(self) -> int:
        return self.mtu - self.overhead

    # ------------------------------------------------------------------
    def emit(self, direction, payload: bytes, flags: Iterable[str] = ()) -> List[bytes]:
        """Build and sink every frame needed to carry ``payload``."""
        flags = frozenset(flags)
        unknown = flags - CONTROL_FLAGS
        if unknown:
            raise ValueError(f"unknown control flags: {sorted(unknown)}")
        src, dst = resolve_direction(direction)
        chunks = split_payload(payload, self.max_payload)
        if len(chunks) > 1:
            self._logger.debug(
                "segmenting %d bytes into %d frames (mtu=%d, overhead=%d)",
                len(payload),
                len(chunks),
                self.mtu,
                self.overhead,
            )
        frames = []
        for idx, chunk in enumerate(chunks):
            frame = self.build(src, dst, chunk, chunk_flags(flags, idx, len(chunks), self.flag_policy))
            self._sink(frame)
            frames.append(frame)
        return frames

    def build(self, src: int, dst: int, payload: bytes, flags: frozenset = frozenset()) -> bytes:
        """Render a single frame; advances the sender's sequence for TCP."""
        sender = self.endpoints[src]
        receiver = self.endpoints[dst]
        if self.transport == TRANSPORT_TCP:
            proto = IPPROTO_TCP
            segment = self._build_tcp_segment(sender, receiver, payload, flags)
        else:
            proto = IPPROTO_UDP
            segment = self._build_udp_datagram(sender, receiver, payload)
        if self.ip_version == 6:
            network = self._build_ipv6_header(sender, receiver, proto, len(segment))
        else:
            network = self._build_ipv4_header(sender, receiver, proto, len(segment))
        return self._build_link_header(sender, receiver) + network + segment

    # ------------------------------------------------------------------
    def _build_link_header(self, sender: Endpoint, receiver: Endpoint) -> bytes:
        header = receiver.mac + sender.mac
        for idx, tag in enumerate(self.vlan):
            tpid = ETHERTYPE_VLAN if idx == 0 else ETHERTYPE_VLAN_NESTED
            header += be16(tpid) + be16(tag)
        ethertype = ETHERTYPE_IPV6 if self.ip_version == 6 else ETHERTYPE_IPV4
        return header + be16(ethertype)

    def _build_ipv4_header(self, sender: Endpoint, receiver: Endpoint, proto: int, segment_len: int) -> bytes:
        version_ihl = 0x45
        tos = 0
        total_length = IPV4_HEADER_LEN + segment_len
        ip_id = self._ip_id.below(1 << 16)
        flags_fragment = 0
        header = struct.pack(
            "!BBHHHBBH4s4s",
            version_ihl,
            tos,
            total_length,
            ip_id,
            flags_fragment,
            IP_TTL,
            proto,
            0,
            sender.packed_ip,
            receiver.packed_ip,
        )
        checksum = ones_complement_checksum(header)
        return header[:10] + be16(checksum) + header[12:]

    def _build_ipv6_header(self, sender: Endpoint, receiver: Endpoint, proto: int, segment_len: int) -> bytes:
        return struct.pack(
            "!IHBB16s16s",
            IPV6_VERSION_WORD,
            segment_len,
            proto,
            IP_TTL,
            sender.packed_ip,
            receiver.packed_ip,
        )

    def _build_tcp_segment(self, sender: Endpoint, receiver: Endpoint, payload: bytes, flags: frozenset) -> bytes:
        ack = 0 if SYN in flags else receiver.seq
        header = struct.pack(
            "!HHIIBBHHH",
            sender.port,
            receiver.port,
            sender.seq,
            ack,
            TCP_DATA_OFFSET,
            tcp_flag_byte(flags),
            TCP_WINDOW,
            0,
            0,
        )
        segment = header + payload

        advance = len(payload)
        if flags & SEQ_CONSUMING_FLAGS:
            advance += 1
        sender.seq = (sender.seq + advance) & 0xFFFFFFFF

        checksum = ones_complement_checksum(
            sender.packed_ip + receiver.packed_ip + segment,
            seed=IPPROTO_TCP + len(segment),
        )
        return segment[:16] + be16(checksum) + segment[18:]

    def _build_udp_datagram(self, sender: Endpoint, receiver: Endpoint, payload: bytes) -> bytes:
        # checksum left at zero, which UDP over IPv4 treats as "not computed"
        header = struct.pack("!HHHH", sender.port, receiver.port, UDP_HEADER_LEN + len(payload), 0)
        return header + payload

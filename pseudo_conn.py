"""Simulated TCP/UDP connections that write frames into a capture session."""

from __future__ import annotations

import enum
import ipaddress
import re
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Mapping, Optional, Protocol, Sequence, Tuple, Union

from frame_builder import (
    CLIENT,
    FIN,
    FLAG_POLICIES,
    FLAG_POLICY_REPEAT,
    RST,
    SERVER,
    SYN,
    SYN_ACK,
    TRANSPORT_TCP,
    TRANSPORT_UDP,
    Endpoint,
    FrameBuilder,
    IPAddress,
    header_overhead,
)

if TYPE_CHECKING:
    from capture_session import CaptureSession

AddressLike = Union[str, int, bytes, ipaddress.IPv4Address, ipaddress.IPv6Address]
MacLike = Union[str, int, bytes, None]

MAX_MTU = 0xFFFF
_MAC_TEXT = re.compile(r"^[0-9a-fA-F]{2}([:-]?)(?:[0-9a-fA-F]{2}\1){4}[0-9a-fA-F]{2}$")


class PseudoConnError(Exception):
    """Base class for errors raised while scripting a capture."""


class OptionValidationError(PseudoConnError, ValueError):
    """Unknown connection option, or an option with an unusable value."""

    def __init__(self, message: str, option: Optional[str] = None) -> None:
        super().__init__(message)
        self.option = option


class AddressFormatError(PseudoConnError, ValueError):
    """Address that is not text, an integer, packed bytes or an ipaddress object."""


class ConnectionStateError(PseudoConnError, RuntimeError):
    """Operation attempted on a connection that is already closed."""


InvalidOption = OptionValidationError
InvalidAddressFormat = AddressFormatError


class ConnectionState(enum.Enum):
    INIT = "init"
    HANDSHAKING = "handshaking"
    ESTABLISHED = "established"
    CLOSING = "closing"
    RESET = "reset"
    CLOSED = "closed"


class Emitter(Protocol):
    """What application-layer encoders are allowed to call."""

    def emit_client(self, data) -> None:
        ...

    def emit_server(self, data) -> None:
        ...

    def insert_delay(self, seconds: float) -> None:
        ...


@dataclass
class ConnectionOptions:
    """Every option a connection accepts, with its default."""

    transport: str = TRANSPORT_TCP
    mtu: int = 1500
    src_mac: MacLike = None
    dst_mac: MacLike = None
    src_ip: AddressLike = "10.0.0.1"
    dst_ip: AddressLike = "42.13.37.80"
    src_port: Optional[int] = None
    dst_port: Optional[int] = None
    src_seq: Optional[int] = None
    dst_seq: Optional[int] = None
    vlan: Sequence[int] = ()
    ip_version: Optional[int] = None
    flag_policy: str = FLAG_POLICY_REPEAT
    # no effect: every segment after the opening SYN carries ACK
    ack: bool = False

    @classmethod
    def option_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, object]] = None) -> "ConnectionOptions":
        options = dict(options or {})
        allowed = cls.option_names()
        for key in options:
            if key not in allowed:
                raise OptionValidationError(f"Invalid option - {key}", key)
        resolved = cls(**options)
        resolved.validate()
        return resolved

    def validate(self) -> None:
        if isinstance(self.transport, str):
            self.transport = self.transport.lower()
        if self.transport not in (TRANSPORT_TCP, TRANSPORT_UDP):
            raise OptionValidationError(f"transport must be tcp or udp, got {self.transport!r}", "transport")
        if self.flag_policy not in FLAG_POLICIES:
            raise OptionValidationError(f"unknown flag policy {self.flag_policy!r}", "flag_policy")
        if self.ip_version not in (None, 4, 6):
            raise OptionValidationError(f"ip_version must be 4 or 6, got {self.ip_version!r}", "ip_version")
        if not _is_int(self.mtu) or self.mtu > MAX_MTU:
            raise OptionValidationError(f"mtu must be an integer up to {MAX_MTU}, got {self.mtu!r}", "mtu")
        for name in ("src_port", "dst_port"):
            value = getattr(self, name)
            if value is not None and (not _is_int(value) or not 0 <= value <= 0xFFFF):
                raise OptionValidationError(f"{name} out of range: {value!r}", name)
        for name in ("src_seq", "dst_seq"):
            value = getattr(self, name)
            if value is not None and not _is_int(value):
                raise OptionValidationError(f"{name} must be an integer, got {value!r}", name)
        if _is_int(self.vlan):
            self.vlan = (self.vlan,)
        self.vlan = tuple(self.vlan)
        for tag in self.vlan:
            if not _is_int(tag) or not 0 <= tag <= 0xFFFF:
                raise OptionValidationError(f"vlan tag out of range: {tag!r}", "vlan")


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_address(value: AddressLike) -> IPAddress:
    """Accept dotted-quad/colon-hex text, an integer, packed bytes or an address."""
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    if _is_int(value) or (isinstance(value, (bytes, bytearray)) and len(value) in (4, 16)):
        try:
            return ipaddress.ip_address(bytes(value) if isinstance(value, bytearray) else value)
        except ValueError as exc:
            raise AddressFormatError(f"invalid address value: {value!r}") from exc
    if isinstance(value, str):
        try:
            return ipaddress.ip_address(value.strip())
        except ValueError as exc:
            raise AddressFormatError(f"invalid address text: {value!r}") from exc
    raise AddressFormatError(f"unsupported address type {type(value).__name__}: {value!r}")


def resolve_addresses(
    src: IPAddress,
    dst: IPAddress,
    ip_version: Optional[int],
    src_defaulted: bool = False,
    dst_defaulted: bool = False,
) -> Tuple[IPAddress, IPAddress, int]:
    """Bring both addresses to one IP version.

    With ``ip_version=6`` IPv4 addresses become IPv4-mapped IPv6 addresses;
    with ``ip_version=4`` only IPv4-mapped IPv6 addresses can be narrowed.
    Without a version, a defaulted address follows the family of the one the
    caller gave; two explicit addresses must already agree.
    """
    if ip_version is None:
        if src.version == dst.version:
            return src, dst, src.version
        if src_defaulted and dst.version == 6:
            return _as_ipv6(src), dst, 6
        if dst_defaulted and src.version == 6:
            return src, _as_ipv6(dst), 6
        raise AddressFormatError(f"mixed address families: {src} and {dst}")
    if ip_version == 6:
        return _as_ipv6(src), _as_ipv6(dst), 6
    return _as_ipv4(src), _as_ipv4(dst), 4


def _as_ipv6(addr: IPAddress) -> ipaddress.IPv6Address:
    if addr.version == 6:
        return addr
    return ipaddress.IPv6Address(f"::ffff:{addr}")


def _as_ipv4(addr: IPAddress) -> ipaddress.IPv4Address:
    if addr.version == 4:
        return addr
    if addr.ipv4_mapped is None:
        raise AddressFormatError(f"{addr} has no IPv4 form")
    return addr.ipv4_mapped


def parse_mac(value: MacLike, option: str) -> bytes:
    if isinstance(value, (bytes, bytearray)) and len(value) == 6:
        return bytes(value)
    if _is_int(value) and 0 <= value < 1 << 48:
        return value.to_bytes(6, "big")
    if isinstance(value, str) and _MAC_TEXT.match(value.strip()):
        return bytes.fromhex(re.sub(r"[:-]", "", value.strip()))
    raise OptionValidationError(f"{option} is not a MAC address: {value!r}", option)


def as_payload(data) -> bytes:
    """Coerce caller data to bytes; text is taken byte-for-byte (latin-1)."""
    if data is None:
        return b""
    if isinstance(data, str):
        return data.encode("latin-1")
    return bytes(data)


class Connection:
    """One simulated conversation between a client and a server.

    Creating a TCP connection immediately writes the three-way handshake.
    Omitted ports, sequence numbers and MAC addresses come from the session's
    named generators, so a capture is reproducible from its seeds.
    """

    def __init__(self, session: "CaptureSession", **options) -> None:
        self.session = session
        self.options = ConnectionOptions.from_mapping(options)
        self.state = ConnectionState.INIT
        self._logger = session.logger

        opts = self.options
        src_ip, dst_ip, self.ip_version = resolve_addresses(
            parse_address(opts.src_ip),
            parse_address(opts.dst_ip),
            opts.ip_version,
            src_defaulted="src_ip" not in options,
            dst_defaulted="dst_ip" not in options,
        )
        overhead = header_overhead(opts.transport, self.ip_version, len(opts.vlan))
        if opts.mtu <= overhead:
            raise OptionValidationError(
                f"mtu {opts.mtu} leaves no room for payload after {overhead} header bytes", "mtu"
            )

        client = Endpoint(
            mac=self._resolve_mac(opts.src_mac, "src_mac"),
            ip=src_ip,
            port=self._resolve_port(opts.src_port, "src_port"),
            seq=self._resolve_seq(opts.src_seq, "src_seq"),
        )
        server = Endpoint(
            mac=self._resolve_mac(opts.dst_mac, "dst_mac"),
            ip=dst_ip,
            port=self._resolve_port(opts.dst_port, "dst_port"),
            seq=self._resolve_seq(opts.dst_seq, "dst_seq"),
        )
        self._builder = FrameBuilder(
            [server, client],
            transport=opts.transport,
            ip_version=self.ip_version,
            mtu=opts.mtu,
            vlan=opts.vlan,
            flag_policy=opts.flag_policy,
            ip_id=session.generator("ip_id"),
            sink=session.record_frame,
            logger=self._logger,
        )
        self._logger.debug("opened %r", self)

        if self.is_tcp:
            self.state = ConnectionState.HANDSHAKING
            self._frame("client", b"", SYN)
            self._frame("server", b"", SYN_ACK)
            self._frame("client", b"")
        self.state = ConnectionState.ESTABLISHED

    def __repr__(self) -> str:
        client, server = self.client_endpoint, self.server_endpoint
        return (
            f"<Connection {self.transport} {client.ip}:{client.port} -> "
            f"{server.ip}:{server.port} {self.state.value}>"
        )

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None and not self.closed:
            self.close()

    # ------------------------------------------------------------------
    @property
    def transport(self) -> str:
        return self.options.transport

    @property
    def is_tcp(self) -> bool:
        return self.transport == TRANSPORT_TCP

    @property
    def mtu(self) -> int:
        return self._builder.mtu

    @property
    def vlan(self) -> Tuple[int, ...]:
        return self._builder.vlan

    @property
    def server_endpoint(self) -> Endpoint:
        return self._builder.endpoints[SERVER]

    @property
    def client_endpoint(self) -> Endpoint:
        return self._builder.endpoints[CLIENT]

    @property
    def closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # ------------------------------------------------------------------
    def client(self, data) -> None:
        self._require_open("client")
        self._frame("client", as_payload(data))

    def server(self, data) -> None:
        self._require_open("server")
        self._frame("server", as_payload(data))

    emit_client = client
    emit_server = server

    def close(self) -> None:
        self._require_open("close")
        if self.is_tcp:
            self.state = ConnectionState.CLOSING
            self._frame("client", b"", FIN)
            self._frame("server", b"", FIN)
            self._frame("client", b"")
        self.state = ConnectionState.CLOSED
        self._logger.debug("closed %r", self)

    def reset(self) -> None:
        self._require_open("reset")
        if self.is_tcp:
            self.state = ConnectionState.RESET
            self._frame("client", b"", RST)
        self.state = ConnectionState.CLOSED
        self._logger.debug("reset %r", self)

    def insert_delay(self, seconds: float) -> None:
        self.session.insert_delay(seconds)

    # ------------------------------------------------------------------
    def _frame(self, direction: str, payload: bytes, *flags: str):
        return self._builder.emit(direction, payload, flags)

    def _require_open(self, operation: str) -> None:
        if self.closed:
            raise ConnectionStateError(f"cannot {operation} on closed connection {self!r}")

    def _resolve_mac(self, value: MacLike, option: str) -> bytes:
        if value is None:
            return self.session.generator(option).randbytes(6)
        return parse_mac(value, option)

    def _resolve_port(self, value: Optional[int], option: str) -> int:
        if value is None:
            return self.session.generator(option).below(30000) + 1025
        return value

    def _resolve_seq(self, value: Optional[int], option: str) -> int:
        if value is None:
            return self.session.generator(option).below(1 << 32)
        return value & 0xFFFFFFFF

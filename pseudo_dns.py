"""DNS queries and answers carried over a simulated UDP connection."""

from __future__ import annotations

import ipaddress
import struct
from typing import List, Optional, Sequence, Tuple, Union

from pseudo_conn import Connection, Emitter

A = 0x01
NS = 0x02
CNAME = 0x05
PTR = 0x0C
MX = 0x0F
TXT = 0x10
AAAA = 0x1C

CLASS_IN = 1
QUERY_FLAGS = 0x0100
ANSWER_FLAGS = 0x8180
DEFAULT_TTL = 86400
QNAME_POINTER = 0xC00C
MX_PRIORITY_STEP = 100
MAX_LABEL_LEN = 63
MAX_CHARACTER_STRING = 255
DNS_PORT = 53

NAME_TYPES = frozenset((NS, CNAME, PTR))

Answer = Union[str, bytes, Tuple]


def label_encode(name: str) -> bytes:
    """Encode ``name`` as length-prefixed labels ending in the root label."""
    name = name.rstrip(".")
    if not name:
        return b"\x00"
    encoded = bytearray()
    for label in name.split("."):
        raw = label.encode("ascii")
        if not raw:
            raise ValueError(f"empty label in {name!r}")
        if len(raw) > MAX_LABEL_LEN:
            raise ValueError(f"label too long: {label!r}")
        encoded.append(len(raw))
        encoded.extend(raw)
    encoded.append(0)
    return bytes(encoded)


def character_strings(text) -> bytes:
    data = text.encode("utf-8") if isinstance(text, str) else bytes(text)
    if not data:
        return b"\x00"
    out = bytearray()
    for offset in range(0, len(data), MAX_CHARACTER_STRING):
        chunk = data[offset:offset + MAX_CHARACTER_STRING]
        out.append(len(chunk))
        out.extend(chunk)
    return bytes(out)


def _header(txid: int, flags: int, answers: int) -> bytes:
    return struct.pack("!HHHHHH", txid & 0xFFFF, flags, 1, answers, 0, 0)


def _question(qname: str, qtype: int) -> bytes:
    return label_encode(qname) + struct.pack("!HH", qtype, CLASS_IN)


def _infer_type(value, qtype: int) -> int:
    fallback = CNAME if qtype == PTR else TXT
    # only text can name an address; packed bytes are record data
    if not isinstance(value, str):
        return fallback
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return fallback
    return A if addr.version == 4 else AAAA


def normalize_answers(answers, qtype: int = A) -> List[Tuple[object, int, int]]:
    """Expand the accepted answer shapes into ``(value, rtype, ttl)`` triples.

    A single value is one answer. A list holds several answers, unless it is
    a ``(value, rtype)`` or ``(value, rtype, ttl)`` tuple describing one.
    """
    if not isinstance(answers, (list, tuple)):
        answers = [answers]
    elif len(answers) in (2, 3) and isinstance(answers[1], int):
        answers = [answers]
    result = []
    for answer in answers:
        if not isinstance(answer, (list, tuple)):
            answer = (answer,)
        value = answer[0]
        rtype = answer[1] if len(answer) > 1 else _infer_type(value, qtype)
        ttl = answer[2] if len(answer) > 2 else DEFAULT_TTL
        result.append((value, rtype, ttl))
    return result


def _rdata(value, rtype: int, mx_priority: int) -> bytes:
    if rtype == A:
        return ipaddress.IPv4Address(value).packed
    if rtype == AAAA:
        return ipaddress.IPv6Address(value).packed
    if rtype in NAME_TYPES:
        return label_encode(str(value))
    if rtype == MX:
        return struct.pack("!H", mx_priority) + label_encode(str(value))
    if rtype == TXT:
        return character_strings(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def build_query(qname: str, qtype: int = A, txid: int = 0) -> bytes:
    return _header(txid, QUERY_FLAGS, 0) + _question(qname, qtype)


def build_answer(qname: str, answers, qtype: int = A, txid: int = 0) -> bytes:
    records = normalize_answers(answers, qtype)
    message = bytearray(_header(txid, ANSWER_FLAGS, len(records)))
    message += _question(qname, qtype)
    mx_priority = MX_PRIORITY_STEP
    for value, rtype, ttl in records:
        rdata = _rdata(value, rtype, mx_priority)
        if rtype == MX:
            mx_priority += MX_PRIORITY_STEP
        # every answer names the question through a compression pointer
        message += struct.pack("!HHHIH", QNAME_POINTER, rtype, CLASS_IN, ttl, len(rdata))
        message += rdata
    return bytes(message)


def dns_query(emitter: Emitter, qname: str, qtype: int = A, txid: int = 0) -> None:
    emitter.emit_client(build_query(qname, qtype, txid))


def dns_answer(emitter: Emitter, qname: str, answers, qtype: int = A, txid: int = 0) -> None:
    emitter.emit_server(build_answer(qname, answers, qtype, txid))


def _dns_connection(session, options) -> Connection:
    options["transport"] = "udp"
    options.setdefault("dst_port", DNS_PORT)
    return session.connection(**options)


def _txid(session, txid: Optional[int]) -> int:
    if txid is None:
        return session.generator("dns_id").below(1 << 16)
    return txid


def send_dns_query(session, qname: str, qtype: int = A, txid: Optional[int] = None, **options) -> Connection:
    """Open a UDP connection to port 53 (by default) and send one query."""
    conn = _dns_connection(session, options)
    dns_query(conn, qname, qtype, _txid(session, txid))
    return conn


def send_dns_answer(
    session, qname: str, answers, qtype: int = A, txid: Optional[int] = None, **options
) -> Connection:
    conn = _dns_connection(session, options)
    dns_answer(conn, qname, answers, qtype, _txid(session, txid))
    return conn


def send_dns_exchange(
    session, qname: str, answers: Sequence[Answer], qtype: int = A, txid: Optional[int] = None, **options
) -> Connection:
    """Query and matching answer on one connection, sharing a transaction id."""
    conn = _dns_connection(session, options)
    txid = _txid(session, txid)
    dns_query(conn, qname, qtype, txid)
    dns_answer(conn, qname, answers, qtype, txid)
    return conn

import struct
import sys
from pathlib import Path

import pytest
from scapy.all import DNS, DNSQR, Ether, UDP

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from capture_session import CaptureSession  # type: ignore  # pylint: disable=import-error
from pseudo_dns import (  # type: ignore  # pylint: disable=import-error
    A,
    AAAA,
    CNAME,
    MX,
    PTR,
    TXT,
    build_answer,
    build_query,
    character_strings,
    label_encode,
    normalize_answers,
    send_dns_answer,
    send_dns_exchange,
    send_dns_query,
)


def _udp_payload(frame):
    return frame[42:]


def test_label_encode():
    assert label_encode("www.yahoo.com") == b"\x03www\x05yahoo\x03com\x00"
    assert label_encode("www.yahoo.com.") == b"\x03www\x05yahoo\x03com\x00"
    assert label_encode("") == b"\x00"


def test_label_encode_rejects_bad_labels():
    with pytest.raises(ValueError):
        label_encode("x" * 64 + ".com")
    with pytest.raises(ValueError):
        label_encode("a..b")


def test_character_strings_split_long_text():
    encoded = character_strings("y" * 300)
    assert encoded[0] == 255
    assert encoded[256] == 45
    assert len(encoded) == 302
    assert character_strings("") == b"\x00"


def test_build_query_bytes():
    query = build_query("a.b", A, 0x1234)
    assert query == bytes.fromhex("123401000001000000000000") + b"\x01a\x01b\x00" + b"\x00\x01\x00\x01"


def test_build_answer_a_record():
    answer = build_answer("www.fake.com", "1.2.3.4", txid=1)
    header = struct.unpack("!HHHHHH", answer[:12])
    assert header == (1, 0x8180, 1, 1, 0, 0)
    question_end = 12 + len(label_encode("www.fake.com")) + 4
    assert answer[question_end:] == bytes.fromhex("c00c00010001000151800004") + b"\x01\x02\x03\x04"


def test_normalize_answer_shapes():
    assert normalize_answers("1.2.3.4") == [("1.2.3.4", A, 86400)]
    assert normalize_answers("::1") == [("::1", AAAA, 86400)]
    assert normalize_answers("some text") == [("some text", TXT, 86400)]
    assert normalize_answers(("mail.fake.com", MX)) == [("mail.fake.com", MX, 86400)]
    assert normalize_answers(("mail.fake.com", MX, 60)) == [("mail.fake.com", MX, 60)]
    assert normalize_answers(
        ["second.fake.com", ("info", TXT), ("short", TXT, 2)], PTR
    ) == [("second.fake.com", CNAME, 86400), ("info", TXT, 86400), ("short", TXT, 2)]


def test_bytes_values_are_never_taken_as_addresses():
    assert normalize_answers(b"\x01\x02\x03\x04") == [(b"\x01\x02\x03\x04", TXT, 86400)]
    assert normalize_answers([b"x" * 16], PTR) == [(b"x" * 16, CNAME, 86400)]
    answer = build_answer("fake.com", b"abcd")
    offset = 12 + len(label_encode("fake.com")) + 4
    rtype, rdlength = struct.unpack_from("!2xH6xH", answer, offset)
    assert (rtype, rdlength) == (TXT, 5)
    assert answer[offset + 12:] == b"\x04abcd"


def test_mx_preferences_increase():
    answer = build_answer("fake.com", [("a.fake.com", MX), ("b.fake.com", MX)], MX)
    offset = 12 + len(label_encode("fake.com")) + 4
    preferences = []
    for _ in range(2):
        rtype, rdlength = struct.unpack_from("!2xH6xH", answer, offset)
        assert rtype == MX
        preferences.append(struct.unpack_from("!H", answer, offset + 12)[0])
        offset += 12 + rdlength
    assert preferences == [100, 200]
    assert offset == len(answer)


def test_answer_parses_with_scapy():
    answer = build_answer(
        "2.3.4.5.IN-ADDR.ARPA",
        ["second.fake.com", ("this is a TXT record", TXT, 2)],
        PTR,
        txid=77,
    )
    parsed = DNS(answer)
    assert parsed.id == 77
    assert parsed.qr == 1
    assert parsed.qd[0].qtype == PTR
    assert parsed.an[0].type == CNAME
    assert parsed.an[1].type == TXT
    assert parsed.an[1].ttl == 2


def test_send_dns_query_uses_udp_port_53():
    session = CaptureSession(seed=4)
    conn = send_dns_query(session, "www.example.com")
    assert conn.transport == "udp"
    assert session.frame_count == 1
    pkt = Ether(session.records()[0].data)
    assert pkt[UDP].dport == 53
    assert pkt[DNSQR].qname == b"www.example.com."

    expected_txid = CaptureSession(seed=4).generator("dns_id").below(1 << 16)
    assert pkt[DNS].id == expected_txid


def test_send_dns_query_forces_udp():
    session = CaptureSession()
    conn = send_dns_query(session, "a.example", transport="tcp", dst_port=5353, txid=9)
    assert conn.transport == "udp"
    payload = _udp_payload(session.records()[0].data)
    assert payload == build_query("a.example", A, 9)


def test_send_dns_answer_comes_from_server():
    session = CaptureSession()
    conn = send_dns_answer(session, "www.fake.com", "1.2.3.4", txid=5, src_port=40000)
    frame = session.records()[0].data
    assert struct.unpack("!HH", frame[34:38]) == (53, 40000)
    assert _udp_payload(frame) == build_answer("www.fake.com", "1.2.3.4", A, 5)
    assert conn.server_endpoint.port == 53


def test_exchange_shares_transaction_id():
    session = CaptureSession(seed=8)
    send_dns_exchange(session, "www.fake.com", ["1.2.3.4", "5.6.7.8"])
    query, answer = (_udp_payload(record.data) for record in session.records())
    assert query[:2] == answer[:2]
    assert DNS(answer).ancount == 2

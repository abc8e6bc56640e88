import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from capture_session import CaptureSession, pcap_global_header  # type: ignore  # pylint: disable=import-error
from pseudo_stream import InjectionSession, inject  # type: ignore  # pylint: disable=import-error


class FakeSocket:
    def __init__(self):
        self.sent = []
        self.closed = False

    def send(self, pkt):
        self.sent.append(bytes(pkt))

    def close(self):
        self.closed = True


def _conversation(session):
    with session.connection(dst_port=80, src_port=40000, src_seq=1, dst_seq=2) as conn:
        conn.client(b"ping")
        conn.server(b"pong")


def test_frames_go_to_socket_not_buffer():
    sock = FakeSocket()
    with InjectionSession(socket=sock, seed=1) as session:
        _conversation(session)
        assert session.render() == pcap_global_header()
        assert session.records() == []
        assert session.sent == session.frame_count == 8
    assert sock.closed


def test_injected_bytes_match_captured_frames():
    sock = FakeSocket()
    with InjectionSession(socket=sock, seed=1, timestamp=0, wallclock=False) as session:
        _conversation(session)

    capture = CaptureSession(timestamp=0, seed=1)
    _conversation(capture)
    assert sock.sent == [record.data for record in capture.records()]


def test_injection_defaults_to_no_delay():
    session = InjectionSession(socket=FakeSocket())
    assert session.delay == 0


def test_inject_returns_frame_count():
    sock = FakeSocket()
    sent = inject(None, lambda session: session.connection(transport="udp").client(b"hello"), socket=sock)
    assert sent == 1
    assert sock.closed
    assert sock.sent[0].endswith(b"hello")

"""Capture session: clock, record buffer and pcap container output."""

from __future__ import annotations

import datetime
import logging
import struct
import time
from dataclasses import dataclass
from typing import Iterator, List, Mapping, Optional, Union

from scapy.all import RawPcapWriter

from pseudo_conn import Connection
from seq_generator import GeneratorRegistry, SequenceGenerator
from wire_utils import le32

PCAP_MAGIC = 0xA1B2C3D4
PCAP_VERSION_MAJOR = 2
PCAP_VERSION_MINOR = 4
PCAP_THISZONE = 0
PCAP_SIGFIGS = 0
PCAP_SNAPLEN = 0xFFFF
LINKTYPE_ETHERNET = 1
GLOBAL_HEADER_LEN = 24
RECORD_HEADER_LEN = 16

# 2010-01-01T00:00:00Z, so captures without an explicit start are reproducible.
DEFAULT_TIMESTAMP = 1262304000
DEFAULT_DELAY = 0.01
USEC_PER_SEC = 1_000_000

Timestamp = Union[int, float, datetime.datetime]


@dataclass
class FrameRecord:
    """A frame as stored in the capture, with its record timestamp."""

    ts_sec: int
    ts_usec: int
    data: bytes


def pcap_global_header(snaplen: int = PCAP_SNAPLEN, linktype: int = LINKTYPE_ETHERNET) -> bytes:
    return struct.pack(
        "<IHHiIII",
        PCAP_MAGIC,
        PCAP_VERSION_MAJOR,
        PCAP_VERSION_MINOR,
        PCAP_THISZONE,
        PCAP_SIGFIGS,
        snaplen,
        linktype,
    )


def record_header(ts_sec: int, ts_usec: int, length: int) -> bytes:
    return le32(ts_sec) + le32(ts_usec) + le32(length) + le32(length)


def split_records(body: bytes) -> Iterator[FrameRecord]:
    """Walk a run of pcap records (no global header)."""
    offset = 0
    while offset < len(body):
        if offset + RECORD_HEADER_LEN > len(body):
            raise ValueError(f"truncated record header at offset {offset}")
        ts_sec, ts_usec, incl_len, _ = struct.unpack_from("<IIII", body, offset)
        start = offset + RECORD_HEADER_LEN
        end = start + incl_len
        if end > len(body):
            raise ValueError(f"truncated record at offset {offset}")
        yield FrameRecord(ts_sec=ts_sec, ts_usec=ts_usec, data=bytes(body[start:end]))
        offset = end


def _to_microseconds(timestamp: Timestamp) -> int:
    if isinstance(timestamp, datetime.datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
        timestamp = timestamp.timestamp()
    return int(round(timestamp * USEC_PER_SEC))


def _delay_microseconds(seconds: float) -> int:
    if seconds < 0:
        raise ValueError(f"delay must not be negative, got {seconds}")
    return int(round(seconds * USEC_PER_SEC))


class CaptureSession:
    """Collects the frames of every connection created from it.

    The clock is kept in whole microseconds so repeated delays do not drift.
    Each frame advances it by ``delay`` before the frame is stamped.
    """

    def __init__(
        self,
        timestamp: Optional[Timestamp] = None,
        delay: float = DEFAULT_DELAY,
        *,
        seed: int = 0,
        seeds: Optional[Mapping[str, int]] = None,
        wallclock: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if timestamp is None:
            timestamp = time.time() if wallclock else DEFAULT_TIMESTAMP
        self._clock_us = _to_microseconds(timestamp)
        if self._clock_us < 0:
            raise ValueError(f"timestamp must not be negative, got {timestamp}")
        self._delay_us = _delay_microseconds(delay)
        self.body = bytearray()
        self.frame_count = 0
        self.logger = logger or logging.getLogger(__name__)
        self._generators = GeneratorRegistry(seed, seeds)

    # ------------------------------------------------------------------
    @property
    def timestamp(self) -> float:
        return self._clock_us / USEC_PER_SEC

    @property
    def clock(self):
        """Current time as ``(seconds, microseconds)``."""
        return divmod(self._clock_us, USEC_PER_SEC)

    @property
    def delay(self) -> float:
        return self._delay_us / USEC_PER_SEC

    @delay.setter
    def delay(self, seconds: float) -> None:
        self._delay_us = _delay_microseconds(seconds)

    @property
    def seed(self) -> int:
        return self._generators.seed

    def generator(self, name: str) -> SequenceGenerator:
        return self._generators.get(name)

    def connection(self, **options) -> Connection:
        return Connection(self, **options)

    def insert_delay(self, seconds: float) -> None:
        self._clock_us += _delay_microseconds(seconds)

    # ------------------------------------------------------------------
    def record_frame(self, frame: bytes) -> None:
        """Stamp ``frame`` with the advanced clock and store it."""
        self._clock_us += self._delay_us
        ts_sec, ts_usec = self.clock
        self._write_record(ts_sec, ts_usec, frame)
        self.frame_count += 1

    def _write_record(self, ts_sec: int, ts_usec: int, frame: bytes) -> None:
        self.body += record_header(ts_sec, ts_usec, len(frame))
        self.body += frame

    # ------------------------------------------------------------------
    def render(self) -> bytes:
        return pcap_global_header() + bytes(self.body)

    def records(self) -> List[FrameRecord]:
        return list(split_records(self.body))

    def write_pcap(self, path) -> int:
        """Write the capture to ``path``; returns the number of records."""
        count = 0
        with RawPcapWriter(str(path), linktype=LINKTYPE_ETHERNET) as pktdump:
            if not getattr(pktdump, "header_present", False):
                pktdump._write_header(None)
            for record in split_records(self.body):
                pktdump.write_packet(
                    record.data,
                    sec=record.ts_sec,
                    usec=record.ts_usec,
                    caplen=len(record.data),
                    wirelen=len(record.data),
                )
                count += 1
        self.logger.info("wrote %d frames to %s", count, path)
        return count

"""Send synthesized frames onto a live interface instead of a capture file."""

from __future__ import annotations

from typing import Callable, Optional

from scapy.all import Raw, conf

from capture_session import CaptureSession


class InjectionSession(CaptureSession):
    """A capture session whose records go out through a layer-2 socket.

    Only the bare Ethernet frame is transmitted; record headers are never
    built. Frames are not buffered, so ``render()`` yields an empty capture.
    """

    def __init__(
        self,
        interface: Optional[str] = None,
        *,
        socket=None,
        delay: float = 0,
        wallclock: bool = True,
        **kwargs,
    ) -> None:
        super().__init__(delay=delay, wallclock=wallclock, **kwargs)
        self.interface = interface
        self.sent = 0
        self._socket = socket

    def __enter__(self) -> "InjectionSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def socket(self):
        if self._socket is None:
            self.logger.info("opening layer-2 socket on %s", self.interface or "default interface")
            self._socket = conf.L2socket(iface=self.interface)
        return self._socket

    def _write_record(self, ts_sec: int, ts_usec: int, frame: bytes) -> None:
        self.socket.send(Raw(frame))
        self.sent += 1

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
            self.logger.info("injected %d frames", self.sent)


def inject(
    interface: Optional[str],
    script: Callable[[InjectionSession], None],
    **kwargs,
) -> int:
    """Run ``script`` against an injection session; returns frames sent."""
    with InjectionSession(interface, **kwargs) as session:
        script(session)
        return session.sent


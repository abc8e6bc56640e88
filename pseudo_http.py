"""HTTP/1.1 requests and responses written through a connection's emitters."""

from __future__ import annotations

import gzip
import zlib
from typing import Dict, Mapping, Optional, Sequence, Union

from pseudo_conn import Emitter, as_payload

DEFAULT_HOST = "pseudoconn.com"
DEFAULT_KEEPALIVE = 300
DEFAULT_RESPONSE_BODY = "Hello, World!"
HTTP_VERSION = "HTTP/1.1"

REASON_PHRASES = {
    100: "Continue",
    200: "OK",
    204: "No Content",
    206: "Partial Content",
    301: "Moved Permanently",
    304: "Not Modified",
    307: "Temporary Redirect",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    500: "Internal Server Error",
    501: "Not Implemented",
}
FALLBACK_REASON = "Received"

CONTENT_ENCODINGS = ("gzip", "deflate")

Body = Union[str, bytes, None]


def reason_phrase(status: int) -> str:
    return REASON_PHRASES.get(int(status), FALLBACK_REASON)


def encode_body(data: bytes, content_encoding: Optional[str]) -> bytes:
    if content_encoding is None:
        return data
    if content_encoding == "gzip":
        # fixed mtime keeps the gzip header reproducible
        return gzip.compress(data, mtime=0)
    if content_encoding == "deflate":
        return zlib.compress(data)
    raise ValueError(f"unsupported content encoding: {content_encoding!r}")


def _head(start_line: str, headers: Mapping[str, object]) -> bytes:
    lines = [start_line]
    lines.extend(f"{name}: {value}" for name, value in headers.items())
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


def chunk_encode(chunk: bytes) -> bytes:
    return f"{len(chunk):x}\r\n".encode("ascii") + chunk + b"\r\n"


def http_request(
    emitter: Emitter,
    verb: str = "GET",
    resource: str = "/",
    headers: Optional[Mapping[str, object]] = None,
    body: Body = None,
    keepalive: Optional[int] = DEFAULT_KEEPALIVE,
) -> None:
    """Send a request head and, when present, its body as a second write."""
    all_headers: Dict[str, object] = {"Host": DEFAULT_HOST}
    all_headers.update(headers or {})
    if keepalive:
        all_headers.setdefault("Keep-Alive", keepalive)
        all_headers.setdefault("Connection", "keep-alive")
    data = as_payload(body)
    if data:
        all_headers["Content-Length"] = len(data)
    emitter.emit_client(_head(f"{verb} {resource} {HTTP_VERSION}", all_headers))
    if data:
        emitter.emit_client(data)


def http_response(
    emitter: Emitter,
    status: int = 200,
    reason: Optional[str] = None,
    headers: Optional[Mapping[str, object]] = None,
    body: Union[Body, Sequence[Body]] = DEFAULT_RESPONSE_BODY,
    keepalive: Optional[int] = DEFAULT_KEEPALIVE,
    content_encoding: Optional[str] = None,
) -> None:
    """Send a response.

    A list or tuple ``body`` is sent with chunked transfer encoding, one
    write per chunk followed by the terminating zero-length chunk. With a
    ``content_encoding`` the chunks are joined and compressed first, and the
    compressed body goes out as a single chunk.
    """
    all_headers: Dict[str, object] = dict(headers or {})
    chunked = isinstance(body, (list, tuple))
    if chunked:
        chunks = [as_payload(chunk) for chunk in body]
    else:
        chunks = [as_payload(body)]
    if content_encoding is not None:
        chunks = [encode_body(b"".join(chunks), content_encoding)]
        all_headers["Content-Encoding"] = content_encoding
    if keepalive:
        all_headers.setdefault("Connection", "Keep-Alive")
    if chunked:
        all_headers["Transfer-Encoding"] = "chunked"
    elif chunks[0]:
        all_headers["Content-Length"] = len(chunks[0])

    reason = reason or reason_phrase(status)
    emitter.emit_server(_head(f"{HTTP_VERSION} {status} {reason}", all_headers))

    if chunked:
        for chunk in chunks:
            # a zero-length chunk would end the body early
            if chunk:
                emitter.emit_server(chunk_encode(chunk))
        emitter.emit_server(b"0\r\n\r\n")
    elif chunks[0]:
        emitter.emit_server(chunks[0])


def http_transaction(
    emitter: Emitter,
    request: Optional[Mapping[str, object]] = None,
    response: Optional[Mapping[str, object]] = None,
) -> None:
    http_request(emitter, **(request or {}))
    http_response(emitter, **(response or {}))

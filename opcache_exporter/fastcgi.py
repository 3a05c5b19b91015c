"""
Opcache Exporter - FastCGI Client Module

Talks to PHP-FPM over the native FastCGI protocol (no web server proxy needed).

Features:
- Supports Unix sockets (unix:///path) and TCP (tcp://host:port)
- One connection per request, closed on every exit path
- Whole exchange bounded by a caller-supplied deadline
"""

import asyncio
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .errors import (
    ApplicationError,
    FramingError,
    ScrapeTimeoutError,
    UpstreamConnectionError,
)

# =============================================================================
# FastCGI Protocol Implementation
# =============================================================================
# FastCGI protocol spec: https://fastcgi-archives.github.io/FastCGI_Specification.html

FCGI_VERSION = 1

# FastCGI record types
FCGI_BEGIN_REQUEST = 1
FCGI_END_REQUEST = 3
FCGI_PARAMS = 4
FCGI_STDIN = 5
FCGI_STDOUT = 6
FCGI_STDERR = 7

# FastCGI roles
FCGI_RESPONDER = 1

# END_REQUEST protocol status values
FCGI_REQUEST_COMPLETE = 0
FCGI_CANT_MPX_CONN = 1
FCGI_OVERLOADED = 2
FCGI_UNKNOWN_ROLE = 3

PROTOCOL_STATUS_NAMES = {
    FCGI_CANT_MPX_CONN: 'FCGI_CANT_MPX_CONN',
    FCGI_OVERLOADED: 'FCGI_OVERLOADED',
    FCGI_UNKNOWN_ROLE: 'FCGI_UNKNOWN_ROLE',
}

# Record header format: version(1) + type(1) + requestId(2) + contentLength(2) + paddingLength(1) + reserved(1)
FCGI_HEADER_FORMAT = '>BBHHBx'
FCGI_HEADER_SIZE = 8
FCGI_MAX_CONTENT_LENGTH = 0xFFFF

# Request id is fixed: one request per connection
REQUEST_ID = 1

# Upper bound for stdout plus stderr payload of one response
MAX_RESPONSE_SIZE = 16 * 1024 * 1024

DEFAULT_TIMEOUT = 5.0


@dataclass(frozen=True)
class FastCGIRecord:
    """A single decoded FastCGI record"""
    type: int
    request_id: int
    content: bytes
    offset: int = 0


@dataclass(frozen=True)
class FastCGIResponse:
    """Result of a completed request: reassembled stdout plus diagnostics"""
    stdout: bytes
    stderr: bytes = b''
    app_status: int = 0
    protocol_status: int = FCGI_REQUEST_COMPLETE

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode('utf-8', errors='replace').strip()


def build_record(record_type: int, content: bytes, request_id: int = REQUEST_ID) -> bytes:
    """Build a FastCGI record with header, content and padding

    Args:
        record_type: FCGI_* type constant
        content: Record payload (at most 65535 bytes)
        request_id: Request ID

    Returns:
        Complete record bytes
    """
    content_length = len(content)
    if content_length > FCGI_MAX_CONTENT_LENGTH:
        raise ValueError(f"Record content too large: {content_length} bytes")
    # Pad to 8-byte boundary
    padding_length = (8 - (content_length % 8)) % 8

    header = struct.pack(
        FCGI_HEADER_FORMAT,
        FCGI_VERSION,
        record_type,
        request_id,
        content_length,
        padding_length
    )

    return header + content + (b'\x00' * padding_length)


def build_stream(record_type: int, data: bytes, request_id: int = REQUEST_ID) -> bytes:
    """Split a stream into records and append the empty terminating record"""
    records = [
        build_record(record_type, data[start:start + FCGI_MAX_CONTENT_LENGTH], request_id)
        for start in range(0, len(data), FCGI_MAX_CONTENT_LENGTH)
    ]
    records.append(build_record(record_type, b'', request_id))
    return b''.join(records)


def build_begin_request(role: int = FCGI_RESPONDER, flags: int = 0, request_id: int = REQUEST_ID) -> bytes:
    """Build FCGI_BEGIN_REQUEST record

    Body: role(2) + flags(1) + reserved(5). Flags 0 lets PHP-FPM close
    the connection after END_REQUEST.
    """
    body = struct.pack('>HB5x', role, flags)
    return build_record(FCGI_BEGIN_REQUEST, body, request_id)


def _encode_length(length: int) -> bytes:
    if length < 128:
        return struct.pack('B', length)
    return struct.pack('>I', length | 0x80000000)


def encode_params(params: Dict[str, str]) -> bytes:
    """Encode name-value pairs for FCGI_PARAMS

    FastCGI uses a compact encoding for name-value lengths:
    - If length < 128: single byte
    - Otherwise: 4 bytes with high bit set
    """
    chunks = []
    for name, value in params.items():
        name_bytes = name.encode('utf-8')
        value_bytes = value.encode('utf-8')
        chunks.append(_encode_length(len(name_bytes)))
        chunks.append(_encode_length(len(value_bytes)))
        chunks.append(name_bytes)
        chunks.append(value_bytes)
    return b''.join(chunks)


def build_request(params: Dict[str, str], body: bytes = b'') -> bytes:
    """Build the full request byte sequence: BEGIN_REQUEST, PARAMS, STDIN"""
    return (
        build_begin_request(FCGI_RESPONDER, 0, REQUEST_ID)
        + build_stream(FCGI_PARAMS, encode_params(params))
        + build_stream(FCGI_STDIN, body)
    )


def parse_socket_uri(uri: str) -> Tuple[str, Any]:
    """Parse socket URI into (socket_type, address)

    Args:
        uri: 'unix:///var/run/php-fpm.sock', 'tcp://127.0.0.1:9000' or '127.0.0.1:9000'

    Returns:
        Tuple of ('unix', '/path/to/socket') or ('tcp', ('host', port))

    Raises:
        ValueError: If URI format is invalid
    """
    if uri.startswith('unix://'):
        path = uri[7:]
        if not path:
            raise ValueError(f"Unix socket URI must include a path: {uri}")
        return ('unix', path)

    host_port = uri[6:] if uri.startswith('tcp://') else uri
    if '://' in host_port or ':' not in host_port:
        raise ValueError(f"Invalid socket URI: {uri}. Use unix:// or tcp://host:port")
    host, port_str = host_port.rsplit(':', 1)
    host = host.strip('[]')
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port in socket URI: {uri}")
    if not host or not 0 < port < 65536:
        raise ValueError(f"Invalid host or port in socket URI: {uri}")
    return ('tcp', (host, port))


class _RecordReader:
    """Reads records for REQUEST_ID, tracking the byte offset for diagnostics"""

    def __init__(self, reader: asyncio.StreamReader, address: str):
        self.reader = reader
        self.address = address
        self.offset = 0

    async def read_record(self) -> FastCGIRecord:
        record_offset = self.offset
        try:
            header = await self.reader.readexactly(FCGI_HEADER_SIZE)
        except asyncio.IncompleteReadError as e:
            if not e.partial:
                raise UpstreamConnectionError(
                    "Connection closed before END_REQUEST",
                    {'address': self.address, 'offset': record_offset}
                ) from e
            raise FramingError(
                f"Truncated record header ({len(e.partial)}/{FCGI_HEADER_SIZE} bytes)",
                {'address': self.address, 'offset': record_offset}
            ) from e
        self.offset += FCGI_HEADER_SIZE

        version, record_type, request_id, content_length, padding_length = struct.unpack(
            FCGI_HEADER_FORMAT, header
        )

        if version != FCGI_VERSION:
            raise FramingError(
                f"Unsupported FastCGI version: {version}",
                {'address': self.address, 'offset': record_offset}
            )
        if request_id != REQUEST_ID:
            raise FramingError(
                f"Unexpected request id {request_id} (record type {record_type})",
                {'address': self.address, 'offset': record_offset}
            )

        # Read content + padding, keep only the content
        total_length = content_length + padding_length
        content = b''
        if total_length > 0:
            try:
                data = await self.reader.readexactly(total_length)
            except asyncio.IncompleteReadError as e:
                raise FramingError(
                    f"Record body truncated ({len(e.partial)}/{total_length} bytes)",
                    {'address': self.address, 'offset': record_offset, 'record_type': record_type}
                ) from e
            content = data[:content_length]
            self.offset += total_length

        return FastCGIRecord(record_type, request_id, content, record_offset)


async def _open_connection(socket_type: str, address: Any):
    if socket_type == 'unix':
        return await asyncio.open_unix_connection(address)
    host, port = address
    return await asyncio.open_connection(host, port)


async def _exchange(socket_uri: str, params: Dict[str, str], body: bytes) -> FastCGIResponse:
    try:
        socket_type, address = parse_socket_uri(socket_uri)
    except ValueError as e:
        raise UpstreamConnectionError(str(e), {'address': socket_uri}) from e

    try:
        reader, writer = await _open_connection(socket_type, address)
    except OSError as e:
        raise UpstreamConnectionError(
            f"Cannot connect to {socket_uri}: {e}", {'address': socket_uri}
        ) from e

    try:
        writer.write(build_request(params, body))
        await writer.drain()

        records = _RecordReader(reader, socket_uri)
        stdout_chunks = []
        stderr_chunks = []
        # stdout and stderr payloads share one bound
        received = 0

        while True:
            record = await records.read_record()

            if record.type in (FCGI_STDOUT, FCGI_STDERR):
                received += len(record.content)
                if received > MAX_RESPONSE_SIZE:
                    raise FramingError(
                        f"Response exceeds {MAX_RESPONSE_SIZE} bytes",
                        {'address': socket_uri, 'offset': record.offset, 'record_type': record.type}
                    )
                if record.type == FCGI_STDOUT:
                    stdout_chunks.append(record.content)
                else:
                    stderr_chunks.append(record.content)
            elif record.type == FCGI_END_REQUEST:
                if len(record.content) < 8:
                    raise FramingError(
                        f"END_REQUEST body too short: {len(record.content)} bytes",
                        {'address': socket_uri, 'offset': record.offset}
                    )
                app_status, protocol_status = struct.unpack('>IB3x', record.content[:8])
                break
            # Ignore other record types
    except OSError as e:
        raise UpstreamConnectionError(
            f"Connection to {socket_uri} failed: {e}", {'address': socket_uri}
        ) from e
    finally:
        writer.close()

    return FastCGIResponse(
        stdout=b''.join(stdout_chunks),
        stderr=b''.join(stderr_chunks),
        app_status=app_status,
        protocol_status=protocol_status,
    )


async def fetch(socket_uri: str, params: Dict[str, str], body: bytes = b'',
                timeout: Optional[float] = DEFAULT_TIMEOUT) -> FastCGIResponse:
    """Run one FastCGI request/response cycle against PHP-FPM

    Args:
        socket_uri: Socket URI (unix:///path or tcp://host:port)
        params: CGI parameters to send
        body: STDIN payload (empty for GET)
        timeout: Deadline in seconds for connect plus response, None to wait forever

    Returns:
        FastCGIResponse with stdout and captured stderr

    Raises:
        UpstreamConnectionError: Refused, unreachable or dropped connection
        ScrapeTimeoutError: Deadline exceeded
        FramingError: Malformed record from PHP-FPM
        ApplicationError: Nonzero application or protocol status
    """
    try:
        response = await asyncio.wait_for(_exchange(socket_uri, params, body), timeout)
    except asyncio.TimeoutError as e:
        raise ScrapeTimeoutError(
            f"No response from {socket_uri} within {timeout}s",
            {'address': socket_uri, 'timeout': timeout}
        ) from e

    if response.protocol_status != FCGI_REQUEST_COMPLETE:
        name = PROTOCOL_STATUS_NAMES.get(response.protocol_status, str(response.protocol_status))
        raise ApplicationError(
            f"PHP-FPM rejected the request: {name}",
            {'address': socket_uri, 'protocol_status': response.protocol_status},
            stderr=response.stderr_text,
        )
    if response.app_status != 0:
        raise ApplicationError(
            f"PHP-FPM exited with status {response.app_status}",
            {'address': socket_uri, 'app_status': response.app_status, 'stderr': response.stderr_text},
            stderr=response.stderr_text,
        )
    return response

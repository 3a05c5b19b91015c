"""Shared pytest configuration and fixtures."""

import asyncio
import copy
import io
import json
import socket
import struct

import pytest

from opcache_exporter.fastcgi import (
    FCGI_END_REQUEST,
    FCGI_STDERR,
    FCGI_STDIN,
    FCGI_STDOUT,
    build_record,
    build_stream,
)
from opcache_exporter.logger import Logger
from opcache_exporter.request import ScrapeConfig


OPCACHE_STATUS = {
    "opcache_enabled": True,
    "cache_full": False,
    "restart_pending": False,
    "restart_in_progress": False,
    "memory_usage": {
        "used_memory": 9216480,
        "free_memory": 125001248,
        "wasted_memory": 0,
        "current_wasted_percentage": 0,
    },
    "interned_strings_usage": {
        "buffer_size": 6291008,
        "used_memory": 421432,
        "free_memory": 5869576,
        "number_of_strings": 8521,
    },
    "opcache_statistics": {
        "num_cached_scripts": 2,
        "num_cached_keys": 3,
        "max_cached_keys": 16229,
        "hits": 1024,
        "start_time": 1704448800,
        "last_restart_time": 0,
        "oom_restarts": 0,
        "hash_restarts": 0,
        "manual_restarts": 1,
        "misses": 12,
        "blacklist_misses": 0,
        "blacklist_miss_ratio": 0,
        "opcache_hit_rate": 98.84169884169884,
    },
    "scripts": {
        "/var/www/opcache.php": {
            "full_path": "/var/www/opcache.php",
            "hits": 41,
            "memory_consumption": 1528,
            "last_used": "Fri Jan  5 10:42:07 2024",
            "last_used_timestamp": 1704451327,
            "timestamp": 1704448790,
        },
        "/var/www/index.php": {
            "full_path": "/var/www/index.php",
            "hits": 983,
            "memory_consumption": 2016.5,
            "last_used": "Sun Jan 14 23:05:59 2024",
            "last_used_timestamp": 1705273559,
            "timestamp": 1704448790,
        },
    },
    "jit": {"enabled": False},
}


def cgi_response(body, headers=b"X-Powered-By: PHP/8.2.14\r\nContent-type: application/json\r\n"):
    """Wrap a body in a CGI header block"""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return headers + b"\r\n" + body


def end_request(app_status=0, protocol_status=0, request_id=1):
    return build_record(FCGI_END_REQUEST, struct.pack(">IB3x", app_status, protocol_status), request_id)


def fpm_reply(stdout=b"", stderr=b"", app_status=0, protocol_status=0):
    """Bytes PHP-FPM writes back for one request"""
    reply = build_stream(FCGI_STDOUT, stdout)
    if stderr:
        reply += build_stream(FCGI_STDERR, stderr)
    return reply + end_request(app_status, protocol_status)


def decode_params(data):
    """Decode a captured FCGI_PARAMS payload back into a dict"""
    params = {}
    pos = 0

    def read_length():
        nonlocal pos
        if data[pos] & 0x80:
            (length,) = struct.unpack(">I", data[pos:pos + 4])
            pos += 4
            return length & 0x7FFFFFFF
        length = data[pos]
        pos += 1
        return length

    while pos < len(data):
        name_len = read_length()
        value_len = read_length()
        name = data[pos:pos + name_len].decode("utf-8")
        pos += name_len
        value = data[pos:pos + value_len].decode("utf-8")
        pos += value_len
        params[name] = value
    return params


class FakeFPM:
    """Minimal PHP-FPM stand-in on an ephemeral TCP port

    Records every request record it receives, waits for the empty STDIN
    record, then writes `response` and closes. With hang=True it never
    answers and waits for the client to close instead.
    """

    def __init__(self, response=b"", hang=False):
        self.response = response
        self.hang = hang
        self.records = []
        self.connections = 0
        self.client_closed = asyncio.Event()
        self.server = None
        self.uri = None

    async def _handle(self, reader, writer):
        self.connections += 1
        try:
            while True:
                header = await reader.readexactly(8)
                _version, record_type, request_id, content_length, padding_length = struct.unpack(
                    ">BBHHBx", header
                )
                data = await reader.readexactly(content_length + padding_length)
                self.records.append((record_type, request_id, data[:content_length]))
                if record_type == FCGI_STDIN and content_length == 0:
                    break
            if self.hang:
                await reader.read()
                self.client_closed.set()
                return
            writer.write(self.response)
            await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            self.client_closed.set()
        finally:
            writer.close()

    def stream(self, record_type):
        return b"".join(content for rtype, _rid, content in self.records if rtype == record_type)

    async def __aenter__(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        port = self.server.sockets[0].getsockname()[1]
        self.uri = f"tcp://127.0.0.1:{port}"
        return self

    async def __aexit__(self, *exc_info):
        self.server.close()
        await self.server.wait_closed()


@pytest.fixture
def opcache_status():
    """Fresh copy of a realistic opcache_get_status() payload."""
    return copy.deepcopy(OPCACHE_STATUS)


@pytest.fixture
def opcache_body(opcache_status):
    return cgi_response(json.dumps(opcache_status))


@pytest.fixture
def log_stream():
    return io.StringIO()


@pytest.fixture
def logger(log_stream):
    """Create logger for tests writing into an in-memory stream."""
    return Logger(debug=True, component="Test", stream=log_stream)


@pytest.fixture
def scrape_config():
    return ScrapeConfig()


@pytest.fixture
def closed_port_uri():
    """URI of a local TCP port with nothing listening."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"tcp://127.0.0.1:{port}"

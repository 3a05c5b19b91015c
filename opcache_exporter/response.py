"""
Opcache Exporter - Response Parser Module

Splits the CGI response PHP-FPM writes to stdout and decodes its body.
PHP-FPM returns: "X-Powered-By: PHP/8.2\r\nContent-Type: ...\r\n\r\n{json}"
"""

from typing import Dict

from pydantic import ValidationError

from .errors import InvalidEncodingError, InvalidPayloadError, MalformedResponseError
from .snapshot import OpcacheSnapshot

HEADER_SEPARATOR = b'\r\n\r\n'

# Bytes of body quoted in error context
SNIPPET_LENGTH = 200


def split_response(stdout: bytes) -> tuple:
    """Split a CGI response at the first blank line

    Returns:
        Tuple of (header_block, body) as bytes

    Raises:
        MalformedResponseError: If there is no blank-line separator
    """
    headers, separator, body = stdout.partition(HEADER_SEPARATOR)
    if not separator:
        raise MalformedResponseError(
            "No header/body separator in response",
            {'length': len(stdout), 'snippet': stdout[:SNIPPET_LENGTH]}
        )
    return headers, body


def parse_headers(header_block: bytes) -> Dict[str, str]:
    """Parse `Name: value` lines into a dict keyed by lower-cased name"""
    headers = {}
    for line in header_block.decode('latin-1').split('\r\n'):
        if ':' not in line:
            continue
        name, value = line.split(':', 1)
        headers[name.strip().lower()] = value.strip()
    return headers


def _format_location(loc: tuple) -> str:
    return '.'.join(str(part) for part in loc) or '<root>'


def parse_response(stdout: bytes) -> OpcacheSnapshot:
    """Decode PHP-FPM stdout into an OpcacheSnapshot

    Args:
        stdout: Reassembled FCGI_STDOUT stream

    Returns:
        Parsed OpcacheSnapshot

    Raises:
        MalformedResponseError: Missing header/body separator
        InvalidEncodingError: Body is not UTF-8
        InvalidPayloadError: Body is not JSON of the expected shape
    """
    header_block, body = split_response(stdout)
    context = {}
    status = parse_headers(header_block).get('status')
    if status:
        # Only present when PHP-FPM reports something other than 200
        context['status'] = status

    try:
        text = body.decode('utf-8')
    except UnicodeDecodeError as e:
        context.update({'offset': e.start, 'snippet': body[:SNIPPET_LENGTH]})
        raise InvalidEncodingError("Response body is not valid UTF-8", context) from e

    try:
        return OpcacheSnapshot.model_validate_json(text)
    except ValidationError as e:
        first = e.errors()[0]
        context.update({
            'field': _format_location(first['loc']),
            'errors': e.error_count(),
            'snippet': text[:SNIPPET_LENGTH],
        })
        raise InvalidPayloadError(
            f"Response body does not match opcache status: {first['msg']}", context
        ) from e

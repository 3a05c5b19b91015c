"""
Opcache Exporter - Error Module

Failure kinds of a single scrape. Every error carries a `kind` and a
`context` dict so callers can branch on the kind without inspecting messages.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Closed set of scrape failure kinds"""
    CONFIGURATION = 'configuration'
    CONNECTION = 'connection'
    TIMEOUT = 'timeout'
    FRAMING = 'framing'
    APPLICATION = 'application'
    MALFORMED_RESPONSE = 'malformed_response'
    INVALID_ENCODING = 'invalid_encoding'
    INVALID_PAYLOAD = 'invalid_payload'


class ScrapeError(Exception):
    """Base class for all scrape failures"""
    kind: ErrorKind

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def describe(self) -> str:
        """One-line description with kind and context for logs"""
        details = ', '.join(f"{key}={value!r}" for key, value in self.context.items())
        if details:
            return f"[{self.kind.value}] {self.message} ({details})"
        return f"[{self.kind.value}] {self.message}"


class ConfigurationError(ScrapeError):
    """Script path cannot be turned into CGI parameters"""
    kind = ErrorKind.CONFIGURATION


class UpstreamConnectionError(ScrapeError):
    """PHP-FPM refused, unreachable, or dropped the connection"""
    kind = ErrorKind.CONNECTION


class ScrapeTimeoutError(ScrapeError):
    """Deadline exceeded before END_REQUEST arrived"""
    kind = ErrorKind.TIMEOUT


class FramingError(ScrapeError):
    """Malformed FastCGI record"""
    kind = ErrorKind.FRAMING


class ApplicationError(ScrapeError):
    """PHP-FPM ended the request with a nonzero status"""
    kind = ErrorKind.APPLICATION

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None,
                 stderr: str = ''):
        super().__init__(message, context)
        self.stderr = stderr


class MalformedResponseError(ScrapeError):
    """CGI response has no header/body separator"""
    kind = ErrorKind.MALFORMED_RESPONSE


class DecodeError(ScrapeError):
    """Response body could not be decoded into a snapshot"""
    kind = ErrorKind.INVALID_PAYLOAD


class InvalidEncodingError(DecodeError):
    """Response body is not valid UTF-8"""
    kind = ErrorKind.INVALID_ENCODING


class InvalidPayloadError(DecodeError):
    """Response body is not JSON matching the opcache status schema"""
    kind = ErrorKind.INVALID_PAYLOAD


def cause_chain(error: BaseException) -> list:
    """List the chained causes of an exception, outermost first

    Follows __cause__, then __context__ unless suppressed.
    """
    chain = []
    seen = {id(error)}
    current = error.__cause__ or (None if error.__suppress_context__ else error.__context__)
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        chain.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or (None if current.__suppress_context__ else current.__context__)
    return chain

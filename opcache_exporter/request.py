"""
Opcache Exporter - Request Builder Module

Turns a ScrapeConfig into the CGI variables sent as FastCGI PARAMS.
"""

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, Optional

from .errors import ConfigurationError

DEFAULT_FASTCGI_ADDRESS = 'tcp://127.0.0.1:9000'
DEFAULT_SCRIPT_FILENAME = '/var/www/opcache.php'
DEFAULT_REQUEST_URI = '/opcache'
DEFAULT_SERVER_NAME = 'opcache-exporter'

REQUEST_METHODS = ('GET', 'POST')


@dataclass(frozen=True)
class ScrapeConfig:
    """Everything needed to scrape one PHP-FPM endpoint

    Shared read-only between concurrent scrapes.
    """
    fastcgi_address: str = DEFAULT_FASTCGI_ADDRESS
    request_method: str = 'GET'
    script_filename: str = DEFAULT_SCRIPT_FILENAME
    request_uri: str = DEFAULT_REQUEST_URI
    document_uri: Optional[str] = None
    remote_addr: str = '127.0.0.1'
    remote_port: int = 12345
    server_addr: str = '127.0.0.1'
    server_port: int = 80
    server_name: str = DEFAULT_SERVER_NAME
    http_host: Optional[str] = None

    @property
    def effective_document_uri(self) -> str:
        return self.document_uri or self.request_uri

    @property
    def effective_http_host(self) -> str:
        return self.http_host or self.server_name


def split_script_path(script_filename: str) -> tuple:
    """Split a script path into (document_root, script_name)

    Args:
        script_filename: Absolute or bare path of the PHP script

    Returns:
        Tuple of ('/var/www', 'opcache.php'); a bare file name gets root '/'

    Raises:
        ConfigurationError: If the path is empty, names a directory,
            or is not representable as UTF-8
    """
    if not script_filename:
        raise ConfigurationError("Script path is empty", {'script_filename': script_filename})

    try:
        script_filename.encode('utf-8')
    except UnicodeEncodeError as e:
        raise ConfigurationError(
            "Script path is not valid UTF-8",
            {'script_filename': script_filename, 'position': e.start}
        ) from e

    if script_filename.endswith('/'):
        raise ConfigurationError("Script path names a directory", {'script_filename': script_filename})

    path = PurePosixPath(script_filename)
    if not path.name or path.name in ('.', '..'):
        raise ConfigurationError("Script path has no file name", {'script_filename': script_filename})

    parent = str(path.parent)
    if parent in ('', '.'):
        parent = '/'
    return parent, path.name


TEXT_FIELDS = (
    'fastcgi_address', 'request_method', 'script_filename', 'request_uri',
    'document_uri', 'remote_addr', 'server_addr', 'server_name', 'http_host',
)


def check_encodable(config: ScrapeConfig):
    """Reject text fields that cannot be sent as UTF-8 (lone surrogates)

    Raises:
        ConfigurationError: Naming the first offending field
    """
    for name in TEXT_FIELDS:
        value = getattr(config, name)
        if value is None:
            continue
        try:
            value.encode('utf-8')
        except UnicodeEncodeError as e:
            raise ConfigurationError(
                f"{name} is not valid UTF-8",
                {'field': name, 'value': value, 'position': e.start}
            ) from e


def build_params(config: ScrapeConfig) -> Dict[str, str]:
    """Build the CGI parameter set for one status request

    Pure function of the configuration; a fresh dict per call.

    Args:
        config: Scrape configuration

    Returns:
        Ordered dict of CGI variable name -> value

    Raises:
        ConfigurationError: If the script path cannot be decomposed
            or a field is not representable as UTF-8
    """
    check_encodable(config)
    document_root, script_name = split_script_path(config.script_filename)

    return {
        'REQUEST_METHOD': config.request_method,
        'DOCUMENT_ROOT': document_root,
        'SCRIPT_NAME': script_name,
        'SCRIPT_FILENAME': config.script_filename,
        'REQUEST_URI': config.request_uri,
        'DOCUMENT_URI': config.effective_document_uri,
        'REMOTE_ADDR': config.remote_addr,
        'REMOTE_PORT': str(config.remote_port),
        'SERVER_ADDR': config.server_addr,
        'SERVER_PORT': str(config.server_port),
        'SERVER_NAME': config.server_name,
        'CONTENT_TYPE': '',
        'CONTENT_LENGTH': '0',
        'HTTP_HOST': config.effective_http_host,
    }

"""
Opcache Exporter - Configuration Module

Handles loading and validation of exporter configuration.
Sources, lowest to highest priority: defaults, key=value file,
OPCACHE_EXPORTER_* environment variables, command-line overrides.
"""

import os
from typing import Dict, Optional

from .errors import ConfigurationError
from .fastcgi import DEFAULT_TIMEOUT, parse_socket_uri
from .request import (
    DEFAULT_FASTCGI_ADDRESS,
    DEFAULT_REQUEST_URI,
    DEFAULT_SCRIPT_FILENAME,
    DEFAULT_SERVER_NAME,
    REQUEST_METHODS,
    ScrapeConfig,
    build_params,
)

# Default configuration file path
CONFIG_FILE = "/etc/opcache-exporter/exporter.conf"

ENV_PREFIX = "OPCACHE_EXPORTER_"

CONFIG_KEYS = (
    'listen_address', 'listen_port', 'metrics_path',
    'fastcgi_address', 'request_method', 'script_filename',
    'request_uri', 'document_uri', 'remote_addr', 'remote_port',
    'server_addr', 'server_port', 'server_name', 'http_host',
    'scrape_timeout', 'debug',
)


class ConfigError(Exception):
    """Configuration error"""
    pass


def load_config(config_file: Optional[str] = None, overrides: Optional[Dict[str, str]] = None,
                environ: Optional[Dict[str, str]] = None) -> dict:
    """Load and validate configuration

    Args:
        config_file: Path to config file; if None, the default path is used
            when it exists
        overrides: Raw values from the command line (None values ignored)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        dict: Configuration with all keys and defaults applied

    Raises:
        ConfigError: If a file is missing or a value is invalid
    """
    raw = {}

    if config_file:
        if not os.path.exists(config_file):
            raise ConfigError(f"Configuration file not found: {config_file}")
        raw.update(_parse_config_file(config_file))
    elif os.path.exists(CONFIG_FILE):
        raw.update(_parse_config_file(CONFIG_FILE))

    raw.update(_read_environment(os.environ if environ is None else environ))
    raw.update({key: value for key, value in (overrides or {}).items() if value is not None})

    unknown = sorted(set(raw) - set(CONFIG_KEYS))
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

    config = _apply_defaults(raw)
    _validate_config(config)
    return config


def _parse_config_file(filepath: str) -> dict:
    """Parse key=value config file

    Args:
        filepath: Path to config file

    Returns:
        dict: Raw configuration values
    """
    config = {}

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                # Skip comments and empty lines
                if not line or line.startswith('#'):
                    continue
                if '=' not in line:
                    raise ConfigError(f"{filepath}:{line_number}: expected key=value, got {line!r}")
                key, value = line.split('=', 1)
                config[key.strip()] = value.strip()
    except OSError as e:
        raise ConfigError(f"Could not read config file {filepath}: {e}") from e

    return config


def _read_environment(environ: Dict[str, str]) -> dict:
    """Collect OPCACHE_EXPORTER_<KEY> variables for known keys"""
    return {
        key: environ[ENV_PREFIX + key.upper()]
        for key in CONFIG_KEYS
        if ENV_PREFIX + key.upper() in environ
    }


def _to_int(config: dict, key: str, default: str) -> int:
    value = config.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {value!r}")


def _to_float(config: dict, key: str, default: str) -> float:
    value = config.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}")


def _apply_defaults(config: dict) -> dict:
    """Apply default values for optional settings

    Args:
        config: Raw configuration values

    Returns:
        dict: Typed configuration with defaults applied
    """
    return {
        # HTTP listener
        'listen_address': config.get('listen_address', '0.0.0.0'),
        'listen_port': _to_int(config, 'listen_port', '32221'),
        'metrics_path': config.get('metrics_path', '/metrics'),
        'debug': str(config.get('debug', 'false')).lower() == 'true',

        # FastCGI target: unix:///run/php/php-fpm.sock or tcp://127.0.0.1:9000
        'fastcgi_address': config.get('fastcgi_address', DEFAULT_FASTCGI_ADDRESS),
        'scrape_timeout': _to_float(config, 'scrape_timeout', str(DEFAULT_TIMEOUT)),

        # CGI request sent to the status script
        'request_method': config.get('request_method', 'GET').upper(),
        'script_filename': config.get('script_filename', DEFAULT_SCRIPT_FILENAME),
        'request_uri': config.get('request_uri', DEFAULT_REQUEST_URI),
        # Empty means "same as request_uri"
        'document_uri': config.get('document_uri') or None,
        'remote_addr': config.get('remote_addr', '127.0.0.1'),
        'remote_port': _to_int(config, 'remote_port', '12345'),
        'server_addr': config.get('server_addr', '127.0.0.1'),
        'server_port': _to_int(config, 'server_port', '80'),
        'server_name': config.get('server_name', DEFAULT_SERVER_NAME),
        # Empty means "same as server_name"
        'http_host': config.get('http_host') or None,
    }


def _validate_config(config: dict) -> None:
    """Validate configuration

    Args:
        config: Configuration dict to validate

    Raises:
        ConfigError: If a value is unusable
    """
    for key in ('listen_port', 'remote_port', 'server_port'):
        if not 0 < config[key] < 65536:
            raise ConfigError(f"{key} must be between 1 and 65535, got {config[key]}")

    if config['scrape_timeout'] <= 0:
        raise ConfigError(f"scrape_timeout must be positive, got {config['scrape_timeout']}")

    if config['request_method'] not in REQUEST_METHODS:
        raise ConfigError(
            f"request_method must be one of {', '.join(REQUEST_METHODS)}, got {config['request_method']!r}"
        )

    if not config['metrics_path'].startswith('/'):
        raise ConfigError(f"metrics_path must start with '/', got {config['metrics_path']!r}")

    try:
        parse_socket_uri(config['fastcgi_address'])
    except ValueError as e:
        raise ConfigError(str(e)) from e

    # Fail at startup rather than on every scrape
    try:
        build_params(scrape_config_from(config))
    except ConfigurationError as e:
        raise ConfigError(e.describe()) from e


def scrape_config_from(config: dict) -> ScrapeConfig:
    """Build the immutable ScrapeConfig from a loaded configuration dict"""
    return ScrapeConfig(
        fastcgi_address=config['fastcgi_address'],
        request_method=config['request_method'],
        script_filename=config['script_filename'],
        request_uri=config['request_uri'],
        document_uri=config['document_uri'],
        remote_addr=config['remote_addr'],
        remote_port=config['remote_port'],
        server_addr=config['server_addr'],
        server_port=config['server_port'],
        server_name=config['server_name'],
        http_host=config['http_host'],
    )

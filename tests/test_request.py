"""Tests for the CGI parameter builder."""

import pytest

from opcache_exporter.errors import ConfigurationError, ErrorKind
from opcache_exporter.request import ScrapeConfig, build_params, split_script_path


EXPECTED_KEYS = {
    "REQUEST_METHOD", "DOCUMENT_ROOT", "SCRIPT_NAME", "SCRIPT_FILENAME",
    "REQUEST_URI", "DOCUMENT_URI", "REMOTE_ADDR", "REMOTE_PORT",
    "SERVER_ADDR", "SERVER_PORT", "SERVER_NAME", "CONTENT_TYPE",
    "CONTENT_LENGTH", "HTTP_HOST",
}


def test_defaults():
    params = build_params(ScrapeConfig())

    assert set(params) == EXPECTED_KEYS
    assert params["REQUEST_METHOD"] == "GET"
    assert params["DOCUMENT_ROOT"] == "/var/www"
    assert params["SCRIPT_NAME"] == "opcache.php"
    assert params["SCRIPT_FILENAME"] == "/var/www/opcache.php"
    assert params["REQUEST_URI"] == "/opcache"
    assert params["DOCUMENT_URI"] == "/opcache"
    assert params["REMOTE_PORT"] == "12345"
    assert params["SERVER_PORT"] == "80"
    assert params["CONTENT_TYPE"] == ""
    assert params["CONTENT_LENGTH"] == "0"
    assert params["HTTP_HOST"] == params["SERVER_NAME"] == "opcache-exporter"


def test_explicit_values():
    config = ScrapeConfig(
        request_method="POST",
        script_filename="/srv/app/public/status.php",
        request_uri="/status?full",
        document_uri="/status",
        server_name="php.internal",
        http_host="opcache.example.com",
        server_port=8080,
    )
    params = build_params(config)

    assert params["REQUEST_METHOD"] == "POST"
    assert params["DOCUMENT_ROOT"] == "/srv/app/public"
    assert params["SCRIPT_NAME"] == "status.php"
    assert params["DOCUMENT_URI"] == "/status"
    assert params["SERVER_PORT"] == "8080"
    assert params["SERVER_NAME"] == "php.internal"
    assert params["HTTP_HOST"] == "opcache.example.com"


def test_build_is_pure():
    config = ScrapeConfig(script_filename="/var/www/html/opcache.php")
    first = build_params(config)
    second = build_params(config)

    assert first == second
    assert first is not second


def test_bare_file_name_uses_root():
    assert split_script_path("opcache.php") == ("/", "opcache.php")


def test_file_in_root():
    assert split_script_path("/opcache.php") == ("/", "opcache.php")


@pytest.mark.parametrize("path", ["", "/", "/var/www/", "/var/www/.."])
def test_unusable_paths(path):
    with pytest.raises(ConfigurationError) as excinfo:
        build_params(ScrapeConfig(script_filename=path))

    assert excinfo.value.kind is ErrorKind.CONFIGURATION


def test_non_utf8_path():
    # What os.fsdecode() yields for a latin-1 byte on a UTF-8 system
    path = "/var/www/caf\udce9.php"
    with pytest.raises(ConfigurationError, match="UTF-8") as excinfo:
        build_params(ScrapeConfig(script_filename=path))

    assert excinfo.value.context["field"] == "script_filename"
    assert excinfo.value.context["value"] == path
    assert excinfo.value.context["position"] == 12


@pytest.mark.parametrize("field", [
    "request_method", "request_uri", "document_uri", "remote_addr",
    "server_addr", "server_name", "http_host", "fastcgi_address",
])
def test_non_utf8_text_field(field):
    config = ScrapeConfig(**{field: "/op\udce9"})
    with pytest.raises(ConfigurationError, match=field) as excinfo:
        build_params(config)

    assert excinfo.value.kind is ErrorKind.CONFIGURATION
    assert excinfo.value.context["field"] == field
    assert excinfo.value.context["position"] == 3


def test_split_rejects_non_utf8_path():
    with pytest.raises(ConfigurationError, match="UTF-8") as excinfo:
        split_script_path("/var/www/caf\udce9.php")

    assert excinfo.value.context["position"] == 12

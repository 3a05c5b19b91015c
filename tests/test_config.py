"""Tests for configuration loading."""

import pytest

from opcache_exporter import config as config_module
from opcache_exporter.config import ConfigError, load_config, scrape_config_from
from opcache_exporter.request import ScrapeConfig


@pytest.fixture(autouse=True)
def no_default_file(tmp_path, monkeypatch):
    """Point the default config path somewhere empty."""
    monkeypatch.setattr(config_module, "CONFIG_FILE", str(tmp_path / "missing.conf"))


def write_config(tmp_path, text):
    path = tmp_path / "exporter.conf"
    path.write_text(text)
    return str(path)


def test_defaults():
    config = load_config(environ={})

    assert config["listen_address"] == "0.0.0.0"
    assert config["listen_port"] == 32221
    assert config["metrics_path"] == "/metrics"
    assert config["fastcgi_address"] == "tcp://127.0.0.1:9000"
    assert config["scrape_timeout"] == 5.0
    assert config["debug"] is False
    assert scrape_config_from(config) == ScrapeConfig()


def test_file_values(tmp_path):
    path = write_config(tmp_path, """
# PHP-FPM pool socket
fastcgi_address = unix:///run/php/php8.2-fpm.sock
script_filename=/srv/www/opcache.php
request_method=post
server_port=8080
document_uri=
debug=true
""")
    config = load_config(path, environ={})
    scrape_config = scrape_config_from(config)

    assert config["debug"] is True
    assert scrape_config.fastcgi_address == "unix:///run/php/php8.2-fpm.sock"
    assert scrape_config.script_filename == "/srv/www/opcache.php"
    assert scrape_config.request_method == "POST"
    assert scrape_config.server_port == 8080
    assert scrape_config.document_uri is None


def test_priority_file_env_overrides(tmp_path):
    path = write_config(tmp_path, "listen_port=9100\nrequest_uri=/from-file\nserver_name=file\n")
    config = load_config(
        path,
        overrides={"listen_port": "9200", "server_name": None},
        environ={"OPCACHE_EXPORTER_LISTEN_PORT": "9150", "OPCACHE_EXPORTER_REQUEST_URI": "/from-env"},
    )

    assert config["listen_port"] == 9200
    assert config["request_uri"] == "/from-env"
    assert config["server_name"] == "file"


def test_default_file_is_read(tmp_path, monkeypatch):
    path = write_config(tmp_path, "scrape_timeout=2.5\n")
    monkeypatch.setattr(config_module, "CONFIG_FILE", path)

    assert load_config(environ={})["scrape_timeout"] == 2.5


def test_missing_explicit_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "nope.conf"), environ={})


def test_malformed_line(tmp_path):
    path = write_config(tmp_path, "listen_port 9100\n")
    with pytest.raises(ConfigError, match=":1:"):
        load_config(path, environ={})


def test_unknown_key(tmp_path):
    path = write_config(tmp_path, "php_fpm_pools=[]\n")
    with pytest.raises(ConfigError, match="php_fpm_pools"):
        load_config(path, environ={})


@pytest.mark.parametrize("overrides,message", [
    ({"listen_port": "http"}, "listen_port must be an integer"),
    ({"listen_port": "70000"}, "listen_port must be between"),
    ({"scrape_timeout": "0"}, "scrape_timeout must be positive"),
    ({"request_method": "DELETE"}, "request_method must be one of"),
    ({"metrics_path": "metrics"}, "metrics_path must start"),
    ({"fastcgi_address": "http://php:9000"}, "Invalid socket URI"),
    ({"script_filename": "/var/www/"}, "configuration"),
])
def test_invalid_values(overrides, message):
    with pytest.raises(ConfigError, match=message):
        load_config(overrides=overrides, environ={})

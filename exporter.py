#!/usr/bin/env python3
"""
Opcache Exporter - entry point

Serves PHP opcache statistics, fetched from PHP-FPM over FastCGI,
as Prometheus metrics.
"""

import argparse
import asyncio
import signal
import sys

from opcache_exporter import VERSION
from opcache_exporter.config import CONFIG_FILE, ConfigError, load_config, scrape_config_from
from opcache_exporter.logger import setup_logger
from opcache_exporter.scraper import OpcacheCollector
from opcache_exporter.server import MetricsServer


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Prometheus exporter for PHP opcache via PHP-FPM')
    parser.add_argument('--config', help=f'Config file (default: {CONFIG_FILE} if present)')
    parser.add_argument('--listen-address', dest='listen_address', help='Address to serve metrics on')
    parser.add_argument('--listen-port', dest='listen_port', help='Port to serve metrics on')
    parser.add_argument('--metrics-path', dest='metrics_path', help='HTTP path for metrics')
    parser.add_argument('--fastcgi-address', dest='fastcgi_address',
                        help='PHP-FPM socket: tcp://host:port or unix:///path')
    parser.add_argument('--script-filename', dest='script_filename',
                        help='Absolute path of the opcache status script on the PHP-FPM host')
    parser.add_argument('--request-uri', dest='request_uri', help='REQUEST_URI sent to PHP-FPM')
    parser.add_argument('--request-method', dest='request_method', help='GET or POST')
    parser.add_argument('--scrape-timeout', dest='scrape_timeout', help='FastCGI deadline in seconds')
    parser.add_argument('--once', action='store_true', help='Scrape once, print metrics and exit')
    parser.add_argument('--debug', action='store_const', const='true', help='Enable debug logging')
    parser.add_argument('--version', action='version', version=f'Opcache Exporter v{VERSION}')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    overrides = {key: value for key, value in vars(args).items() if key not in ('config', 'once')}

    try:
        config = load_config(args.config, overrides)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    logger = setup_logger(config['debug'])
    scrape_config = scrape_config_from(config)
    collector = OpcacheCollector(logger.create_child("Scraper"), timeout=config['scrape_timeout'])

    if args.once:
        sys.stdout.write(asyncio.run(collector.collect(scrape_config)))
        return 0

    logger.info(f"Opcache Exporter v{VERSION} scraping {config['fastcgi_address']}", always=True)
    server = MetricsServer(
        collector,
        scrape_config,
        logger.create_child("HTTP"),
        listen_address=config['listen_address'],
        listen_port=config['listen_port'],
        metrics_path=config['metrics_path'],
    )

    def signal_handler(sig, frame):
        logger.info("Shutting down...", always=True)
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)

    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...", always=True)
    except OSError as e:
        logger.error(f"Cannot serve on {config['listen_address']}:{config['listen_port']}: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())

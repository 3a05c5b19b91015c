"""
Opcache Exporter - Scraper Module

Runs one scrape: build params, talk FastCGI, parse, render.
Always produces exposition text; failures degrade to `opcache_up 0`.
"""

import time
from typing import Optional

from . import fastcgi
from .errors import ScrapeError
from .metrics import render_metrics
from .request import ScrapeConfig, build_params
from .response import parse_response
from .snapshot import OpcacheSnapshot


class OpcacheCollector:
    """Scrapes opcache status from one PHP-FPM endpoint

    Holds no per-scrape state; collect() may run concurrently.
    """

    def __init__(self, logger, timeout: float = fastcgi.DEFAULT_TIMEOUT):
        """Initialize collector

        Args:
            logger: Logger instance
            timeout: Deadline in seconds for each FastCGI exchange
        """
        self.logger = logger
        self.timeout = timeout

    async def fetch_snapshot(self, config: ScrapeConfig) -> OpcacheSnapshot:
        """Fetch and decode opcache status, raising on any failure

        Raises:
            ScrapeError: Any failure kind from the pipeline
        """
        params = build_params(config)
        response = await fastcgi.fetch(config.fastcgi_address, params, timeout=self.timeout)
        if response.stderr:
            self.logger.warn(f"PHP-FPM stderr from {config.fastcgi_address}: {response.stderr_text}")
        return parse_response(response.stdout)

    async def collect(self, config: ScrapeConfig) -> str:
        """Produce current metrics text

        Args:
            config: Scrape configuration

        Returns:
            Exposition text; liveness-only when the scrape failed
        """
        started = time.monotonic()
        snapshot: Optional[OpcacheSnapshot] = None

        try:
            snapshot = await self.fetch_snapshot(config)
        except ScrapeError as e:
            self.logger.failure(f"Scrape of {config.fastcgi_address} failed", e)
        else:
            self.logger.debug(
                f"Scraped {config.fastcgi_address} in {(time.monotonic() - started) * 1000:.1f}ms "
                f"({len(snapshot.scripts)} cached scripts reported)"
            )

        return render_metrics(snapshot)

"""
Opcache Exporter - HTTP Server Module

Serves the metrics endpoint. Plain HTTP GET requests are answered from the
websockets server's process_request hook, so no upgrade ever happens.
"""

from http import HTTPStatus

from websockets.asyncio.server import serve

from .metrics import CONTENT_TYPE
from .request import ScrapeConfig
from .scraper import OpcacheCollector

LANDING_PAGE = """<html>
<head><title>Opcache Exporter</title></head>
<body>
<h1>Opcache Exporter</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>
"""


class MetricsServer:
    """HTTP endpoint running one scrape per request"""

    def __init__(self, collector: OpcacheCollector, scrape_config: ScrapeConfig, logger,
                 listen_address: str = '0.0.0.0', listen_port: int = 32221,
                 metrics_path: str = '/metrics'):
        self.collector = collector
        self.scrape_config = scrape_config
        self.logger = logger
        self.listen_address = listen_address
        self.listen_port = listen_port
        self.metrics_path = metrics_path

    async def process_request(self, connection, request):
        """Answer every request before the WebSocket handshake"""
        path = request.path.split('?', 1)[0]
        self.logger.debug(f"Incoming request: {path} from {connection.remote_address}")

        if path == self.metrics_path:
            body = await self.collector.collect(self.scrape_config)
            response = connection.respond(HTTPStatus.OK, body)
            del response.headers['Content-Type']
            response.headers['Content-Type'] = CONTENT_TYPE
            return response

        if path == '/':
            response = connection.respond(HTTPStatus.OK, LANDING_PAGE.format(metrics_path=self.metrics_path))
            del response.headers['Content-Type']
            response.headers['Content-Type'] = 'text/html; charset=utf-8'
            return response

        return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")

    async def _handler(self, connection) -> None:
        # Unreachable in practice: process_request answers every request
        await connection.close()

    async def run(self) -> None:
        """Serve until cancelled"""
        async with serve(self._handler, self.listen_address, self.listen_port,
                         process_request=self.process_request) as server:
            self.logger.info(
                f"Serving metrics on http://{self.listen_address}:{self.listen_port}{self.metrics_path}",
                always=True
            )
            await server.serve_forever()

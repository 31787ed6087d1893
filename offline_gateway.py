# offline_gateway.py - HTTP front for an offline embedding, usable as the embedded app's proxy

import ssl
import asyncio
import argparse
import logging
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Dict, Optional
from urllib.parse import urlsplit

from fetch_dispatcher import FetchRequest, FetchResponse
from offline_embedding import OfflineConfig, OfflineEmbedding
from url_classifier import IGNORE_URL

logger = logging.getLogger('offline_gateway')

HOP_BY_HOP_HEADERS = frozenset(['connection', 'content-length', 'keep-alive', 'transfer-encoding'])


def request_url(path: str, headers: Dict[str, str], secure: bool = False) -> str:
    """
    Absolute URL of an incoming request.

    Proxy-style requests already carry one; origin-form paths are joined with
    the Host header.
    """
    if '://' in path or path.startswith('junk:'):
        return path
    host = headers.get('Host', 'localhost')
    scheme = 'https' if secure else 'http'
    return f"{scheme}://{host}{path}"


def accepts_target(url: str) -> bool:
    """Only web URLs and the ignore sentinel may enter through HTTP."""
    return url == IGNORE_URL or urlsplit(url).scheme in ('http', 'https')


class OfflineGateway:
    """
    Serves one OfflineEmbedding over HTTP.

    The server is single threaded and drives a single event loop, so requests
    are answered one after another in arrival order.
    """

    def __init__(self, embedding: OfflineEmbedding, bind_address: str = 'localhost', port: int = 8001,
                 cert_path: Optional[str] = None, key_path: Optional[str] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        """Initialize the gateway."""
        self.embedding = embedding
        self.bind_address = bind_address
        self.port = port
        self.cert_path = cert_path
        self.key_path = key_path
        self.loop = loop or asyncio.new_event_loop()
        self.httpd = None

    @property
    def secure(self) -> bool:
        return bool(self.cert_path and self.key_path)

    def handle(self, method: str, path: str, headers: Dict[str, str], body: bytes) -> FetchResponse:
        """Translate one HTTP exchange into a dispatch."""
        url = request_url(path, headers, self.secure)
        if not accepts_target(url):
            # Internal schemes (file:, vault:, zip:, app:) are only reachable from inside the app
            logger.warning(f"Rejected request target {url}")
            return FetchResponse(status=400, status_text='unsupported request target')

        request = FetchRequest(
            url=url,
            method=method,
            body=body or None,
            headers={k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}
        )
        return self.loop.run_until_complete(self.embedding.fetch(request))

    def make_server(self) -> HTTPServer:
        """Build the HTTP(S) server without starting it."""
        class GatewayRequestHandler(BaseHTTPRequestHandler):
            gateway = self

            def do_GET(self):
                self._handle_request('GET')

            def do_POST(self):
                self._handle_request('POST')

            def do_PUT(self):
                self._handle_request('PUT')

            def do_PATCH(self):
                self._handle_request('PATCH')

            def do_DELETE(self):
                self._handle_request('DELETE')

            def _handle_request(self, method):
                try:
                    # Read request body if present
                    content_length = int(self.headers.get('Content-Length', 0))
                    body = self.rfile.read(content_length) if content_length else b''
                    headers = {k: v for k, v in self.headers.items()}

                    response = self.gateway.handle(method, self.path, headers, body)

                    self.send_response(response.status, response.status_text)
                    for k, v in response.headers.items():
                        if k.lower() not in HOP_BY_HOP_HEADERS:
                            self.send_header(k, v)
                    payload = response.body or b''
                    self.send_header('Content-Length', str(len(payload)))
                    self.end_headers()
                    self.wfile.write(payload)

                except Exception as e:
                    logger.error(f"Error handling HTTP request: {str(e)}")
                    self.send_error(500, str(e))

            def log_message(self, format, *args):
                logger.debug(format % args)

        server_address = (self.bind_address, self.port)
        httpd = HTTPServer(server_address, GatewayRequestHandler)

        if self.secure:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            context.load_cert_chain(self.cert_path, self.key_path)
            httpd.socket = context.wrap_socket(httpd.socket, server_side=True)

        return httpd

    def start(self):
        """Start serving until interrupted."""
        self.httpd = self.make_server()
        self.embedding.mount()
        scheme = 'https' if self.secure else 'http'
        logger.info(f"Serving offline annotator on {scheme}://{self.bind_address}:{self.port}")
        try:
            self.httpd.serve_forever()
        finally:
            self.embedding.unmount()
            self.httpd.server_close()
            self.loop.close()

    def stop(self):
        if self.httpd is not None:
            self.httpd.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Offline annotation gateway')
    parser.add_argument('--vault', required=True, help='Root directory of the vault')
    parser.add_argument('--annotation-file', required=True, help='Vault path of the annotation file')
    parser.add_argument('--archive', help='Zip bundle of offline assets')
    parser.add_argument('--document', help='Vault path or URL of the document to annotate')
    parser.add_argument('--media', help='Vault path or URL of the e-book to annotate')
    parser.add_argument('--bind', default='localhost', help='Address to bind to')
    parser.add_argument('--port', type=int, default=8001, help='Port to listen on')
    parser.add_argument('--cert', help='Path to TLS certificate')
    parser.add_argument('--key', help='Path to TLS key')
    parser.add_argument('--ready-timeout', type=float, default=30.0,
                        help='Seconds to wait for nested frames to initialize')
    parser.add_argument('--log-level', default='INFO', help='Logging level')
    return parser


def config_from_args(args: argparse.Namespace) -> OfflineConfig:
    return OfflineConfig(
        vault_root=args.vault,
        annotation_file=args.annotation_file,
        archive_path=args.archive,
        document_path=args.document,
        media_path=args.media,
        ready_timeout=args.ready_timeout
    )


def main(argv=None):
    """Main entry point for the offline gateway."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    loop = asyncio.new_event_loop()
    embedding = loop.run_until_complete(OfflineEmbedding.create(config_from_args(args)))

    gateway = OfflineGateway(
        embedding,
        bind_address=args.bind,
        port=args.port,
        cert_path=args.cert,
        key_path=args.key,
        loop=loop
    )
    gateway.start()


if __name__ == '__main__':
    main()

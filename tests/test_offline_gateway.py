import socket
import threading
import urllib.request

from fetch_dispatcher import FetchResponse
from offline_embedding import OfflineEmbedding
from offline_gateway import OfflineGateway, build_parser, config_from_args, request_url
from synthetic_api import OFFLINE_USER


class CapturingEmbedding:
    def __init__(self):
        self.requests = []

    async def fetch(self, request):
        self.requests.append(request)
        return FetchResponse.from_json({'seen': request.url})


def test_request_url_joins_origin_form_with_host():
    assert request_url('/api/profile', {'Host': 'localhost:8001'}) == 'http://localhost:8001/api/profile'
    assert request_url('/x', {'Host': 'example.org'}, secure=True) == 'https://example.org/x'


def test_request_url_keeps_proxy_form():
    assert request_url('https://cdn.hypothes.is/app.js', {'Host': 'cdn.hypothes.is'}) == \
        'https://cdn.hypothes.is/app.js'
    assert request_url('junk:/ignore', {}) == 'junk:/ignore'


def test_handle_builds_fetch_request():
    embedding = CapturingEmbedding()
    gateway = OfflineGateway(embedding)
    try:
        response = gateway.handle('DELETE', '/api/annotations/abc',
                                  {'Host': 'localhost:8001', 'Connection': 'close', 'Accept': '*/*'}, b'')
    finally:
        gateway.loop.close()

    request = embedding.requests[0]
    assert response.json() == {'seen': 'http://localhost:8001/api/annotations/abc'}
    assert request.method == 'DELETE'
    assert request.body is None
    assert request.headers == {'Host': 'localhost:8001', 'Accept': '*/*'}


def test_parser_builds_config():
    args = build_parser().parse_args([
        '--vault', '/data/vault', '--annotation-file', 'annotations.json',
        '--document', 'papers/paper.pdf', '--ready-timeout', '5',
    ])
    config = config_from_args(args)

    assert config.vault_root == '/data/vault'
    assert config.annotation_file == 'annotations.json'
    assert config.document_path == 'papers/paper.pdf'
    assert config.media_path is None
    assert config.ready_timeout == 5.0
    assert args.port == 8001


def test_serves_synthetic_endpoints_over_http(vault_root):
    args = build_parser().parse_args(['--vault', str(vault_root), '--annotation-file', 'a.json'])
    embedding = OfflineEmbedding(config_from_args(args))
    gateway = OfflineGateway(embedding, bind_address='127.0.0.1', port=0)
    httpd = gateway.make_server()
    port = httpd.server_address[1]
    worker = threading.Thread(target=httpd.handle_request)
    worker.start()
    try:
        request = urllib.request.Request(f'http://127.0.0.1:{port}/api/profile',
                                         headers={'Host': 'localhost:8001'})
        opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))
        with opener.open(request, timeout=10) as response:
            status = response.status
            content_type = response.headers['Content-Type']
            body = response.read()
    finally:
        worker.join(timeout=10)
        httpd.server_close()
        gateway.loop.close()

    assert status == 200
    assert content_type == 'application/json'
    assert OFFLINE_USER in body.decode('utf-8')


def test_internal_schemes_are_rejected():
    embedding = CapturingEmbedding()
    gateway = OfflineGateway(embedding)
    try:
        for target in ('file:///etc/passwd', 'vault:/papers/paper.pdf', 'zip:/cdn.hypothes.is/app.js',
                       'app://local/tmp/x?1'):
            response = gateway.handle('GET', target, {'Host': 'localhost:8001'}, b'')
            assert response.status == 400
        sentinel = gateway.handle('GET', 'junk:/ignore', {}, b'')
    finally:
        gateway.loop.close()

    assert sentinel.status == 200
    assert [request.url for request in embedding.requests] == ['junk:/ignore']


def test_file_urls_are_not_served_over_http(vault_root, tmp_path):
    secret = tmp_path / 'secret.txt'
    secret.write_text('TOPSECRET')
    args = build_parser().parse_args(['--vault', str(vault_root), '--annotation-file', 'a.json'])
    gateway = OfflineGateway(OfflineEmbedding(config_from_args(args)), bind_address='127.0.0.1', port=0)
    httpd = gateway.make_server()
    port = httpd.server_address[1]
    worker = threading.Thread(target=httpd.handle_request)
    worker.start()
    try:
        with socket.create_connection(('127.0.0.1', port), timeout=10) as client:
            client.sendall(f'GET {secret.as_uri()} HTTP/1.0\r\nHost: localhost\r\n\r\n'.encode('ascii'))
            reply = b''
            while True:
                chunk = client.recv(4096)
                if not chunk:
                    break
                reply += chunk
    finally:
        worker.join(timeout=10)
        httpd.server_close()
        gateway.loop.close()

    assert reply.startswith(b'HTTP/1.0 400')
    assert b'TOPSECRET' not in reply

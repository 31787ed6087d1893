# fetch_dispatcher.py - Request entry point that answers the embedded annotator without a network

import ssl
import json
import asyncio
import inspect
import logging
import mimetypes
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from urllib.error import URLError, HTTPError
from urllib.parse import SplitResult, unquote, urlsplit
from urllib.request import Request, urlopen

from annotation_store import AnnotationStore
from resource_resolver import ResourceResolver
from resource_store import ResourceNotFound, local_file_path, read_local_file
from synthetic_api import encode_json
from url_classifier import (API_BASE, IGNORE_URL, PROXIED_HOSTS, SAMPLE_EPUB_URL, SAMPLE_PDF_URL,
                            TargetKind, UrlClassifier, UrlLike, as_href, pattern_matches)

logger = logging.getLogger('fetch_dispatcher')

SEARCH_URL = f'{API_BASE}/search'
ANNOTATIONS_URL = f'{API_BASE}/annotations'

# ========================
# Data Structures
# ========================

@dataclass
class FetchRequest:
    """An outbound request issued by the embedded application."""
    url: str
    method: str = 'GET'
    body: Optional[Union[bytes, str]] = None
    headers: Dict[str, str] = field(default_factory=dict)

    def body_bytes(self) -> Optional[bytes]:
        if isinstance(self.body, str):
            return self.body.encode('utf-8')
        return self.body

    def text(self) -> str:
        body = self.body_bytes()
        return body.decode('utf-8') if body else ''


@dataclass
class FetchResponse:
    """A response shaped like what a remote server would have sent."""
    status: int
    status_text: str
    body: Optional[bytes] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str, default: str = '') -> str:
        """Header value by case-insensitive name."""
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return default

    def text(self) -> str:
        return (self.body or b'').decode('utf-8')

    def json(self) -> Any:
        return json.loads(self.text())

    @classmethod
    def from_bytes(cls, body: bytes, content_type: Optional[str] = None) -> 'FetchResponse':
        headers = {'Content-Type': content_type} if content_type else {}
        return cls(status=200, status_text='ok', body=body, headers=headers)

    @classmethod
    def from_json(cls, data: Any, status: int = 200, status_text: str = 'ok') -> 'FetchResponse':
        return cls(status=status, status_text=status_text, body=encode_json(data),
                   headers={'Content-Type': 'application/json'})

    @classmethod
    def not_found(cls) -> 'FetchResponse':
        return cls(status=404, status_text='file not found')


RouteHandler = Callable[[FetchRequest], Awaitable[Optional[FetchResponse]]]
NetworkFetch = Callable[[FetchRequest], FetchResponse]


def guess_content_type(path: str, body: bytes) -> Optional[str]:
    content_type, _ = mimetypes.guess_type(path)
    if content_type:
        return content_type
    head = body[:64].lstrip().lower()
    if head.startswith(b'<!doctype html') or head.startswith(b'<html'):
        return 'text/html'
    if head.startswith(b'{') or head.startswith(b'['):
        return 'application/json'
    return None


async def maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


def urllib_fetch(request: FetchRequest) -> FetchResponse:
    """Perform a real network request."""
    req = Request(
        url=request.url,
        data=request.body_bytes(),
        headers=request.headers,
        method=request.method
    )
    ctx = ssl.create_default_context()
    try:
        with urlopen(req, context=ctx, timeout=30) as response:
            return FetchResponse(
                status=response.status,
                status_text=response.reason,
                body=response.read(),
                headers=dict(response.getheaders())
            )
    except HTTPError as e:
        return FetchResponse(
            status=e.code,
            status_text=str(e.reason),
            body=e.read(),
            headers=dict(e.headers.items()) if e.headers else {}
        )


# ========================
# Dispatcher
# ========================

class VirtualFetchDispatcher:
    """
    Answers every request of the embedded application from local content.

    Order of evaluation:
      1. live endpoints (ignore sentinel, annotation search and mutation)
      2. URL classification and resolution against vault, archive and canned JSON
      3. internal schemes (vault:, app:, file:, zip:) and archive fallback for proxied hosts
      4. the real network
    Nothing raises out of dispatch; every failure becomes a response.
    """

    def __init__(self, classifier: UrlClassifier, resolver: ResourceResolver,
                 annotation_store: AnnotationStore, annotation_file: str,
                 network_fetch: Optional[NetworkFetch] = None):
        self.classifier = classifier
        self.resolver = resolver
        self.annotation_store = annotation_store
        self.annotation_file = annotation_file
        self.network_fetch = network_fetch or urllib_fetch

        # Route configuration: pattern -> {'handler', 'metadata'}
        self.routes = {}
        self._register_core_apis()

    @property
    def vault(self):
        return self.resolver.vault

    def _register_core_apis(self):
        """Register the endpoints that are answered live rather than from files."""
        self.register_api(IGNORE_URL, self._handle_ignore, {'static': 'true'})
        self.register_api(f'{SEARCH_URL}*', self._handle_search, {'store': 'search'})
        self.register_api(f'{ANNOTATIONS_URL}*', self._handle_annotations, {'store': 'mutate'})
        logger.info("Core APIs registered")

    def register_api(self, pattern: str, handler: RouteHandler,
                     metadata: Optional[Dict[str, str]] = None) -> None:
        """Register a live endpoint. A trailing * in the pattern matches by prefix."""
        self.routes[pattern] = {
            'handler': handler,
            'metadata': metadata or {}
        }

    # ------------------------
    # Live endpoints
    # ------------------------

    async def _handle_ignore(self, request):
        return FetchResponse.from_json({})

    async def _handle_search(self, request):
        try:
            result = await maybe_await(self.annotation_store.search(
                urlsplit(request.url), self.vault, self.annotation_file))
        except Exception as e:
            logger.error(f"Failed to load annotations: {str(e)}")
            return None
        return FetchResponse.from_json(result)

    async def _handle_annotations(self, request):
        method = request.method.upper()
        prefix = f'{ANNOTATIONS_URL}/'
        annotation_id = request.url[len(prefix):] if request.url.startswith(prefix) else ''
        try:
            if method == 'DELETE':
                result = await maybe_await(self.annotation_store.delete(
                    annotation_id, self.vault, self.annotation_file))
            elif method in ('POST', 'PUT', 'PATCH'):
                record = json.loads(request.text())
                if annotation_id and 'id' not in record:
                    record['id'] = annotation_id
                result = await maybe_await(self.annotation_store.write(
                    record, self.vault, self.annotation_file))
            else:
                return None
        except Exception as e:
            logger.error(f"Annotation {method} failed: {str(e)}")
            return FetchResponse.from_json({'error': str(e)}, status=500, status_text='annotation store error')
        return FetchResponse.from_json(result)

    async def _try_routes(self, request: FetchRequest) -> Optional[FetchResponse]:
        for pattern, route in self.routes.items():
            if pattern_matches(pattern, request.url):
                response = await route['handler'](request)
                if response is not None:
                    return response
        return None

    # ------------------------
    # Local resolution
    # ------------------------

    async def _serve_target(self, target, request: FetchRequest) -> FetchResponse:
        try:
            body = await self.resolver.read(target)
        except ResourceNotFound as e:
            logger.warning(f"mockFetch failed for {request.url}: {e}")
            return FetchResponse.not_found()
        if target.kind in (TargetKind.SYNTHETIC_JSON, TargetKind.BLOCKED):
            return FetchResponse.from_bytes(body, 'application/json')
        return FetchResponse.from_bytes(body, guess_content_type(target.value, body))

    async def _read_scheme(self, parts: SplitResult) -> Optional[bytes]:
        """Bytes for an internal scheme, or None when the URL is not internal."""
        if parts.scheme == 'vault':
            return await self.resolver.read_vault(parts.path)
        if parts.scheme == self.vault.LOCATOR_SCHEME:
            return await self.resolver.read_locator(parts.geturl())
        if parts.scheme == 'file':
            return await read_local_file(local_file_path(unquote(parts.path)))
        if parts.scheme == 'zip':
            return self.resolver.read_archive(parts.path)
        if parts.hostname in PROXIED_HOSTS:
            return self.resolver.read_archive(f"{parts.netloc}{parts.path}".lstrip('/'))
        return None

    async def _serve_url(self, request: FetchRequest) -> FetchResponse:
        parts = urlsplit(request.url)
        try:
            body = await self._read_scheme(parts)
        except ResourceNotFound as e:
            logger.warning(f"mockFetch failed for {request.url}: {e}")
            return FetchResponse.not_found()
        if body is not None:
            return FetchResponse.from_bytes(body, guess_content_type(parts.path, body))
        if request.url.startswith(API_BASE):
            # The service API only exists offline; there is no server behind it
            logger.warning(f"No offline endpoint for {request.method} {request.url}")
            return FetchResponse.not_found()
        return await self._fetch_network(request)

    async def _fetch_network(self, request: FetchRequest) -> FetchResponse:
        logger.info(f"Passing {request.method} {request.url} through to the network")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self.network_fetch, request)
        except (URLError, OSError, ValueError) as e:
            logger.warning(f"Network fetch failed for {request.url}: {str(e)}")
            return FetchResponse(status=404, status_text='network unavailable')

    # ------------------------
    # Entry points
    # ------------------------

    async def dispatch(self, request: FetchRequest) -> FetchResponse:
        """Answer one request. Never raises."""
        try:
            response = await self._dispatch(request)
        except Exception as e:
            logger.error(f"Error dispatching {request.method} {request.url}: {str(e)}")
            return FetchResponse(status=500, status_text='internal error')
        return self._post_process(response)

    async def _dispatch(self, request: FetchRequest) -> FetchResponse:
        response = await self._try_routes(request)
        if response is not None:
            return response

        target = self.classifier.classify(urlsplit(request.url))
        if target is None:
            logger.warning(f"No document configured for {request.url}")
            return FetchResponse.not_found()

        if target.kind == TargetKind.PASS_THROUGH:
            return await self._serve_url(replace(request, url=target.value))
        return await self._serve_target(target, request)

    def page_url(self, url: UrlLike) -> str:
        """Where the embedded page should load a resource (img, script, frame) from."""
        target = self.classifier.classify(url)
        if target is None:
            logger.error(f"Cannot resolve {as_href(url)}: no declared path")
            return 'about:blank'
        return self.resolver.page_url(target)

    def post_process_html(self, html: str) -> str:
        """Rewrite literal placeholder URLs embedded in served markup to their real locators."""
        context = self.classifier.context
        if context.document_path is not None:
            html = html.replace(SAMPLE_PDF_URL, self.page_url(context.document_path))
        if context.media_path is not None:
            html = html.replace(SAMPLE_EPUB_URL, self.page_url(context.media_path))
        return html

    def _post_process(self, response: FetchResponse) -> FetchResponse:
        content_type = response.header('Content-Type').lower()
        if not response.body or not content_type.startswith('text/html'):
            return response
        try:
            html = response.body.decode('utf-8')
        except UnicodeDecodeError:
            return response
        rewritten = self.post_process_html(html)
        if rewritten == html:
            return response
        return replace(response, body=rewritten.encode('utf-8'))

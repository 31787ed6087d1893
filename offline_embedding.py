# offline_embedding.py - One embedded annotator instance running against local content only

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from annotation_store import AnnotationStore, JsonFileAnnotationStore
from fetch_dispatcher import FetchRequest, FetchResponse, NetworkFetch, VirtualFetchDispatcher
from frame_relay import (AttachHook, EventTarget, Frame, FrameMessageRelay, HelperFactory,
                         HelpersObserver, maybe_await, wait_until)
from resource_resolver import ResourceResolver
from resource_store import BundledArchive, VaultStore
from socket_stub import NotificationSocketStub
from url_classifier import ClassifyContext, UrlClassifier, UrlLike

logger = logging.getLogger('offline_embedding')

SIDEBAR_FRAME_NAME = 'sidebar'


@dataclass
class OfflineConfig:
    """Settings for one embedding."""
    vault_root: str
    annotation_file: str
    archive_path: Optional[str] = None
    document_path: Optional[str] = None
    media_path: Optional[str] = None
    poll_interval: float = 0.1
    ready_timeout: float = 30.0


def find_ready_sidebar(frame: Frame) -> Optional[Frame]:
    """The annotator sidebar somewhere below frame, once it has finished initializing."""
    return frame.find(lambda f: f.name == SIDEBAR_FRAME_NAME and f.ready)


class OfflineEmbedding:
    """
    Wires the classifier, resolver, dispatcher and message relay of one
    embedding together. Create it with OfflineEmbedding.create when the
    bundled archive still has to be loaded.
    """

    def __init__(self, config: OfflineConfig,
                 archive: Optional[BundledArchive] = None,
                 annotation_store: Optional[AnnotationStore] = None,
                 network_fetch: Optional[NetworkFetch] = None,
                 helper_factory: Optional[HelperFactory] = None,
                 on_helpers_updated: Optional[HelpersObserver] = None,
                 on_frame_attached: Optional[AttachHook] = None,
                 top: Optional[Frame] = None):
        self.config = config
        self.vault = VaultStore(config.vault_root)
        self.classifier = UrlClassifier(ClassifyContext(config.document_path, config.media_path))
        self.resolver = ResourceResolver(self.vault, archive)
        self.annotation_store = annotation_store or JsonFileAnnotationStore(self.vault)
        self.dispatcher = VirtualFetchDispatcher(
            self.classifier,
            self.resolver,
            self.annotation_store,
            config.annotation_file,
            network_fetch=network_fetch
        )
        self.top = top or Frame('top')
        self.relay = FrameMessageRelay(self.top, helper_factory, on_helpers_updated)
        self.on_frame_attached = on_frame_attached
        self.socket = NotificationSocketStub()

    @classmethod
    async def create(cls, config: OfflineConfig, **kwargs) -> 'OfflineEmbedding':
        archive = None
        if config.archive_path:
            archive = await BundledArchive.load(config.archive_path)
        return cls(config, archive=archive, **kwargs)

    # ------------------------
    # Network surface
    # ------------------------

    def get_url(self, url: UrlLike) -> str:
        return self.dispatcher.page_url(url)

    async def fetch(self, request: FetchRequest) -> FetchResponse:
        return await self.dispatcher.dispatch(request)

    def post_process_html(self, html: str) -> str:
        return self.dispatcher.post_process_html(html)

    def open_socket(self, url: str, send: Callable[[str], Any]) -> Optional[NotificationSocketStub]:
        """
        Connect a websocket the app opens. The notification socket is answered
        by the offline stub; any other URL returns None and is left to the host.
        """
        if not self.socket.handles(url):
            logger.debug(f"No offline socket for {url}")
            return None
        self.socket.on_connection(send)
        return self.socket

    # ------------------------
    # Frames
    # ------------------------

    def mount(self) -> None:
        self.relay.mount()
        logger.info(f"Mounted embedding for {self.config.document_path or self.config.media_path}")

    def unmount(self) -> None:
        self.relay.unmount()
        logger.info("Unmounted embedding")

    async def attach_frame(self, frame: Frame, container: Optional[EventTarget] = None) -> None:
        await self.relay.attach(frame, container, self.on_frame_attached)

    async def on_load(self, frame: Frame,
                      on_ready: Optional[Callable[[Frame], Any]] = None,
                      ready: Callable[[Frame], Optional[Frame]] = find_ready_sidebar) -> Frame:
        """
        Wait for the sidebar frame nested under frame to finish initializing.

        Raises FrameInitTimeout after config.ready_timeout seconds.
        """
        sidebar = await wait_until(
            lambda: ready(frame),
            interval=self.config.poll_interval,
            timeout=self.config.ready_timeout
        )
        if on_ready is not None:
            await maybe_await(on_ready(sidebar))
        return sidebar

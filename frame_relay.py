# frame_relay.py - Relays window messages between the embedding context and its nested frames

import uuid
import asyncio
import inspect
import logging
import weakref
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

logger = logging.getLogger('frame_relay')


class FrameInitTimeout(Exception):
    """A nested frame structure did not become ready in time."""


# ========================
# Events and targets
# ========================

class EventKind(Enum):
    MESSAGE = "message"
    CLICK = "click"
    DBLCLICK = "dblclick"
    CONTEXTMENU = "contextmenu"
    MOUSEDOWN = "mousedown"
    MOUSEUP = "mouseup"
    MOUSEMOVE = "mousemove"
    WHEEL = "wheel"
    KEYDOWN = "keydown"
    KEYUP = "keyup"
    FOCUS = "focus"
    BLUR = "blur"
    DRAGSTART = "dragstart"
    DRAGEND = "dragend"
    DROP = "drop"


# Events re-dispatched from an attached frame onto its container
BUBBLED_EVENT_KINDS = tuple(kind for kind in EventKind if kind != EventKind.MESSAGE)


class FrameEvent:
    """An event delivered to a frame. Identity matters: clones are distinct events."""

    def __init__(self, kind: EventKind, data: Any = None, source: Optional['Frame'] = None, origin: str = '*'):
        self.kind = kind
        self.data = data
        self.source = source
        self.origin = origin

    def clone(self) -> 'FrameEvent':
        return FrameEvent(self.kind, self.data, self.source, self.origin)

    def __repr__(self):
        return f"FrameEvent({self.kind.value}, source={self.source!r})"


Listener = Callable[[FrameEvent], Any]


class EventTarget:
    """Something listeners can be attached to and events dispatched at."""

    def __init__(self):
        self._listeners: Dict[EventKind, List[Listener]] = {}

    def add_listener(self, kind: EventKind, listener: Listener) -> None:
        self._listeners.setdefault(kind, []).append(listener)

    def remove_listener(self, kind: EventKind, listener: Listener) -> None:
        listeners = self._listeners.get(kind, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, kind: EventKind) -> int:
        return len(self._listeners.get(kind, []))

    def dispatch_event(self, event: FrameEvent) -> None:
        """Deliver synchronously to every listener of the event's kind."""
        for listener in list(self._listeners.get(event.kind, [])):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in {event.kind.value} listener on {self!r}: {e}")


class Frame(EventTarget):
    """A browsing context: the embedding window or one of its nested frames."""

    def __init__(self, name: str = '', parent: Optional['Frame'] = None):
        super().__init__()
        self.frame_id = str(uuid.uuid4())
        self.name = name
        self.parent = parent
        self.children: List['Frame'] = []
        self.ready = False
        self.closed = False
        # Per-frame objects owned by the frame (runtime helpers and the like)
        self.attachments: Dict[str, Any] = {}
        if parent is not None:
            parent.children.append(self)

    def post_message(self, data: Any, source: Optional['Frame'] = None, origin: str = '*') -> FrameEvent:
        """Post a message to this frame, as window.postMessage would."""
        event = FrameEvent(EventKind.MESSAGE, data, source, origin)
        self.dispatch_event(event)
        return event

    def walk(self) -> Iterator['Frame']:
        """Descendants, depth first."""
        for child in self.children:
            yield child
            yield from child.walk()

    def find(self, predicate: Callable[['Frame'], bool]) -> Optional['Frame']:
        for frame in self.walk():
            if predicate(frame):
                return frame
        return None

    def close(self) -> None:
        """Tear the frame down along with its subtree."""
        for child in list(self.children):
            child.close()
        self.closed = True
        self._listeners.clear()
        self.attachments.clear()
        if self.parent is not None and self in self.parent.children:
            self.parent.children.remove(self)

    def __repr__(self):
        return f"Frame({self.name or self.frame_id[:8]})"


# ========================
# Bookkeeping
# ========================

class FrameRegistry:
    """
    Frames reachable from the embedding context, held weakly.

    Entries only record attachment. Whether a frame is still alive is decided
    at lookup time: collected, closed and explicitly detached frames are pruned
    then.
    """

    def __init__(self, on_prune: Optional[Callable[[str], Any]] = None):
        self._refs: Dict[str, weakref.ref] = {}
        self._detached: Set[str] = set()
        # Called with the id of every frame dropped by live_frames
        self.on_prune = on_prune

    def attach(self, frame: Frame) -> None:
        self._refs[frame.frame_id] = weakref.ref(frame)
        self._detached.discard(frame.frame_id)

    def detach(self, frame: Frame) -> None:
        if frame.frame_id in self._refs:
            self._detached.add(frame.frame_id)

    def live_frames(self) -> List[Frame]:
        live = []
        for frame_id, ref in list(self._refs.items()):
            frame = ref()
            if frame is None or frame.closed or frame_id in self._detached:
                del self._refs[frame_id]
                self._detached.discard(frame_id)
                if self.on_prune is not None:
                    self.on_prune(frame_id)
                continue
            live.append(frame)
        return live

    def __contains__(self, frame):
        return frame.frame_id in self._refs and frame.frame_id not in self._detached

    def clear(self) -> None:
        self._refs.clear()
        self._detached.clear()

    def __len__(self):
        return len(self._refs)


class RuntimeInstanceRegistry:
    """Weakly tracked helper runtimes created per frame."""

    def __init__(self):
        self._refs: Set[weakref.ref] = set()

    def track(self, instance: Any) -> None:
        self._refs.add(weakref.ref(instance))

    def prune(self) -> int:
        dead = [ref for ref in self._refs if ref() is None]
        for ref in dead:
            self._refs.discard(ref)
        return len(dead)

    def live(self) -> List[Any]:
        return [instance for instance in (ref() for ref in self._refs) if instance is not None]

    def __len__(self):
        return len(self._refs)


async def maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


async def wait_until(predicate: Callable[[], Any], interval: float = 0.1, timeout: float = 30.0) -> Any:
    """Poll predicate at a fixed interval until it returns something truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if result:
            return result
        if loop.time() >= deadline:
            raise FrameInitTimeout(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


def bubble_events(frame: Frame, container: EventTarget,
                  kinds: Tuple[EventKind, ...] = BUBBLED_EVENT_KINDS) -> List[Tuple[EventKind, Listener]]:
    """Re-dispatch a copy of each event of the given kinds from frame onto container."""
    installed = []
    for kind in kinds:
        def listener(event, container=container):
            container.dispatch_event(event.clone())
        frame.add_listener(kind, listener)
        installed.append((kind, listener))
    return installed


# ========================
# Relay
# ========================

HelperFactory = Callable[[Frame], Any]
HelpersObserver = Callable[[List[Any]], Any]
AttachHook = Callable[[Frame], Any]


class FrameMessageRelay:
    """
    Message bus across one embedding context and every frame attached to it.

    Messages the top frame receives from an attached frame are cloned to all
    other live frames. Messages an attached frame receives are cloned to all
    other live frames whatever their source. Clones are remembered in a weak
    set so the frames receiving them do not forward them again.
    """

    def __init__(self, top: Frame,
                 helper_factory: Optional[HelperFactory] = None,
                 on_helpers_updated: Optional[HelpersObserver] = None):
        self.top = top
        self.helper_factory = helper_factory
        self.on_helpers_updated = on_helpers_updated
        self.registry = FrameRegistry(on_prune=self._unwire)
        self.forwarded = weakref.WeakSet()
        self.helpers = RuntimeInstanceRegistry()
        self.mounted = False
        # frame_id -> (frame ref, listeners this relay installed on the frame)
        self._wired: Dict[str, Tuple[weakref.ref, List[Tuple[EventKind, Listener]]]] = {}

    def wired_count(self) -> int:
        return len(self._wired)

    def _unwire(self, frame_id: str) -> None:
        entry = self._wired.pop(frame_id, None)
        if entry is None:
            return
        frame_ref, installed = entry
        frame = frame_ref()
        if frame is not None:
            for kind, listener in installed:
                frame.remove_listener(kind, listener)

    # ------------------------
    # Lifecycle
    # ------------------------

    def mount(self) -> None:
        if self.mounted:
            return
        self.top.add_listener(EventKind.MESSAGE, self._on_top_message)
        self.mounted = True

    def unmount(self) -> None:
        """Stop relaying and forget every attached frame."""
        if not self.mounted:
            return
        self.top.remove_listener(EventKind.MESSAGE, self._on_top_message)
        for frame_id in list(self._wired):
            self._unwire(frame_id)
        self.registry.clear()
        self.mounted = False

    async def attach(self, frame: Frame, container: Optional[EventTarget] = None,
                     on_attached: Optional[AttachHook] = None) -> None:
        """Register a newly created frame and wire it into the bus. Attaching twice is a no-op."""
        if frame.frame_id in self._wired and frame in self.registry:
            return
        self._unwire(frame.frame_id)
        self.registry.attach(frame)

        installed = []
        if container is not None:
            installed.extend(bubble_events(frame, container))

        if on_attached is not None:
            await maybe_await(on_attached(frame))

        frame_ref = weakref.ref(frame)

        def listener(event):
            attached = frame_ref()
            if attached is not None:
                self._on_frame_message(attached, event)

        frame.add_listener(EventKind.MESSAGE, listener)
        installed.append((EventKind.MESSAGE, listener))
        self._wired[frame.frame_id] = (frame_ref, installed)

        if self.helper_factory is not None:
            helper = self.helper_factory(frame)
            frame.attachments['runtime_helper'] = helper
            self.helpers.track(helper)
            pruned = self.helpers.prune()
            if pruned:
                logger.debug(f"Dropped {pruned} collected runtime helpers")
            if self.on_helpers_updated is not None:
                await maybe_await(self.on_helpers_updated(self.helpers.live()))

        logger.info(f"Attached {frame!r} ({len(self.registry)} registered)")

    def detach(self, frame: Frame) -> None:
        self.registry.detach(frame)
        self._unwire(frame.frame_id)

    # ------------------------
    # Forwarding
    # ------------------------

    def _relay(self, event: FrameEvent, live: List[Frame], exclude: Frame) -> int:
        """One relay pass: a fresh clone to every live frame except exclude."""
        delivered = set()
        for frame in live:
            if frame is exclude or frame.frame_id in delivered:
                continue
            clone = event.clone()
            self.forwarded.add(clone)
            frame.dispatch_event(clone)
            delivered.add(frame.frame_id)
        return len(delivered)

    def _on_top_message(self, event: FrameEvent) -> None:
        if event in self.forwarded:
            return
        logger.debug(f"Top frame got message {event.data!r}")
        live = self.registry.live_frames()
        source = event.source
        if source is None or source is self.top or not any(frame is source for frame in live):
            return
        count = self._relay(event, live, exclude=source)
        logger.debug(f"Forwarded to {count} frames")

    def _on_frame_message(self, frame: Frame, event: FrameEvent) -> None:
        if event in self.forwarded:
            return
        logger.debug(f"{frame!r} got message {event.data!r}")
        count = self._relay(event, self.registry.live_frames(), exclude=frame)
        logger.debug(f"Forwarded to {count} frames")

"""
Adaptive-streaming engine contract and a single-rendition HTTP engine.

The engine loads a playlist, announces the fragments it found, then loads
each fragment through a pluggable loader and feeds it to the bound element.
Everything the session needs to observe is published as an event.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable
from urllib.parse import urljoin

import httpx

from streaming.playlist import is_playlist, segment_references

logger = logging.getLogger(__name__)

TS_SYNC_BYTE = 0x47
TS_PACKET_SIZE = 188


def spawn_thread(target) -> None:
    threading.Thread(target=target, name="hls-load", daemon=True).start()


class Events(str, Enum):
    MANIFEST_LOADING = "manifestLoading"
    MANIFEST_PARSED = "manifestParsed"
    FRAG_LOADING = "fragLoading"
    FRAG_LOADED = "fragLoaded"
    FRAG_BUFFERED = "fragBuffered"
    ERROR = "error"
    DESTROYING = "destroying"


class ErrorType(str, Enum):
    NETWORK = "networkError"
    MEDIA = "mediaError"
    OTHER = "otherError"


@dataclass
class Fragment:
    sn: int
    url: str
    relurl: str


@dataclass
class ErrorData:
    type: ErrorType
    details: str
    fatal: bool
    url: str | None = None
    frag: Fragment | None = None
    exc: BaseException | None = None


class Loader(ABC):
    @abstractmethod
    def load(self, url: str) -> bytes:
        ...


class HttpLoader(Loader):
    def __init__(self, client: httpx.Client, timeout: float = 10.0):
        self.client = client
        self.timeout = timeout

    def load(self, url: str) -> bytes:
        response = self.client.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.content


@dataclass
class EngineConfig:
    # custom loading hook: receives the default loader, returns the one to use
    wrap_loader: Callable[[Loader], Loader] | None = None
    max_fragment_retries: int = 3
    retry_delay_seconds: float = 1.0
    timeout_seconds: float = 10.0


class StreamingEngine(ABC):
    """What a playback session drives. Modeled on hls.js' public surface."""

    def __init__(self, config: EngineConfig | None = None):
        self.config = config if config is not None else EngineConfig()
        self.media = None
        self.url = None
        self.destroyed = False
        self._handlers = defaultdict(list)

    @classmethod
    def is_supported(cls) -> bool:
        return True

    def on(self, event: Events, handler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: Events, handler) -> None:
        if handler in self._handlers[event]:
            self._handlers[event].remove(handler)

    def emit(self, event: Events, data) -> None:
        for handler in list(self._handlers[event]):
            handler(event, data)

    def load_source(self, url: str) -> None:
        self.url = url

    def attach_media(self, media) -> None:
        self.media = media

    @abstractmethod
    def start_load(self) -> None:
        ...

    @abstractmethod
    def recover_media_error(self) -> None:
        ...

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.emit(Events.DESTROYING, None)
        self.destroyed = True
        self.media = None
        self._handlers.clear()


class HttpEngine(StreamingEngine):
    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        client: httpx.Client | None = None,
        sleep=time.sleep,
        spawn=spawn_thread,
    ):
        super().__init__(config)
        self._owns_client = client is None
        self.client = client if client is not None else httpx.Client(follow_redirects=True)
        self.sleep = sleep
        self.spawn = spawn
        default = HttpLoader(self.client, self.config.timeout_seconds)
        self.loader = self.config.wrap_loader(default) if self.config.wrap_loader else default
        self.fragments: list[Fragment] | None = None
        self.position = 0
        self._running = False
        self._load_requested = False
        self._client_closed = False
        self._state_lock = threading.Lock()

    def start_load(self) -> None:
        """Load from the current position on a worker. Calls made while it runs are queued for it."""
        with self._state_lock:
            if self.destroyed:
                return
            self._load_requested = True
            if self._running:
                return
            self._running = True
        self.spawn(self._load_loop)

    def _next_load(self) -> bool:
        with self._state_lock:
            if self._load_requested and not self.destroyed:
                self._load_requested = False
                return True
            self._running = False
            return False

    def _load_loop(self) -> None:
        try:
            while self._next_load():
                self._run()
        except BaseException:
            with self._state_lock:
                self._running = False
            raise
        finally:
            # destroy() leaves the client to the worker while a request is in flight
            if self.destroyed:
                self._close_client()

    def recover_media_error(self) -> None:
        # drop anything partially decoded and resume from the failed fragment
        logger.info("recovering media error at fragment %d", self.position)
        self.start_load()

    def destroy(self) -> None:
        super().destroy()
        with self._state_lock:
            running = self._running
        if not running:
            self._close_client()

    def _close_client(self) -> None:
        with self._state_lock:
            if self._client_closed or not self._owns_client:
                return
            self._client_closed = True
        self.client.close()

    def _error(self, type_: ErrorType, details: str, *, fatal: bool, **kw) -> None:
        self.emit(Events.ERROR, ErrorData(type=type_, details=details, fatal=fatal, **kw))

    def _absolute(self, ref: str) -> str:
        try:
            return urljoin(self.url, ref)
        except ValueError:
            return ref

    def _load_manifest(self) -> bool:
        self.emit(Events.MANIFEST_LOADING, {"url": self.url})
        try:
            response = self.client.get(self.url, timeout=self.config.timeout_seconds)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self._error(ErrorType.NETWORK, "manifestLoadError", fatal=True, url=self.url, exc=e)
            return False
        text = response.text
        if not is_playlist(text):
            self._error(ErrorType.OTHER, "manifestParsingError", fatal=True, url=self.url)
            return False
        self.fragments = [
            Fragment(sn=i, url=self._absolute(ref), relurl=ref) for i, ref in enumerate(segment_references(text))
        ]
        self.emit(Events.MANIFEST_PARSED, {"url": self.url, "fragments": self.fragments})
        return True

    def _load_fragment(self, frag: Fragment) -> bytes | None:
        attempts = self.config.max_fragment_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.loader.load(frag.url)
            except httpx.HTTPError as e:
                # a playlist can land before its segments; treat misses as transient first
                fatal = attempt == attempts
                self._error(ErrorType.NETWORK, "fragLoadError", fatal=fatal, url=frag.url, frag=frag, exc=e)
                if fatal or self.destroyed:
                    return None
                self.sleep(self.config.retry_delay_seconds)
            except Exception as e:
                self._error(ErrorType.OTHER, "fragLoadError", fatal=True, url=frag.url, frag=frag, exc=e)
                return None
        return None

    def _run(self) -> None:
        if self.fragments is None and not self._load_manifest():
            return
        while self.position < len(self.fragments) and not self.destroyed:
            frag = self.fragments[self.position]
            self.emit(Events.FRAG_LOADING, {"frag": frag})
            if self.destroyed:
                return
            data = self._load_fragment(frag)
            if data is None or self.destroyed:
                return
            if len(data) < TS_PACKET_SIZE or data[0] != TS_SYNC_BYTE:
                self._error(ErrorType.MEDIA, "fragParsingError", fatal=True, url=frag.url, frag=frag)
                return
            media = self.media
            if media is None:
                return
            media.append_buffer(data)
            self.position += 1
            self.emit(Events.FRAG_LOADED, {"frag": frag, "size": len(data)})
            self.emit(Events.FRAG_BUFFERED, {"frag": frag})

"""
Playback session: one adaptive-streaming engine bound to one element.

State changes are table driven. ``TRANSITIONS`` maps (state, trigger) to the
next state and the action to run; ``ERROR_RULES`` maps an engine error type to
the trigger it fires and the client error reported if the session gives up.

    Loading --first frame--> Ready
    Loading|Ready --fatal network/media--> Recovering --first frame--> Ready
    Recovering --any fatal--> Failed
    Loading|Ready --other fatal--> Failed
    any --destroy--> Destroyed
"""
import dataclasses
import logging
import threading
import weakref
from dataclasses import dataclass
from enum import Enum

from streaming import HLS_PLAYLIST_MIME, ReferenceKind, base_path_for, classify_reference, resolve

from .engine import EngineConfig, ErrorData, ErrorType, Events, HttpEngine, Loader
from .errors import ClientError, ClientFatalError, ClientMediaError, ClientNetworkError, ClientResolveError

logger = logging.getLogger(__name__)

UNSUPPORTED_MESSAGE = "HLS playback is not supported on this device."


class SessionState(str, Enum):
    LOADING = "Loading"
    READY = "Ready"
    RECOVERING = "Recovering"
    FAILED = "Failed"
    DESTROYED = "Destroyed"


class Trigger(str, Enum):
    FIRST_FRAME = "first_frame"
    FATAL_NETWORK = "fatal_network"
    FATAL_MEDIA = "fatal_media"
    FATAL_OTHER = "fatal_other"


S = SessionState

TRANSITIONS = {
    (S.LOADING, Trigger.FIRST_FRAME): (S.READY, "hide_loading"),
    (S.RECOVERING, Trigger.FIRST_FRAME): (S.READY, "hide_loading"),
    (S.LOADING, Trigger.FATAL_NETWORK): (S.RECOVERING, "reload"),
    (S.READY, Trigger.FATAL_NETWORK): (S.RECOVERING, "reload"),
    (S.LOADING, Trigger.FATAL_MEDIA): (S.RECOVERING, "recover_media"),
    (S.READY, Trigger.FATAL_MEDIA): (S.RECOVERING, "recover_media"),
    (S.RECOVERING, Trigger.FATAL_NETWORK): (S.FAILED, "fail"),
    (S.RECOVERING, Trigger.FATAL_MEDIA): (S.FAILED, "fail"),
    (S.LOADING, Trigger.FATAL_OTHER): (S.FAILED, "fail"),
    (S.READY, Trigger.FATAL_OTHER): (S.FAILED, "fail"),
    (S.RECOVERING, Trigger.FATAL_OTHER): (S.FAILED, "fail"),
}


@dataclass(frozen=True)
class ErrorRule:
    trigger: Trigger
    error: type[ClientError]


ERROR_RULES = {
    ErrorType.NETWORK: ErrorRule(Trigger.FATAL_NETWORK, ClientNetworkError),
    ErrorType.MEDIA: ErrorRule(Trigger.FATAL_MEDIA, ClientMediaError),
    ErrorType.OTHER: ErrorRule(Trigger.FATAL_OTHER, ClientFatalError),
}


class ResolvingLoader(Loader):
    """Last interception point: rewrites the URL of every request it is handed."""

    def __init__(self, inner: Loader, resolve_url):
        self.inner = inner
        self.resolve_url = resolve_url

    def load(self, url: str) -> bytes:
        return self.inner.load(self.resolve_url(url))


class PlaybackSession:
    def __init__(self, element, playlist_url: str, *, engine_factory=HttpEngine, engine_config: EngineConfig | None = None):
        # the registry owns the element through a weak key; never keep it alive from here
        self._element = weakref.ref(element)
        self.playlist_url = playlist_url
        self.base_path = base_path_for(playlist_url)
        self.state = SessionState.LOADING
        self.fragment_cache: dict[str, str] = {}
        self.error: ClientError | None = None
        self.engine = None
        self._engine_factory = engine_factory
        self._engine_config = engine_config if engine_config is not None else EngineConfig()
        # start() runs on a timer thread and engine events on the load thread
        self._lock = threading.RLock()

    @property
    def element(self):
        return self._element()

    @property
    def active(self) -> bool:
        return self.engine is not None and not self.engine.destroyed

    def __repr__(self):
        return f"<PlaybackSession {self.state.value} {self.playlist_url!r}>"

    # -- reference resolution --------------------------------------------

    def resolve_url(self, url: str) -> str:
        cached = self.fragment_cache.get(url)
        if cached is not None:
            return cached
        if classify_reference(url, self.base_path) is ReferenceKind.MALFORMED:
            raise ClientResolveError(f"cannot resolve fragment reference {url!r}")
        resolved = resolve(url, self.base_path)
        self.fragment_cache[url] = resolved
        self.fragment_cache[resolved] = resolved
        return resolved

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            self._start()

    def _start(self) -> None:
        element = self.element
        if self.state is not SessionState.LOADING or self.engine is not None or element is None:
            return
        element.show_loading()

        if not self._engine_factory.is_supported():
            if element.can_play_type(HLS_PLAYLIST_MIME):
                # native playback: the element fetches fragments itself
                element.src = self.playlist_url
                self.state = SessionState.READY
                element.hide_loading()
                return
            self.error = ClientFatalError(
                "no streaming engine and no native HLS support", message=UNSUPPORTED_MESSAGE
            )
            self.state = SessionState.FAILED
            self._fail()
            return

        config = dataclasses.replace(
            self._engine_config, wrap_loader=lambda inner: ResolvingLoader(inner, self.resolve_url)
        )
        self.engine = self._engine_factory(config)
        self.engine.on(Events.MANIFEST_PARSED, self._on_manifest_parsed)
        self.engine.on(Events.FRAG_LOADING, self._on_frag_loading)
        self.engine.on(Events.FRAG_BUFFERED, self._on_frag_buffered)
        self.engine.on(Events.ERROR, self._on_error)
        self.engine.load_source(self.playlist_url)
        self.engine.attach_media(weakref.proxy(element))
        self.engine.start_load()

    def destroy(self) -> None:
        with self._lock:
            if self.state is SessionState.DESTROYED:
                return
            self.state = SessionState.DESTROYED
            self._teardown_engine()
            element = self.element
            if element is not None:
                element.hide_loading()

    # -- engine events -----------------------------------------------------

    def _on_manifest_parsed(self, event, data) -> None:
        for frag in data["fragments"]:
            try:
                frag.url = self.resolve_url(frag.url)
            except ClientResolveError:
                # left as-is; it fails when (and if) it is requested
                logger.warning("unresolvable fragment reference %r in %s", frag.url, self.playlist_url)

    def _on_frag_loading(self, event, data) -> None:
        frag = data["frag"]
        try:
            frag.url = self.resolve_url(frag.url)
        except ClientResolveError as e:
            self.fire(Trigger.FATAL_OTHER, e)

    def _on_frag_buffered(self, event, data) -> None:
        if self.state in (SessionState.LOADING, SessionState.RECOVERING):
            self.fire(Trigger.FIRST_FRAME)

    def _on_error(self, event, data: ErrorData) -> None:
        if not data.fatal:
            logger.warning("non-fatal %s (%s) on %s", data.type.value, data.details, data.url or self.playlist_url)
            return
        if isinstance(data.exc, ClientResolveError):
            self.fire(Trigger.FATAL_OTHER, data.exc)
            return
        rule = ERROR_RULES.get(data.type, ERROR_RULES[ErrorType.OTHER])
        logger.error("fatal %s (%s) on %s in state %s", data.type.value, data.details, data.url or self.playlist_url, self.state.value)
        self.fire(rule.trigger, rule.error(f"{data.details}: {data.exc or data.url}"))

    # -- state machine -----------------------------------------------------

    def fire(self, trigger: Trigger, error: ClientError | None = None) -> None:
        with self._lock:
            entry = TRANSITIONS.get((self.state, trigger))
            if entry is None:
                logger.debug("ignoring %s in state %s", trigger.value, self.state.value)
                return
            next_state, action = entry
            self.state = next_state
            if error is not None:
                self.error = error
            getattr(self, f"_{action}")()

    def _hide_loading(self) -> None:
        element = self.element
        if element is not None:
            element.hide_loading()

    def _show_loading(self) -> None:
        element = self.element
        if element is not None:
            element.show_loading()

    def _reload(self) -> None:
        self._show_loading()
        self.engine.start_load()

    def _recover_media(self) -> None:
        self._show_loading()
        self.engine.recover_media_error()

    def _fail(self) -> None:
        error = self.error or ClientFatalError()
        logger.error("playback of %s failed: %s", self.playlist_url, error)
        element = self.element
        if element is not None:
            element.hide_loading()
            element.show_error(error.message, retryable=error.retryable)
        self._teardown_engine()

    def _teardown_engine(self) -> None:
        if self.engine is not None:
            self.engine.destroy()
            self.engine = None

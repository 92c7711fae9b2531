"""
Session registry: at most one playback session per element.

Keys are held weakly, so the registry never decides how long an element
lives; an element that goes away takes its entry with it. Rebinding an
element destroys its previous session before the new one is created.
"""
import logging
import threading
import weakref

from .session import PlaybackSession, SessionState

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, *, session_factory=PlaybackSession, timer_factory=threading.Timer, **session_kwargs):
        self._session_factory = session_factory
        self._timer_factory = timer_factory
        self._session_kwargs = session_kwargs
        self._sessions = weakref.WeakKeyDictionary()
        self._timers = weakref.WeakKeyDictionary()
        self._lock = threading.RLock()

    def __len__(self):
        return len(self._sessions)

    def __contains__(self, element):
        return element in self._sessions

    def get(self, element) -> PlaybackSession | None:
        return self._sessions.get(element)

    def sessions(self) -> list[PlaybackSession]:
        return list(self._sessions.values())

    def active_sessions(self) -> list[PlaybackSession]:
        return [s for s in self.sessions() if s.state not in (SessionState.FAILED, SessionState.DESTROYED)]

    def bind(self, element, playlist_url: str | None = None, *, delay: float = 0.0) -> PlaybackSession:
        """Replace whatever is bound to ``element`` with a fresh session.

        With ``delay`` the engine starts later on a timer thread, which spreads
        out initialisation when many elements are bound at once.
        """
        with self._lock:
            self.destroy(element)
            session = self._session_factory(element, playlist_url or element.source, **self._session_kwargs)
            self._sessions[element] = session
            if delay > 0:
                timer = self._timer_factory(delay, session.start)
                timer.daemon = True
                self._timers[element] = timer
                timer.start()
                return session
        session.start()
        return session

    def destroy(self, element) -> None:
        with self._lock:
            timer = self._timers.pop(element, None)
            session = self._sessions.pop(element, None)
        if timer is not None:
            timer.cancel()
        if session is not None:
            logger.debug("destroying %r", session)
            session.destroy()

    def destroy_all(self) -> None:
        with self._lock:
            elements = list(self._sessions.keys())
        for element in elements:
            self.destroy(element)

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class Connectivity:
    """Online/offline state shared by the tracker and the reconciler.

    Listeners run on the thread that changed the state, after the change.
    """

    def __init__(self, online: bool = False):
        self._online = online
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def remove():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def set_online(self, online: bool) -> None:
        with self._lock:
            if self._online == online:
                return
            self._online = online
            listeners = list(self._listeners)
        logger.info(f"Connectivity is now {'online' if online else 'offline'}")
        for listener in listeners:
            try:
                listener(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}", exc_info=True)

    def toggle(self) -> bool:
        """Manual override; returns the new state."""
        self.set_online(not self._online)
        return self._online

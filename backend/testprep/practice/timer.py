"""Wall-clock tick scheduler for the live session."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Optional

from ..config import settings
from .actions import TickTimer

if TYPE_CHECKING:
    from .store import SessionStore


class SessionTimer:
    """Emit `TickTimer` once per interval while the live session is running.

    Ticks are suppressed whenever there is no session or it is paused or
    completed, so the reducer never sees a tick it would have to ignore.
    """

    def __init__(self, store: "SessionStore", interval: Optional[float] = None):
        self._store = store
        self._interval = settings.TICK_INTERVAL_SECONDS if interval is None else interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick_once(self) -> bool:
        """Emit one tick if the session is running; returns whether it did."""
        session = self._store.session
        if session is None or not session.is_active:
            return False
        self._store.dispatch(TickTimer())
        return True

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="session-timer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(self._interval * 2)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.tick_once()

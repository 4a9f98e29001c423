"""Durable local slot holding the in-progress practice session."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from threading import Lock
from typing import Optional

from pydantic import ValidationError

from .types import PracticeSession

SLOT_NAME = "practiceSession"

_LOGGER = logging.getLogger("testprep.storage")


class LocalSessionStorage:
    """A single named slot, overwritten wholesale on every save.

    There is exactly one writer (the owning `SessionStore`); the lock only
    guards against the timer thread and a caller saving at the same time.
    """

    def __init__(self, root: Path | str, slot: str = SLOT_NAME):
        self._root = Path(root).expanduser()
        self._path = self._root / f"{slot}.json"
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def save(self, session: PracticeSession) -> None:
        payload = session.model_dump_json()
        with self._lock:
            self._root.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(".json.tmp")
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self._path)

    def load(self) -> Optional[PracticeSession]:
        """Return the stored session, or None when the slot is empty or bad.

        Malformed data is logged and the slot is cleared so the next start
        begins from a clean state.
        """
        with self._lock:
            if not self._path.exists():
                return None
            try:
                data = self._path.read_bytes()
            except OSError as exc:
                _LOGGER.warning("session slot unreadable at %s: %s", self._path, exc)
                return None
        try:
            raw = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            _LOGGER.warning("discarding undecodable session slot %s: %s", self._path, exc.reason)
            self.clear()
            return None
        try:
            session = PracticeSession.model_validate_json(raw)
        except ValidationError as exc:
            _LOGGER.warning("discarding malformed session slot %s: %s", self._path, exc.errors()[:1])
            self.clear()
            return None
        if session.is_completed:
            self.clear()
            return None
        return session

    def clear(self) -> None:
        with self._lock:
            try:
                self._path.unlink()
            except FileNotFoundError:
                pass

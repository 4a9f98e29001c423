"""Client-side practice session: state machine, local slot and sync.

Typical wiring::

    client = RemoteSessionClient(token=access_token)
    store = build_store(client)
    store.worker.start()
    timer = SessionTimer(store)
    timer.start()
    store.restore() or store.start_session("SHSAT", "subject_practice", questions)
"""

from pathlib import Path
from typing import Optional, Union

from ..config import settings
from .remote import RemoteSessionClient
from .storage import LocalSessionStorage
from .store import SessionStore
from .sync import SyncWorker
from .timer import SessionTimer


def build_store(
    client: RemoteSessionClient,
    storage_dir: Optional[Union[str, Path]] = None,
    **worker_kwargs,
) -> SessionStore:
    """Create a `SessionStore` whose sync worker reports into the store."""
    storage = LocalSessionStorage(storage_dir or settings.SESSION_STORAGE_DIR)
    store = SessionStore(storage)
    store.worker = SyncWorker(client, notifier=store.notify, **worker_kwargs)
    return store


__all__ = [
    "LocalSessionStorage",
    "RemoteSessionClient",
    "SessionStore",
    "SessionTimer",
    "SyncWorker",
    "build_store",
]

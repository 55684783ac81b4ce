import asyncio
import copy
import json
import logging
from typing import Callable, Optional, Protocol
from urllib.parse import quote, unquote

from ..errors import StoreUnavailable

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]
Unsubscribe = Callable[[], None]


class StorageBackend(Protocol):
    async def get(self, key: str) -> Optional[dict]: ...

    async def set(self, key: str, value: dict) -> None: ...

    async def delete(self, key: str) -> None: ...

    def subscribe(self, listener: ChangeListener) -> Unsubscribe: ...


# ── In-memory ────────────────────────────────────────────────────────────────

class MemoryBackend:
    """Process-wide key/value backend shared by every store instance using it.

    Listeners are notified with the changed key after every write, whichever
    store instance made the write.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}
        self._listeners: list[ChangeListener] = []

    async def get(self, key: str) -> Optional[dict]:
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def set(self, key: str, value: dict) -> None:
        self._records[key] = copy.deepcopy(value)
        self._notify(key)

    async def delete(self, key: str) -> None:
        if self._records.pop(key, None) is not None:
            self._notify(key)

    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception as exc:
                logger.warning("Storage listener failed for key %s: %s", key, exc)


# ── Firestore ────────────────────────────────────────────────────────────────

def _doc_id(key: str) -> str:
    # Firestore document ids cannot contain "/".
    return quote(key, safe="")


class FirestoreBackend:
    """Preferences kept as one Firestore document per key.

    The blocking SDK calls run in a worker thread; snapshot callbacks arrive on
    an SDK thread and are handed back to the event loop that subscribed.
    """

    def __init__(self, credentials_path: str, collection: str) -> None:
        import firebase_admin
        from firebase_admin import credentials, firestore

        if not firebase_admin._apps:
            try:
                cred = credentials.Certificate(json.loads(credentials_path))
            except (json.JSONDecodeError, ValueError):
                cred = credentials.Certificate(credentials_path)
            firebase_admin.initialize_app(cred)

        self._collection = firestore.client().collection(collection)

    async def get(self, key: str) -> Optional[dict]:
        try:
            doc = await asyncio.to_thread(self._collection.document(_doc_id(key)).get)
        except Exception as exc:
            raise StoreUnavailable(f"Firestore read failed for '{key}': {exc}") from exc
        return doc.to_dict() if doc.exists else None

    async def set(self, key: str, value: dict) -> None:
        try:
            await asyncio.to_thread(self._collection.document(_doc_id(key)).set, value)
            logger.info("Saved preference record %s to Firestore.", key)
        except Exception as exc:
            logger.error("Firestore write failed for %s: %s", key, exc, exc_info=True)
            raise StoreUnavailable(f"Firestore write failed for '{key}': {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._collection.document(_doc_id(key)).delete)
        except Exception as exc:
            logger.error("Firestore delete failed for %s: %s", key, exc, exc_info=True)
            raise StoreUnavailable(f"Firestore delete failed for '{key}': {exc}") from exc

    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        loop = asyncio.get_running_loop()

        def on_snapshot(_snapshot, changes, _read_time) -> None:
            for change in changes:
                loop.call_soon_threadsafe(listener, unquote(change.document.id))

        watch = self._collection.on_snapshot(on_snapshot)
        return watch.unsubscribe


def make_backend(settings) -> StorageBackend:
    if settings.storage_backend == "firestore":
        return FirestoreBackend(settings.firebase_credentials_path, settings.firestore_collection)
    return MemoryBackend()

import logging
from typing import Optional

from soupsieve import SelectorSyntaxError

from ..models.preferences import Preferences
from .document_transformer import DocumentTransformer, MutationWatcher
from .live_document import LiveDocument
from .messaging import (
    GET_READING_MODE,
    PRIMARY_FRAME,
    SET_READING_MODE,
    MessageTransport,
    reading_mode_changed,
)
from .page_classifier import origin_of
from .preference_store import PreferenceStore

logger = logging.getLogger(__name__)


class FrameController:
    """
    Everything one document frame owns: its live document, transformer and
    mutation watcher, plus its registration on the transport and its
    preference subscription. Created per frame; ``start``/``stop`` follow the
    frame's load and unload.
    """

    def __init__(
        self,
        *,
        tab_id: int,
        url: str,
        html: str,
        transport: MessageTransport,
        store: PreferenceStore,
        frame_id: int = PRIMARY_FRAME,
        debounce_ms: int = 50,
    ) -> None:
        self.tab_id = tab_id
        self.frame_id = frame_id
        self.url = url
        self.origin = origin_of(url)
        self.document = LiveDocument(html)
        self.transformer = DocumentTransformer(self.document)
        self.watcher = MutationWatcher(self.transformer, debounce_ms)
        self.prefs: Optional[Preferences] = None
        self._transport = transport
        self._store = store
        self._unregister = None
        self._unwatch = None

    @property
    def br_mode(self) -> bool:
        return self.transformer.active

    @property
    def started(self) -> bool:
        return self._unregister is not None

    async def start(self) -> None:
        if self.started:
            return
        self._unregister = self._transport.register_frame(self.tab_id, self.frame_id, self.handle_message)
        self._unwatch = self._store.watch(self.origin, self._on_prefs_changed)
        self.watcher.start()

        self.prefs = await self._store.get(self.origin)
        if self.prefs.on_page_load:
            logger.info("Reading mode enabled on load for %s.", self.origin)
            self.transformer.apply(self.prefs)

    def stop(self) -> None:
        if self._unregister is not None:
            self._unregister()
            self._unregister = None
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None
        self.watcher.stop()

    async def handle_message(self, message: dict) -> dict:
        kind = message.get("type")
        if kind == GET_READING_MODE:
            return {"data": self.br_mode}
        if kind == SET_READING_MODE:
            ok = await self.set_reading_mode(bool(message.get("data")))
            return {"ok": ok, "data": self.br_mode}
        logger.warning("Frame %s/%s ignoring unknown message %r.", self.tab_id, self.frame_id, kind)
        return {"ok": False, "data": self.br_mode, "error": f"unknown message type {kind!r}"}

    async def set_reading_mode(self, desired: bool) -> bool:
        try:
            if desired:
                self.prefs = await self._store.get(self.origin)
                self.transformer.apply(self.prefs)
            else:
                self.transformer.revert()
        except Exception as exc:
            logger.warning("Reading mode switch failed in tab %s: %s", self.tab_id, exc, exc_info=True)
            return False
        return True

    async def toggle_local(self) -> bool:
        """In-page shortcut: flip the mode here and tell the rest of the runtime."""
        ok = await self.set_reading_mode(not self.br_mode)
        if ok:
            self._transport.broadcast(reading_mode_changed(self.tab_id, self.br_mode, self.frame_id), sender=self)
        return self.br_mode

    def _on_prefs_changed(self, prefs: Preferences) -> None:
        self.prefs = prefs
        if self.transformer.active:
            self.transformer.update(prefs)

    def mutate(self, html: str, selector: Optional[str] = None) -> int:
        """Insert markup the way a page script would; returns the number of nodes added."""
        try:
            parent = self.document.select_one(selector) if selector else (self.document.soup.body or self.document.soup)
        except SelectorSyntaxError as exc:
            raise ValueError(f"Invalid selector {selector!r}: {exc}") from exc
        if parent is None:
            raise LookupError(f"No element matches {selector!r}")
        return len(self.document.insert_html(parent, html))

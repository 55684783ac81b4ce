import logging
from typing import Optional

from ..models.session import PageCategory
from .frame_controller import FrameController
from .messaging import PRIMARY_FRAME, MessageTransport
from .page_classifier import classify
from .preference_store import PreferenceStore
from .sync_bridge import BadgeIndicator, SyncBridge

logger = logging.getLogger(__name__)


class ReaderRuntime:
    """
    Wires the controller side (bridge, badge) to the document frames of each
    open tab. Frames only load on pages the classifier calls normal, as a
    content script would.
    """

    def __init__(self, store: PreferenceStore, settings, transport: Optional[MessageTransport] = None) -> None:
        self.settings = settings
        self.store = store
        self.transport = transport or MessageTransport()
        self.bridge = SyncBridge(
            self.transport,
            timeout=settings.query_timeout_seconds,
            file_access_granted=settings.file_access_granted,
            browser_target=settings.browser_target,
            permission_page_url=settings.permission_page_url,
        )
        self.badge = BadgeIndicator(self.transport)
        self._frames: dict[int, dict[int, FrameController]] = {}

    def start(self) -> None:
        self.bridge.start()
        self.badge.start()

    def stop(self) -> None:
        for tab_id in list(self._frames):
            self._unload_frames(tab_id)
        self.bridge.stop()
        self.badge.stop()

    # ── Tabs ─────────────────────────────────────────────────────────────────

    async def open_tab(self, url: str, html: str, frames: Optional[list[str]] = None) -> int:
        tab_id = self.transport.open_tab(url)
        self._frames[tab_id] = {}
        await self._load_frames(tab_id, url, html, frames or [])
        return tab_id

    async def navigate(self, tab_id: int, url: str, html: str, frames: Optional[list[str]] = None) -> None:
        self._require(tab_id)
        self._unload_frames(tab_id)
        self.transport.navigate(tab_id, url)
        self.bridge.invalidate(tab_id)
        self.badge.forget(tab_id)
        await self._load_frames(tab_id, url, html, frames or [])

    def close_tab(self, tab_id: int) -> None:
        self._require(tab_id)
        self._unload_frames(tab_id)
        del self._frames[tab_id]
        self.transport.close_tab(tab_id)
        self.bridge.invalidate(tab_id)
        self.badge.forget(tab_id)

    def has_tab(self, tab_id: int) -> bool:
        return tab_id in self._frames

    def tab_url(self, tab_id: int) -> Optional[str]:
        return self.transport.tab_url(tab_id)

    def frame(self, tab_id: int, frame_id: int = PRIMARY_FRAME) -> Optional[FrameController]:
        return self._frames.get(tab_id, {}).get(frame_id)

    def frames(self, tab_id: int) -> list[FrameController]:
        return [self._frames[tab_id][frame_id] for frame_id in sorted(self._frames.get(tab_id, {}))]

    def _require(self, tab_id: int) -> None:
        if tab_id not in self._frames:
            raise KeyError(f"Unknown tab {tab_id}")

    async def _load_frames(self, tab_id: int, url: str, html: str, extra_frames: list[str]) -> None:
        category = classify(url, self.settings.file_access_granted)
        if category != PageCategory.NORMAL:
            logger.info("No document context for tab %s (%s).", tab_id, category.value)
            return

        for frame_id, frame_html in enumerate([html, *extra_frames]):
            controller = FrameController(
                tab_id=tab_id,
                frame_id=frame_id,
                url=url,
                html=frame_html,
                transport=self.transport,
                store=self.store,
                debounce_ms=self.settings.mutation_debounce_ms,
            )
            self._frames[tab_id][frame_id] = controller
            await controller.start()

    def _unload_frames(self, tab_id: int) -> None:
        for controller in self._frames.get(tab_id, {}).values():
            controller.stop()
        self._frames[tab_id] = {}

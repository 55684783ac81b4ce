import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from ..errors import MessageDropped

logger = logging.getLogger(__name__)

PRIMARY_FRAME = 0

FrameHandler = Callable[[dict], Awaitable[dict]]
RuntimeListener = Callable[[dict], None]

# Message shapes
GET_READING_MODE = "getReadingMode"
SET_READING_MODE = "setReadingMode"
READING_MODE_CHANGED = "setIconBadgeText"


def query_reading_mode() -> dict:
    return {"type": GET_READING_MODE}


def toggle_reading_mode(desired: bool) -> dict:
    return {"type": SET_READING_MODE, "data": desired}


def reading_mode_changed(tab_id: int, br_mode: bool, frame_id: int = PRIMARY_FRAME) -> dict:
    return {"message": READING_MODE_CHANGED, "data": br_mode, "tabId": tab_id, "frameId": frame_id}


@dataclass
class TabRecord:
    tab_id: int
    url: str
    frames: dict[int, FrameHandler] = field(default_factory=dict)


@dataclass
class _Listener:
    callback: RuntimeListener
    owner: Any = None


class MessageTransport:
    """
    In-process stand-in for the browser's tab and runtime messaging.

    Frames register a handler per (tab, frame). ``send`` reaches exactly one
    frame and raises MessageDropped when nothing is listening there; it makes
    no promise that the handler ever answers. ``broadcast`` reaches runtime
    listeners other than the sender.
    """

    def __init__(self) -> None:
        self._tabs: dict[int, TabRecord] = {}
        self._listeners: list[_Listener] = []
        self._next_tab_id = 1

    # ── Tabs ─────────────────────────────────────────────────────────────────

    def open_tab(self, url: str) -> int:
        tab_id = self._next_tab_id
        self._next_tab_id += 1
        self._tabs[tab_id] = TabRecord(tab_id=tab_id, url=url)
        return tab_id

    def tab_url(self, tab_id: int) -> Optional[str]:
        tab = self._tabs.get(tab_id)
        return tab.url if tab else None

    def frame_ids(self, tab_id: int) -> list[int]:
        tab = self._tabs.get(tab_id)
        return sorted(tab.frames) if tab else []

    def navigate(self, tab_id: int, url: str) -> None:
        tab = self._require(tab_id)
        if tab.frames:
            logger.info("Tab %s navigated with %d frame(s) still registered; dropping them.", tab_id, len(tab.frames))
        tab.frames.clear()
        tab.url = url

    def close_tab(self, tab_id: int) -> None:
        self._tabs.pop(tab_id, None)

    def _require(self, tab_id: int) -> TabRecord:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise KeyError(f"Unknown tab {tab_id}")
        return tab

    # ── Frames ───────────────────────────────────────────────────────────────

    def register_frame(self, tab_id: int, frame_id: int, handler: FrameHandler) -> Callable[[], None]:
        tab = self._require(tab_id)
        tab.frames[frame_id] = handler

        def unregister() -> None:
            current = self._tabs.get(tab_id)
            if current is not None and current.frames.get(frame_id) is handler:
                del current.frames[frame_id]

        return unregister

    async def send(self, tab_id: int, message: dict, frame_id: int = PRIMARY_FRAME) -> dict:
        tab = self._tabs.get(tab_id)
        handler = tab.frames.get(frame_id) if tab else None
        if handler is None:
            raise MessageDropped(f"No receiver in tab {tab_id} frame {frame_id}")
        return await handler(dict(message))

    # ── Runtime broadcast ────────────────────────────────────────────────────

    def add_listener(self, callback: RuntimeListener, owner: Any = None) -> Callable[[], None]:
        listener = _Listener(callback, owner)
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def broadcast(self, message: dict, sender: Any = None) -> int:
        delivered = 0
        for listener in list(self._listeners):
            if sender is not None and listener.owner is sender:
                continue
            try:
                listener.callback(dict(message))
                delivered += 1
            except Exception as exc:
                logger.warning("Runtime listener failed on %s: %s", message.get("message"), exc)
        return delivered

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import MessageDropped
from ..models.session import (
    BridgeResult,
    ConditionReport,
    PageCategory,
    PageCondition,
    ReadingState,
    TabSession,
)
from .messaging import (
    PRIMARY_FRAME,
    READING_MODE_CHANGED,
    MessageTransport,
    query_reading_mode,
    reading_mode_changed,
    toggle_reading_mode,
)
from .page_classifier import classify, origin_of

logger = logging.getLogger(__name__)

_NO_ACK = object()


@dataclass
class _CachedState:
    url: str
    state: ReadingState


class SyncBridge:
    """
    Controller-side view of each tab's reading mode.

    Restricted and unauthorized-file pages are refused up front with state
    ``restricted``; ``unreachable`` only means a normal page never answered.

    The cached state per (tab, frame) is only ever set from an answer the
    frame gave, and is thrown away as soon as the tab's URL differs from the
    one it was recorded under.
    """

    def __init__(
        self,
        transport: MessageTransport,
        *,
        timeout: float = 1.0,
        file_access_granted: bool = False,
        browser_target: str = "chrome",
        permission_page_url: Optional[str] = None,
    ) -> None:
        self._transport = transport
        self.timeout = timeout
        self.file_access_granted = file_access_granted
        self.browser_target = browser_target
        self.permission_page_url = permission_page_url
        self._cache: dict[tuple[int, int], _CachedState] = {}
        self._remove_listener = None

    def start(self) -> None:
        if self._remove_listener is None:
            self._remove_listener = self._transport.add_listener(self._on_runtime_message, owner=self)

    def stop(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        self._cache.clear()

    # ── Cache ────────────────────────────────────────────────────────────────

    def state(self, tab_id: int, frame_id: int = PRIMARY_FRAME) -> ReadingState:
        entry = self._fresh(tab_id, frame_id)
        return entry.state if entry else ReadingState.UNKNOWN

    def session(self, tab_id: int) -> Optional[TabSession]:
        entry = self._fresh(tab_id, PRIMARY_FRAME)
        if entry is None or entry.state not in (ReadingState.ON, ReadingState.OFF):
            return None
        return TabSession(br_mode=entry.state == ReadingState.ON, origin=origin_of(entry.url))

    def invalidate(self, tab_id: int) -> None:
        for key in [key for key in self._cache if key[0] == tab_id]:
            del self._cache[key]

    def _fresh(self, tab_id: int, frame_id: int) -> Optional[_CachedState]:
        entry = self._cache.get((tab_id, frame_id))
        if entry is None:
            return None
        if entry.url != self._transport.tab_url(tab_id):
            logger.info("Discarding stale reading state for tab %s.", tab_id)
            self.invalidate(tab_id)
            return None
        return entry

    def _record(self, tab_id: int, frame_id: int, url: Optional[str], state: ReadingState) -> None:
        if url is None:
            return
        self._cache[(tab_id, frame_id)] = _CachedState(url=url, state=state)

    # ── Protocol ─────────────────────────────────────────────────────────────

    async def ensure(self, tab_id: int) -> BridgeResult:
        """Cached state when still fresh, otherwise a new query."""
        state = self.state(tab_id)
        if state in (ReadingState.ON, ReadingState.OFF):
            return BridgeResult(tab_id=tab_id, state=state)
        return await self.query(tab_id)

    async def query(self, tab_id: int) -> BridgeResult:
        url = self._transport.tab_url(tab_id)
        if self._restricted(url):
            return self._refused(tab_id, url)

        response = await self._request(tab_id, PRIMARY_FRAME, query_reading_mode())

        if response is _NO_ACK or not isinstance(response.get("data"), bool):
            return self._unreachable(tab_id, url)

        state = ReadingState.from_mode(response["data"])
        self._record(tab_id, PRIMARY_FRAME, url, state)
        return BridgeResult(tab_id=tab_id, state=state)

    async def toggle(self, tab_id: int, desired: bool) -> BridgeResult:
        url = self._transport.tab_url(tab_id)
        if self._restricted(url):
            return self._refused(tab_id, url)

        frame_ids = self._transport.frame_ids(tab_id) or [PRIMARY_FRAME]
        message = toggle_reading_mode(desired)

        responses = await asyncio.gather(*(self._request(tab_id, frame_id, message) for frame_id in frame_ids))

        primary = _NO_ACK
        for frame_id, response in zip(frame_ids, responses):
            if response is _NO_ACK or not isinstance(response.get("data"), bool):
                continue
            self._record(tab_id, frame_id, url, ReadingState.from_mode(response["data"]))
            if frame_id == PRIMARY_FRAME:
                primary = response

        if primary is _NO_ACK:
            return self._unreachable(tab_id, url)

        state = ReadingState.from_mode(primary["data"])
        ok = bool(primary.get("ok"))
        if ok:
            self._transport.broadcast(reading_mode_changed(tab_id, primary["data"]), sender=self)
        else:
            logger.warning("Tab %s failed to switch reading mode: %s", tab_id, primary.get("error"))
        return BridgeResult(tab_id=tab_id, state=state, ok=ok)

    async def _request(self, tab_id: int, frame_id: int, message: dict):
        try:
            response = await asyncio.wait_for(
                self._transport.send(tab_id, message, frame_id),
                timeout=self.timeout,
            )
        except MessageDropped as exc:
            logger.info("%s", exc)
            return _NO_ACK
        except asyncio.TimeoutError:
            logger.warning("No answer from tab %s frame %s within %.2fs.", tab_id, frame_id, self.timeout)
            return _NO_ACK
        if not isinstance(response, dict):
            logger.warning("Malformed answer from tab %s frame %s: %r", tab_id, frame_id, response)
            return _NO_ACK
        return response

    def _restricted(self, url: Optional[str]) -> bool:
        return url is not None and classify(url, self.file_access_granted) != PageCategory.NORMAL

    def _refused(self, tab_id: int, url: str) -> BridgeResult:
        """Pages no document context can run on; nothing is sent."""
        self.invalidate(tab_id)
        logger.info("Tab %s cannot run reading mode (%s).", tab_id, url)
        return BridgeResult(
            tab_id=tab_id,
            state=ReadingState.RESTRICTED,
            ok=False,
            condition=self.diagnose(url),
        )

    def _unreachable(self, tab_id: int, url: Optional[str]) -> BridgeResult:
        self.invalidate(tab_id)
        return BridgeResult(
            tab_id=tab_id,
            state=ReadingState.UNREACHABLE,
            ok=False,
            condition=self.diagnose(url or ""),
        )

    def _on_runtime_message(self, message: dict) -> None:
        if message.get("message") != READING_MODE_CHANGED:
            return
        tab_id = message.get("tabId")
        if not isinstance(tab_id, int) or not isinstance(message.get("data"), bool):
            return
        frame_id = message.get("frameId", PRIMARY_FRAME)
        self._record(tab_id, frame_id, self._transport.tab_url(tab_id), ReadingState.from_mode(message["data"]))

    # ── Error reporting ──────────────────────────────────────────────────────

    def diagnose(self, url: str) -> ConditionReport:
        category = classify(url, self.file_access_granted)

        if category == PageCategory.FILE_SYSTEM_UNAUTHORIZED and "chrome" in self.browser_target.lower():
            return ConditionReport(
                condition=PageCondition.FILE_PERMISSION_MISSING,
                message="Missing permission to read local files.",
                action="Open the extension page, allow access to file URLs, then reload this page.",
                action_url=self.permission_page_url,
            )

        if category == PageCategory.RESTRICTED:
            return ConditionReport(
                condition=PageCondition.UNSUPPORTED_PAGE,
                message="This page is not supported.",
                action="Open a regular web page and try again.",
            )

        return ConditionReport(
            condition=PageCondition.PAGE_NOT_DETECTED,
            message="The page has not been detected yet.",
            action="Reload the page.",
        )


class BadgeIndicator:
    """Runtime listener that keeps the per-tab badge text, ignoring repeats."""

    def __init__(self, transport: MessageTransport) -> None:
        self._transport = transport
        self._texts: dict[int, str] = {}
        self.updates = 0
        self._remove_listener = None

    def start(self) -> None:
        if self._remove_listener is None:
            self._remove_listener = self._transport.add_listener(self.on_message, owner=self)

    def stop(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

    def on_message(self, message: dict) -> None:
        if message.get("message") != READING_MODE_CHANGED:
            return
        tab_id = message.get("tabId")
        text = "On" if message.get("data") else ""
        if self._texts.get(tab_id) == text:
            return
        self._texts[tab_id] = text
        self.updates += 1
        logger.info("Badge for tab %s set to %r.", tab_id, text)

    def text(self, tab_id: int) -> str:
        return self._texts.get(tab_id, "")

    def forget(self, tab_id: int) -> None:
        self._texts.pop(tab_id, None)

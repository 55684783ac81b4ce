import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from ..errors import StoreUnavailable
from ..models.preferences import DEFAULT_PREFERENCES, AppConfig, Preferences, next_display_color_mode
from .storage_backend import StorageBackend, Unsubscribe

logger = logging.getLogger(__name__)

GLOBAL_KEY = "global"
APP_CONFIG_KEY = "app_config"
LOCAL_PREFIX = "local:"

PrefsCallback = Callable[[Preferences], Union[None, Awaitable[None]]]


def local_key(origin: str) -> str:
    return f"{LOCAL_PREFIX}{origin}"


def _coerce(next_prefs: Union[Preferences, Mapping[str, Any]]) -> Preferences:
    if isinstance(next_prefs, Preferences):
        return next_prefs
    return Preferences.model_validate(dict(next_prefs))


class PreferenceStore:
    """
    Scoped preference resolution over a persistent backend.

    resolve(origin) = defaults + global record + local override (if any).
    Reads never fail: a backend error falls back to the compiled-in defaults
    and is kept in ``last_error``. Writes made through this instance are
    visible to its own later reads.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend
        self._pending: set[asyncio.Task] = set()
        self._deliveries: set[asyncio.Task] = set()
        self.last_error: Optional[StoreUnavailable] = None

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get(self, origin: str) -> Preferences:
        await self._drain_pending()
        return await self._read(origin)

    async def _read(self, origin: str) -> Preferences:
        try:
            global_record = await self._backend.get(GLOBAL_KEY)
            override = await self._backend.get(local_key(origin)) if origin else None
        except StoreUnavailable as exc:
            self._report(exc)
            return DEFAULT_PREFERENCES
        except Exception as exc:
            self._report(StoreUnavailable(str(exc)))
            return DEFAULT_PREFERENCES

        return self._resolve(global_record, override)

    def _resolve(self, global_record: Optional[dict], override: Optional[dict]) -> Preferences:
        merged = DEFAULT_PREFERENCES.to_record()

        if global_record:
            candidate = {**merged, **global_record}
            if self._valid(candidate, GLOBAL_KEY):
                merged = candidate

        if override is not None:
            candidate = {**merged, **override}
            if self._valid(candidate, LOCAL_PREFIX):
                return Preferences.model_validate({**candidate, "scope": "local"})

        return Preferences.model_validate({**merged, "scope": "global"})

    def _valid(self, record: dict, label: str) -> bool:
        try:
            Preferences.model_validate(record)
        except ValidationError as exc:
            logger.warning("Ignoring invalid %s preference record: %s", label, exc.errors())
            return False
        return True

    # ── Writes ───────────────────────────────────────────────────────────────

    async def set(self, origin: str, next_prefs: Union[Preferences, Mapping[str, Any]]) -> Preferences:
        prefs = _coerce(next_prefs)

        try:
            if prefs.scope == "global":
                await self._backend.set(GLOBAL_KEY, prefs.to_record())
                if origin:
                    await self._backend.delete(local_key(origin))
            elif prefs.scope == "local":
                if not origin:
                    raise ValueError("A local preference needs a page origin.")
                existing = await self._backend.get(local_key(origin)) or {}
                await self._backend.set(local_key(origin), {**existing, **prefs.override_record()})
            else:
                if origin:
                    await self._backend.delete(local_key(origin))
        except StoreUnavailable as exc:
            self._report(exc)

        logger.info("Preferences for %s written with scope %s.", origin or "<global>", prefs.scope)
        return await self._read(origin)

    def schedule_set(self, origin: str, next_prefs: Union[Preferences, Mapping[str, Any]]) -> asyncio.Task:
        """Fire-and-forget write; later reads on this store wait for it."""
        task = asyncio.get_running_loop().create_task(self.set(origin, next_prefs))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _drain_pending(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in self._pending if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Watch ────────────────────────────────────────────────────────────────

    def watch(self, origin: str, callback: PrefsCallback) -> Unsubscribe:
        keys = {GLOBAL_KEY, local_key(origin)}

        async def deliver() -> None:
            prefs = await self.get(origin)
            result = callback(prefs)
            if inspect.isawaitable(result):
                await result

        def on_change(key: str) -> None:
            if key not in keys:
                return
            task = asyncio.get_running_loop().create_task(deliver())
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)
            task.add_done_callback(_log_watch_failure)

        return self._backend.subscribe(on_change)

    # ── App config ───────────────────────────────────────────────────────────

    async def get_app_config(self) -> AppConfig:
        try:
            record = await self._backend.get(APP_CONFIG_KEY)
        except StoreUnavailable as exc:
            self._report(exc)
            return AppConfig()
        try:
            return AppConfig.model_validate(record or {})
        except ValidationError as exc:
            logger.warning("Ignoring invalid app config record: %s", exc.errors())
            return AppConfig()

    async def set_app_config(self, config: AppConfig) -> AppConfig:
        try:
            await self._backend.set(APP_CONFIG_KEY, config.model_dump(by_alias=True, mode="json"))
        except StoreUnavailable as exc:
            self._report(exc)
        return await self.get_app_config()

    async def toggle_display_color_mode(self) -> AppConfig:
        config = await self.get_app_config()
        mode = next_display_color_mode(config.display_color_mode)
        return await self.set_app_config(config.model_copy(update={"display_color_mode": mode}))

    def _report(self, exc: StoreUnavailable) -> None:
        self.last_error = exc
        logger.warning("Preference store unavailable, using defaults: %s", exc)


def _log_watch_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Preference watcher failed: %s", task.exception())

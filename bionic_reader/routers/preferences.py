from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..models.preferences import AppConfig, Preferences
from ..services.page_classifier import origin_of
from ..services.preference_store import PreferenceStore
from .dependencies import get_store

router = APIRouter(tags=["Preferences"])


# ─────────────────────────────────────────────
# GET/PUT /preferences?url=
# Resolved preferences for the page's origin
# ─────────────────────────────────────────────

@router.get("/preferences", response_model=Preferences)
async def get_preferences(
    url: str = Query("", description="Page URL; empty for the global preferences."),
    store: PreferenceStore = Depends(get_store),
) -> Preferences:
    return await store.get(origin_of(url))


@router.put("/preferences", response_model=Preferences)
async def set_preferences(
    prefs: Preferences,
    url: str = Query("", description="Page URL the preferences are edited from."),
    store: PreferenceStore = Depends(get_store),
) -> Preferences:
    try:
        return await store.set(origin_of(url), prefs)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


# ─────────────────────────────────────────────
# App-level config (display color mode)
# ─────────────────────────────────────────────

@router.get("/config", response_model=AppConfig)
async def get_config(store: PreferenceStore = Depends(get_store)) -> AppConfig:
    return await store.get_app_config()


@router.put("/config", response_model=AppConfig)
async def set_config(config: AppConfig, store: PreferenceStore = Depends(get_store)) -> AppConfig:
    return await store.set_app_config(config)


@router.post("/config/display-mode/toggle", response_model=AppConfig)
async def toggle_display_mode(store: PreferenceStore = Depends(get_store)) -> AppConfig:
    try:
        return await store.toggle_display_color_mode()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

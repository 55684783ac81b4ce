from fastapi import HTTPException, Request, status

from ..services.preference_store import PreferenceStore
from ..services.runtime import ReaderRuntime


def get_runtime(request: Request) -> ReaderRuntime:
    return request.app.state.runtime


def get_store(request: Request) -> PreferenceStore:
    return request.app.state.runtime.store


def require_tab(runtime: ReaderRuntime, tab_id: int) -> None:
    if not runtime.has_tab(tab_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Tab '{tab_id}' not found.")

from fastapi import APIRouter, Depends, HTTPException, status

from ..models.reader import (
    MutationRequest,
    MutationResponse,
    NavigateRequest,
    OpenTabRequest,
    ReadingModeRequest,
    ReadingModeResponse,
    TabResponse,
)
from ..services.runtime import ReaderRuntime
from .dependencies import get_runtime, require_tab

router = APIRouter(prefix="/tabs", tags=["Tabs"])


def _tab_response(runtime: ReaderRuntime, tab_id: int) -> TabResponse:
    frame = runtime.frame(tab_id)
    return TabResponse(
        tab_id=tab_id,
        url=runtime.tab_url(tab_id) or "",
        state=runtime.bridge.state(tab_id),
        session=runtime.bridge.session(tab_id),
        frame_count=len(runtime.frames(tab_id)),
        badge=runtime.badge.text(tab_id),
        html=frame.document.serialize() if frame else None,
    )


@router.post("", response_model=TabResponse, status_code=status.HTTP_201_CREATED)
async def open_tab(request: OpenTabRequest, runtime: ReaderRuntime = Depends(get_runtime)) -> TabResponse:
    tab_id = await runtime.open_tab(request.url, request.html, request.frames)
    return _tab_response(runtime, tab_id)


@router.get("/{tab_id}", response_model=TabResponse)
async def get_tab(tab_id: int, runtime: ReaderRuntime = Depends(get_runtime)) -> TabResponse:
    require_tab(runtime, tab_id)
    return _tab_response(runtime, tab_id)


@router.delete("/{tab_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_tab(tab_id: int, runtime: ReaderRuntime = Depends(get_runtime)) -> None:
    require_tab(runtime, tab_id)
    runtime.close_tab(tab_id)


@router.post("/{tab_id}/navigate", response_model=TabResponse)
async def navigate_tab(
    tab_id: int, request: NavigateRequest, runtime: ReaderRuntime = Depends(get_runtime)
) -> TabResponse:
    require_tab(runtime, tab_id)
    await runtime.navigate(tab_id, request.url, request.html, request.frames)
    return _tab_response(runtime, tab_id)


# ─────────────────────────────────────────────
# Reading mode through the sync bridge
# ─────────────────────────────────────────────

@router.get("/{tab_id}/reading-mode", response_model=ReadingModeResponse)
async def query_reading_mode(tab_id: int, runtime: ReaderRuntime = Depends(get_runtime)) -> ReadingModeResponse:
    require_tab(runtime, tab_id)
    result = await runtime.bridge.ensure(tab_id)
    return ReadingModeResponse(**result.model_dump(), badge=runtime.badge.text(tab_id))


@router.put("/{tab_id}/reading-mode", response_model=ReadingModeResponse)
async def set_reading_mode(
    tab_id: int, request: ReadingModeRequest, runtime: ReaderRuntime = Depends(get_runtime)
) -> ReadingModeResponse:
    require_tab(runtime, tab_id)
    result = await runtime.bridge.toggle(tab_id, request.br_mode)
    return ReadingModeResponse(**result.model_dump(), badge=runtime.badge.text(tab_id))


@router.get("/{tab_id}/badge")
async def get_badge(tab_id: int, runtime: ReaderRuntime = Depends(get_runtime)) -> dict[str, str]:
    require_tab(runtime, tab_id)
    return {"text": runtime.badge.text(tab_id)}


# ─────────────────────────────────────────────
# POST /tabs/{tab_id}/mutations
# Page-script style DOM insertions, picked up by the mutation watcher
# ─────────────────────────────────────────────

@router.post("/{tab_id}/mutations", response_model=MutationResponse)
async def mutate_tab(
    tab_id: int, request: MutationRequest, runtime: ReaderRuntime = Depends(get_runtime)
) -> MutationResponse:
    require_tab(runtime, tab_id)
    frame = runtime.frame(tab_id, request.frame_id)
    if frame is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Frame '{request.frame_id}' of tab '{tab_id}' has no document context.",
        )

    try:
        added = frame.mutate(request.html, request.selector)
    except (LookupError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    if request.flush:
        frame.watcher.flush()

    return MutationResponse(added_nodes=added, pending=frame.watcher.pending, html=frame.document.serialize())

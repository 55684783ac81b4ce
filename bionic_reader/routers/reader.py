import asyncio

from fastapi import APIRouter, Depends, HTTPException, status

from ..models.reader import ClassifyRequest, ClassifyResponse, TransformRequest, TransformResponse
from ..models.session import PageCategory
from ..services.page_classifier import classify, origin_of
from ..services.reader_service import render_html
from ..services.runtime import ReaderRuntime
from .dependencies import get_runtime

router = APIRouter(tags=["Reader"])


@router.post("/classify", response_model=ClassifyResponse)
def classify_page(request: ClassifyRequest, runtime: ReaderRuntime = Depends(get_runtime)) -> ClassifyResponse:
    category = classify(request.url, runtime.settings.file_access_granted)
    return ClassifyResponse(
        url=request.url,
        origin=origin_of(request.url),
        category=category,
        condition=runtime.bridge.diagnose(request.url) if category != PageCategory.NORMAL else None,
    )


# ─────────────────────────────────────────────
# POST /reader/transform
# Stateless transform of an HTML document
# ─────────────────────────────────────────────

@router.post("/reader/transform", response_model=TransformResponse)
async def transform(request: TransformRequest, runtime: ReaderRuntime = Depends(get_runtime)) -> TransformResponse:
    if request.preferences is not None:
        prefs = request.preferences
    else:
        prefs = await runtime.store.get(origin_of(request.url or ""))

    try:
        html, css, transformed = await asyncio.to_thread(render_html, request.html, prefs)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Transformation failed: {exc}",
        )

    return TransformResponse(html=html, css=css, transformed_nodes=transformed, preferences=prefs)

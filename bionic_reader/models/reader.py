from typing import Optional

from pydantic import BaseModel, Field

from .preferences import Preferences
from .session import BridgeResult, ConditionReport, PageCategory, ReadingState, TabSession


class ClassifyRequest(BaseModel):
    url: str


class ClassifyResponse(BaseModel):
    url: str
    origin: str
    category: PageCategory
    condition: Optional[ConditionReport] = Field(
        None, description="What the reader would report if no document context answered on this page."
    )


class TransformRequest(BaseModel):
    html: str = Field(..., description="HTML document or fragment to transform.")
    url: Optional[str] = Field(None, description="Page URL whose stored preferences apply.")
    preferences: Optional[Preferences] = Field(None, description="Explicit preferences; wins over url.")


class TransformResponse(BaseModel):
    html: str
    css: str
    transformed_nodes: int
    preferences: Preferences


class OpenTabRequest(BaseModel):
    url: str
    html: str = ""
    frames: list[str] = Field(default_factory=list, description="HTML of additional child frames.")


class NavigateRequest(OpenTabRequest):
    pass


class ReadingModeRequest(BaseModel):
    br_mode: bool


class MutationRequest(BaseModel):
    html: str
    selector: Optional[str] = Field(None, description="CSS selector of the parent; defaults to <body>.")
    frame_id: int = 0
    flush: bool = Field(True, description="Run the pending reprocessing pass before answering.")


class MutationResponse(BaseModel):
    added_nodes: int
    pending: int
    html: str


class TabResponse(BaseModel):
    tab_id: int
    url: str
    state: ReadingState
    session: Optional[TabSession] = None
    frame_count: int
    badge: str
    html: Optional[str] = None


class ReadingModeResponse(BridgeResult):
    badge: str = ""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PageCategory(str, Enum):
    NORMAL = "normal"
    RESTRICTED = "restricted"
    FILE_SYSTEM_UNAUTHORIZED = "file_system_unauthorized"


class ReadingState(str, Enum):
    UNKNOWN = "unknown"
    OFF = "off"
    ON = "on"
    UNREACHABLE = "unreachable"
    RESTRICTED = "restricted"

    @classmethod
    def from_mode(cls, br_mode: bool) -> "ReadingState":
        return cls.ON if br_mode else cls.OFF


class PageCondition(str, Enum):
    FILE_PERMISSION_MISSING = "file_permission_missing"
    UNSUPPORTED_PAGE = "unsupported_page"
    PAGE_NOT_DETECTED = "page_not_detected"


class ConditionReport(BaseModel):
    condition: PageCondition
    message: str
    action: Optional[str] = Field(None, description="Remediation the user can take, if any.")
    action_url: Optional[str] = None


class TabSession(BaseModel):
    br_mode: bool
    origin: str


class BridgeResult(BaseModel):
    tab_id: int
    state: ReadingState
    ok: bool = True
    condition: Optional[ConditionReport] = None

    @property
    def br_mode(self) -> Optional[bool]:
        if self.state == ReadingState.ON:
            return True
        if self.state == ReadingState.OFF:
            return False
        return None

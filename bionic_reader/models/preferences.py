from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MAX_FIXATION_PARTS = 4
MAX_SACCADES_INTERVAL = 5
LINE_HEIGHT_STEP = 0.5

SaccadesColor = Literal["", "light-100", "light-200", "dark-100", "dark-200"]
SaccadesStyle = Literal[
    "bold-400", "bold-500", "bold-600", "bold-700", "bold-800", "bold-900",
    "solid-line", "dashed-line", "dotted-line",
]
Scope = Literal["global", "local", "reset"]
DisplayColorMode = Literal["light", "dark"]

COLOR_MODE_STATE_TRANSITIONS: list[tuple[str, str]] = [("light", "dark"), ("dark", "light")]


class Preferences(BaseModel):
    """One immutable snapshot of the reading preferences.

    Field names are snake_case in Python and camelCase on the wire and in
    storage (``saccadesInterval``, ``fixationStrength``, ...).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    saccades_interval: int = Field(0, ge=0, lt=MAX_SACCADES_INTERVAL)
    fixation_strength: int = Field(2, ge=1, le=MAX_FIXATION_PARTS)
    fixation_edge_opacity: int = Field(70, ge=0, le=100, multiple_of=10)
    saccades_color: SaccadesColor = ""
    saccades_style: SaccadesStyle = "bold-600"
    line_height: float = Field(1.0, ge=1.0, le=4.0, multiple_of=LINE_HEIGHT_STEP)
    on_page_load: bool = False
    scope: Scope = "global"

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude={"scope"})

    def override_record(self) -> dict:
        """Only the fields the caller set explicitly, as stored for a local override."""
        return self.model_dump(by_alias=True, mode="json", exclude_unset=True, exclude={"scope"})


DEFAULT_PREFERENCES = Preferences()

# Fields that change the markup itself; the rest only change the styling directive.
MARKUP_FIELDS = ("saccades_interval", "fixation_strength")


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    display_color_mode: DisplayColorMode = "light"


def next_display_color_mode(current: str) -> str:
    transitions = dict(COLOR_MODE_STATE_TRANSITIONS)
    if current not in transitions:
        raise ValueError(f"Unknown display color mode '{current}'.")
    return transitions[current]

from __future__ import annotations

from ..models.preferences import Preferences

SACCADE_COLOR_VALUES = {
    "": "inherit",
    "light-100": "#5f6368",
    "light-200": "#1a73e8",
    "dark-100": "#e8eaed",
    "dark-200": "#8ab4f8",
}

LINE_STYLES = {
    "solid-line": "solid",
    "dashed-line": "dashed",
    "dotted-line": "dotted",
}


def fixation_weight(saccades_style: str) -> int:
    if saccades_style.startswith("bold-"):
        return int(saccades_style.split("-", 1)[1])
    return 400


def root_properties(prefs: Preferences) -> dict[str, str]:
    return {
        "--fixation-edge-opacity": f"{prefs.fixation_edge_opacity}%",
        "--br-line-height": f"{prefs.line_height}",
    }


def build_reader_css(prefs: Preferences) -> str:
    line_style = LINE_STYLES.get(prefs.saccades_style)
    decoration = (
        f"text-decoration: underline {line_style} var(--br-saccade-color);\n"
        "  text-underline-offset: 0.2em;"
        if line_style
        else "text-decoration: none;"
    )

    return f"""
/* Bionic reading mode */
:root {{
  --br-saccade-color: {SACCADE_COLOR_VALUES[prefs.saccades_color]};
  --br-fixation-weight: {fixation_weight(prefs.saccades_style)};
}}

[br-mode="on"] body {{
  line-height: var(--br-line-height) !important;
}}

[br-mode="on"] br-bold {{
  font-weight: var(--br-fixation-weight) !important;
  color: var(--br-saccade-color);
  {decoration}
}}

[br-mode="on"] br-edge {{
  opacity: var(--fixation-edge-opacity);
}}
""".strip()

from ..accessibility.reader_css import build_reader_css
from ..models.preferences import Preferences
from .document_transformer import DocumentTransformer
from .live_document import LiveDocument


def render_html(html: str, prefs: Preferences) -> tuple[str, str, int]:
    """One-shot transform of a document, returns (html, css, transformed node count)."""
    document = LiveDocument(html)
    transformer = DocumentTransformer(document)
    transformed = transformer.apply(prefs)
    return document.serialize(), build_reader_css(prefs), transformed

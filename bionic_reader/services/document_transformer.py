import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from bs4 import NavigableString, PageElement, Tag

from ..accessibility.reader_css import build_reader_css, root_properties
from ..errors import TransformNodeSkipped
from ..models.preferences import MARKUP_FIELDS, MAX_FIXATION_PARTS, Preferences
from .live_document import LiveDocument, MutationRecord

logger = logging.getLogger(__name__)

HOST_TAG = "br-span"
FIXATION_TAG = "br-bold"
EDGE_TAG = "br-edge"
STYLE_ID = "br-reader-style"

# Subtrees that never render text or belong to the user.
SKIP_TAGS = {
    "head", "title", "script", "style", "noscript", "template",
    "textarea", "select", "option", "svg", "math",
}

# Phrasing elements; word buckets run across them up to the nearest other element.
INLINE_TAGS = {
    "a", "abbr", "b", "bdi", "bdo", "cite", "code", "data", "del", "dfn", "em", "font",
    "i", "ins", "kbd", "label", "mark", "q", "s", "samp", "small", "span", "strong",
    "sub", "sup", "time", "u", "var", HOST_TAG, FIXATION_TAG, EDGE_TAG,
}

WORD_RE = re.compile(r"[^\W_]+(?:['’][^\W_]+)*")


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Boundary:
    start: int
    fixation_end: int
    end: int
    emphasized: bool


@dataclass(frozen=True)
class FixationMark:
    original_text: str
    boundaries: tuple[Boundary, ...]
    first_index: int = 0


def fixation_length(word_length: int, fixation_strength: int) -> int:
    """Characters in the fixation prefix; strength 1 is shortest, the maximum covers the word."""
    if word_length <= 0:
        return 0
    return math.ceil(word_length / (MAX_FIXATION_PARTS + 1 - fixation_strength))


def segment(text: str, prefs: Preferences, first_index: int = 0) -> tuple[Boundary, ...]:
    """Word boundaries of ``text``; ``first_index`` is the position of its first word in the block."""
    bucket = prefs.saccades_interval + 1
    boundaries = []
    for index, match in enumerate(WORD_RE.finditer(text)):
        start, end = match.span()
        boundaries.append(
            Boundary(
                start=start,
                fixation_end=start + fixation_length(end - start, prefs.fixation_strength),
                end=end,
                emphasized=(first_index + index) % bucket == 0,
            )
        )
    return tuple(boundaries)


def _block_of(node: PageElement) -> Tag:
    for parent in node.parents:
        if parent.name not in INLINE_TAGS:
            return parent
    return node.parent


# ---------------------------------------------------------------------------
# Transformer
# ---------------------------------------------------------------------------

class DocumentTransformer:
    """
    Applies and reverts the fixation markup on one document.

    Each transformed text node is replaced by a ``<br-span>`` host whose
    FixationMark keeps the original text, so revert is exact and a node is
    never transformed twice.
    """

    def __init__(self, document: LiveDocument) -> None:
        self.document = document
        self.prefs: Optional[Preferences] = None
        self.active = False
        self._marks: dict[int, tuple[Tag, FixationMark]] = {}
        self._saved_root_attrs: Optional[dict] = None

    @property
    def mark_count(self) -> int:
        return len(self._marks)

    def is_marked(self, node: PageElement) -> bool:
        return id(node) in self._marks

    def owns(self, node: PageElement) -> bool:
        """True for markup written by this transformer (hosts, their content, the injected style)."""
        if isinstance(node, Tag) and node.name == "style" and node.get("id") == STYLE_ID:
            return True
        if self.is_marked(node):
            return True
        return any(self.is_marked(parent) for parent in node.parents if parent.name == HOST_TAG)

    # ── Apply ────────────────────────────────────────────────────────────────

    def apply(self, prefs: Preferences, roots: Optional[Iterable[PageElement]] = None) -> int:
        self.prefs = prefs
        self.active = True
        self._apply_directive(prefs)

        nodes = list(self._text_nodes(roots))
        offsets = self._word_offsets(nodes)

        transformed = 0
        for node in nodes:
            try:
                if self._transform_node(node, prefs, offsets.get(id(node), 0)):
                    transformed += 1
            except Exception as exc:
                logger.warning("Skipping text node %r: %s", str(node)[:40], exc)

        logger.info("Applied reading mode to %d text nodes.", transformed)
        return transformed

    def reapply(self, roots: Iterable[PageElement]) -> int:
        if not self.active or self.prefs is None:
            return 0
        return self.apply(self.prefs, roots)

    def update(self, prefs: Preferences) -> int:
        """Bring already transformed nodes in line with new preferences."""
        if not self.active:
            self.prefs = prefs
            return 0

        previous = self.prefs
        self.prefs = prefs
        self._apply_directive(prefs)
        if previous is not None and all(getattr(previous, f) == getattr(prefs, f) for f in MARKUP_FIELDS):
            return 0

        rerendered = 0
        for key, (host, mark) in list(self._marks.items()):
            if host.parent is None:
                del self._marks[key]
                continue
            boundaries = segment(mark.original_text, prefs, mark.first_index)
            new_host = self._render(mark.original_text, boundaries)
            del self._marks[key]
            self._marks[id(new_host)] = (new_host, FixationMark(mark.original_text, boundaries, mark.first_index))
            self.document.replace(host, new_host)
            rerendered += 1
        return rerendered

    def _text_nodes(self, roots: Optional[Iterable[PageElement]]):
        for root in (roots if roots is not None else [self.document.soup]):
            if isinstance(root, NavigableString):
                candidates = [root]
            elif isinstance(root, Tag):
                if root is not self.document.soup and root.parent is None:
                    continue
                candidates = root.find_all(string=True)
            else:
                continue
            for node in candidates:
                if type(node) is NavigableString and node.parent is not None and not self._excluded(node):
                    yield node

    def _excluded(self, node: NavigableString) -> bool:
        for parent in node.parents:
            name = parent.name
            if name in SKIP_TAGS:
                return True
            if name == HOST_TAG and self.is_marked(parent):
                return True
            editable = parent.get("contenteditable") if isinstance(parent, Tag) else None
            if editable is not None and str(editable).lower() != "false":
                return True
        return False

    def _word_offsets(self, nodes: list[NavigableString]) -> dict[int, int]:
        """Index of each node's first word in the word sequence of its block."""
        offsets: dict[int, int] = {}
        seen: set[int] = set()
        for node in nodes:
            block = _block_of(node)
            if id(block) in seen:
                continue
            seen.add(id(block))
            count = 0
            for item, words in self._block_words(block):
                offsets[id(item)] = count
                count += words
        return offsets

    def _block_words(self, tag: Tag):
        for child in tag.children:
            if isinstance(child, Tag):
                if child.name in SKIP_TAGS or child.name not in INLINE_TAGS:
                    continue
                editable = child.get("contenteditable")
                if editable is not None and str(editable).lower() != "false":
                    continue
                if self.is_marked(child):
                    yield child, len(self._marks[id(child)][1].boundaries)
                    continue
                yield from self._block_words(child)
            elif type(child) is NavigableString:
                yield child, len(WORD_RE.findall(str(child)))

    def _transform_node(self, node: NavigableString, prefs: Preferences, first_index: int = 0) -> bool:
        if node.parent is None:
            raise TransformNodeSkipped("text node is detached")

        text = str(node)
        boundaries = segment(text, prefs, first_index)
        if not boundaries:
            return False

        host = self._render(text, boundaries)
        # Mark before writing so the resulting mutation record is recognised as ours.
        self._marks[id(host)] = (host, FixationMark(text, boundaries, first_index))
        try:
            self.document.replace(node, host)
        except ValueError as exc:
            del self._marks[id(host)]
            raise TransformNodeSkipped(str(exc)) from exc
        return True

    def _render(self, text: str, boundaries: tuple[Boundary, ...]) -> Tag:
        host = self.document.new_tag(HOST_TAG)
        cursor = 0
        for boundary in boundaries:
            if not boundary.emphasized:
                continue
            if boundary.start > cursor:
                host.append(NavigableString(text[cursor:boundary.start]))
            fixation = self.document.new_tag(FIXATION_TAG)
            fixation.append(NavigableString(text[boundary.start:boundary.fixation_end]))
            host.append(fixation)
            if boundary.end > boundary.fixation_end:
                edge = self.document.new_tag(EDGE_TAG)
                edge.append(NavigableString(text[boundary.fixation_end:boundary.end]))
                host.append(edge)
            cursor = boundary.end
        if cursor < len(text):
            host.append(NavigableString(text[cursor:]))
        return host

    # ── Revert ───────────────────────────────────────────────────────────────

    def revert(self) -> int:
        self.active = False
        restored = 0
        for key, (host, mark) in list(self._marks.items()):
            del self._marks[key]
            if host.parent is None:
                continue
            self.document.replace(host, NavigableString(mark.original_text))
            restored += 1

        self._remove_directive()
        logger.info("Reverted reading mode on %d text nodes.", restored)
        return restored

    # ── Styling directive ────────────────────────────────────────────────────

    def _apply_directive(self, prefs: Preferences) -> None:
        root = self.document.root
        if root is not None:
            if self._saved_root_attrs is None:
                self._saved_root_attrs = dict(root.attrs)
            attrs = dict(self._saved_root_attrs)
            style = "; ".join(f"{name}: {value}" for name, value in root_properties(prefs).items())
            base_style = str(attrs.get("style", "")).strip().rstrip(";")
            attrs.update({
                "br-mode": "on",
                "saccades-color": prefs.saccades_color,
                "saccades-style": prefs.saccades_style,
                "fixation-strength": str(prefs.fixation_strength),
                "saccades-interval": str(prefs.saccades_interval),
                "style": f"{base_style}; {style}" if base_style else style,
            })
            self.document.set_attributes(root, attrs)

        head = self.document.head
        if head is None:
            return
        css = build_reader_css(prefs)
        existing = head.find("style", id=STYLE_ID)
        if existing is not None:
            if existing.string != css:
                existing.string = css
            return
        style_tag = self.document.new_tag("style", id=STYLE_ID)
        style_tag.string = css
        self.document.append(head, style_tag)

    def _remove_directive(self) -> None:
        root = self.document.root
        if root is not None and self._saved_root_attrs is not None:
            self.document.set_attributes(root, self._saved_root_attrs)
        self._saved_root_attrs = None

        head = self.document.head
        existing = head.find("style", id=STYLE_ID) if head is not None else None
        if existing is not None:
            self.document.remove(existing)


# ---------------------------------------------------------------------------
# Mutation watcher
# ---------------------------------------------------------------------------

class MutationWatcher:
    """
    Re-runs the transformer on content added or changed after activation.

    Records are queued and processed in one pass after ``debounce_ms``; the
    transformer's own writes are filtered out, so a pass never triggers
    another. Without a running event loop the queue waits for ``flush()``.
    """

    def __init__(self, transformer: DocumentTransformer, debounce_ms: int = 50) -> None:
        self.transformer = transformer
        self.debounce_ms = debounce_ms
        self.passes = 0
        self._queue: list[PageElement] = []
        self._handle: Optional[asyncio.TimerHandle] = None
        self._flushing = False
        self._disconnect = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    def start(self) -> None:
        if self._disconnect is None:
            self._disconnect = self.transformer.document.observe(self.on_records)

    def stop(self) -> None:
        if self._disconnect is not None:
            self._disconnect()
            self._disconnect = None
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._queue.clear()

    def on_records(self, records: list[MutationRecord]) -> None:
        if not self.transformer.active:
            return

        for record in records:
            if record.kind == "childList":
                nodes = record.added
            elif record.kind == "characterData":
                nodes = (record.target,)
            else:
                continue
            self._queue.extend(node for node in nodes if not self.transformer.owns(node))

        if self._queue:
            self._schedule()

    def _schedule(self) -> None:
        if self._handle is not None or self._flushing:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._handle = loop.call_later(self.debounce_ms / 1000, self._run)

    def _run(self) -> None:
        self._handle = None
        self.flush()

    def flush(self) -> int:
        if self._flushing:
            return 0
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

        self._flushing = True
        try:
            batch, self._queue = self._queue, []
            transformed = self.transformer.reapply(batch) if batch else 0
            if batch:
                self.passes += 1
        finally:
            self._flushing = False

        if self._queue:
            self._schedule()
        return transformed

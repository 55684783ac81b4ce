from dataclasses import dataclass
from typing import Callable, Literal, Optional

from bs4 import BeautifulSoup, NavigableString, PageElement, Tag

MutationKind = Literal["childList", "characterData", "attributes"]


@dataclass(frozen=True)
class MutationRecord:
    kind: MutationKind
    target: PageElement
    added: tuple = ()
    removed: tuple = ()


MutationObserver = Callable[[list[MutationRecord]], None]


class LiveDocument:
    """
    A parsed HTML document whose writes are observable.

    Every structural or text change goes through the methods below so that
    observers receive mutation records, including for changes the reader
    makes itself. Records are delivered synchronously after each write.
    """

    def __init__(self, html: str, parser: str = "html.parser") -> None:
        self.soup = BeautifulSoup(html or "", parser)
        self._observers: list[MutationObserver] = []

    # ── Observation ──────────────────────────────────────────────────────────

    def observe(self, observer: MutationObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def disconnect() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return disconnect

    def _emit(self, record: MutationRecord) -> None:
        for observer in list(self._observers):
            observer([record])

    # ── Reads ────────────────────────────────────────────────────────────────

    def serialize(self) -> str:
        return str(self.soup)

    def select_one(self, selector: str) -> Optional[Tag]:
        return self.soup.select_one(selector)

    @property
    def root(self) -> Optional[Tag]:
        return self.soup.html

    @property
    def head(self) -> Optional[Tag]:
        return self.soup.head

    def new_tag(self, name: str, **attrs) -> Tag:
        return self.soup.new_tag(name, attrs=attrs)

    # ── Writes ───────────────────────────────────────────────────────────────

    def replace(self, old: PageElement, new: PageElement) -> None:
        parent = old.parent
        if parent is None:
            raise ValueError("Cannot replace a detached node.")
        old.replace_with(new)
        self._emit(MutationRecord("childList", parent, added=(new,), removed=(old,)))

    def append(self, parent: Tag, node: PageElement) -> None:
        parent.append(node)
        self._emit(MutationRecord("childList", parent, added=(node,)))

    def insert_html(self, parent: Tag, html: str, index: Optional[int] = None) -> list[PageElement]:
        fragment = BeautifulSoup(html, "html.parser")
        nodes = [node.extract() for node in list(fragment.contents)]
        position = len(parent.contents) if index is None else index
        for offset, node in enumerate(nodes):
            parent.insert(position + offset, node)
        self._emit(MutationRecord("childList", parent, added=tuple(nodes)))
        return nodes

    def set_text(self, node: NavigableString, text: str) -> NavigableString:
        # Strings are immutable in the parse tree; the new node takes the old one's place.
        replacement = NavigableString(text)
        node.replace_with(replacement)
        self._emit(MutationRecord("characterData", replacement))
        return replacement

    def remove(self, node: PageElement) -> None:
        parent = node.parent
        node.extract()
        if parent is not None:
            self._emit(MutationRecord("childList", parent, removed=(node,)))

    def set_attributes(self, element: Tag, attrs: dict) -> None:
        element.attrs = dict(attrs)
        self._emit(MutationRecord("attributes", element))

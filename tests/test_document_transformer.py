"""
Test: fixation markup, exact revert, idempotence and mutation reprocessing.

    pytest tests/test_document_transformer.py
"""

import asyncio
import logging
import math

import pytest
from bs4 import NavigableString

from bionic_reader.models.preferences import MAX_FIXATION_PARTS, Preferences
from bionic_reader.services.document_transformer import (
    EDGE_TAG,
    FIXATION_TAG,
    HOST_TAG,
    STYLE_ID,
    DocumentTransformer,
    MutationWatcher,
    fixation_length,
    segment,
)
from bionic_reader.services.live_document import LiveDocument

PAGE = """<!DOCTYPE html>
<html lang="en" style="color: black"><head><title>Reading test</title></head>
<body>
<h1>The quick brown fox</h1>
<p>Jumps over the <a href="#top">lazy dog</a>, twice &amp; again &lt;really&gt;.</p>
<p>Don't   split   contractions - or   spacing!</p>
<script>var notText = "leave me alone";</script>
<style>p { margin: 0 }</style>
<textarea>user typed words</textarea>
<div contenteditable="true">editable <b>words</b></div>
<div contenteditable="false">readonly words</div>
<!-- a comment with words -->
</body></html>"""

HALF = Preferences(fixation_strength=MAX_FIXATION_PARTS - 1, saccades_interval=0)


def _load(html=PAGE):
    document = LiveDocument(html)
    return document, DocumentTransformer(document)


def _bolds(document, within=None):
    scope = within if within is not None else document.soup
    return [tag.get_text() for tag in scope.find_all(FIXATION_TAG)]


def test_quick_brown_fox_scenario():
    document, transformer = _load("<p>The quick brown fox</p>")
    transformer.apply(HALF)

    assert _bolds(document) == ["Th", "qui", "bro", "fo"]
    assert [tag.get_text() for tag in document.soup.find_all(EDGE_TAG)] == ["e", "ck", "wn", "x"]
    assert document.soup.p.get_text() == "The quick brown fox"
    assert document.serialize() == (
        "<p><br-span><br-bold>Th</br-bold><br-edge>e</br-edge> <br-bold>qui</br-bold><br-edge>ck</br-edge> "
        "<br-bold>bro</br-bold><br-edge>wn</br-edge> <br-bold>fo</br-bold><br-edge>x</br-edge></br-span></p>"
    )


def test_fixation_length_grows_with_strength():
    lengths = [fixation_length(13, strength) for strength in range(1, MAX_FIXATION_PARTS + 1)]
    assert lengths == sorted(lengths)
    assert lengths[0] == math.ceil(13 / MAX_FIXATION_PARTS)
    assert lengths[-1] == 13
    assert fixation_length(1, 1) == 1


@pytest.mark.parametrize("interval", range(0, 5))
def test_interval_emphasizes_bucket_starts(interval):
    text = "one two three four five six seven"
    boundaries = segment(text, Preferences(saccades_interval=interval))
    emphasized = [index for index, boundary in enumerate(boundaries) if boundary.emphasized]

    assert len(emphasized) == math.ceil(len(boundaries) / (interval + 1))
    assert emphasized == list(range(0, len(boundaries), interval + 1))


def test_interval_runs_across_inline_markup():
    document, transformer = _load("<p>The <b>quick</b> brown <i>fox</i> jumps</p>")
    transformer.apply(Preferences(fixation_strength=MAX_FIXATION_PARTS - 1, saccades_interval=1))

    assert _bolds(document) == ["Th", "bro", "jum"]
    assert document.soup.b.find(FIXATION_TAG) is None

    transformer.update(Preferences(fixation_strength=MAX_FIXATION_PARTS - 1, saccades_interval=2))
    assert _bolds(document) == ["Th", "fo"]

    transformer.revert()
    assert document.serialize() == "<p>The <b>quick</b> brown <i>fox</i> jumps</p>"


def test_interval_restarts_at_each_block():
    document, transformer = _load("<div><p>One two</p><p>three four</p></div>")
    transformer.apply(Preferences(fixation_strength=MAX_FIXATION_PARTS - 1, saccades_interval=1))
    assert _bolds(document) == ["On", "thr"]


def test_changed_text_continues_the_block_sequence():
    document, transformer = _load("<p>alpha <b>beta</b> <span></span></p>")
    watcher = MutationWatcher(transformer, debounce_ms=5)
    watcher.start()
    transformer.apply(Preferences(fixation_strength=MAX_FIXATION_PARTS, saccades_interval=1))
    assert _bolds(document) == ["alpha"]

    document.insert_html(document.soup.span, "gamma delta")
    watcher.flush()
    assert _bolds(document) == ["alpha", "gamma"]


def test_words_keep_contractions_and_spacing():
    text = "Don't   split   contractions - or   spacing!"
    words = [text[b.start:b.end] for b in segment(text, HALF)]
    assert words == ["Don't", "split", "contractions", "or", "spacing"]


def test_skips_non_renderable_and_editable_subtrees():
    document, transformer = _load()
    transformer.apply(HALF)
    soup = document.soup

    assert soup.script.string == 'var notText = "leave me alone";'
    assert soup.find("style", id=None).string == "p { margin: 0 }"
    assert soup.textarea.find(HOST_TAG) is None
    assert soup.title.find(HOST_TAG) is None
    assert soup.find("div", contenteditable="true").find(HOST_TAG) is None
    assert soup.find("div", contenteditable="false").find(HOST_TAG) is not None
    assert "a comment with words" in document.serialize()


def test_styling_directive_is_applied_once():
    document, transformer = _load()
    prefs = Preferences(saccades_color="dark-200", saccades_style="dotted-line", fixation_edge_opacity=40)
    transformer.apply(prefs)
    transformer.apply(prefs)

    root = document.root
    assert root["br-mode"] == "on"
    assert root["saccades-color"] == "dark-200"
    assert root["saccades-style"] == "dotted-line"
    assert root["lang"] == "en"
    assert root["style"].startswith("color: black; --fixation-edge-opacity: 40%")
    assert len(document.soup.find_all("style", id=STYLE_ID)) == 1
    assert "dotted" in document.soup.find("style", id=STYLE_ID).string


def test_apply_is_idempotent():
    document, transformer = _load()
    transformer.apply(HALF)
    first, marks = document.serialize(), transformer.mark_count

    assert transformer.apply(HALF) == 0
    assert document.serialize() == first
    assert transformer.mark_count == marks
    assert not document.soup.find(FIXATION_TAG).find(FIXATION_TAG)


@pytest.mark.parametrize(
    "prefs",
    [
        Preferences(),
        HALF,
        Preferences(fixation_strength=1, saccades_interval=4, fixation_edge_opacity=0),
        Preferences(fixation_strength=MAX_FIXATION_PARTS, saccades_style="solid-line", line_height=2.5),
    ],
)
def test_revert_restores_document_exactly(prefs):
    document, transformer = _load()
    before = document.serialize()

    transformer.apply(prefs)
    assert document.serialize() != before
    transformer.revert()

    assert document.serialize() == before
    assert transformer.mark_count == 0
    assert not transformer.active


def test_on_off_on_renders_identically():
    document, transformer = _load()
    transformer.apply(HALF)
    first = document.serialize()
    transformer.revert()
    transformer.apply(HALF)
    assert document.serialize() == first


def test_bad_node_is_skipped_and_pass_continues(monkeypatch, caplog):
    document, transformer = _load()
    render = transformer._render

    def flaky(text, boundaries):
        if "lazy" in text:
            raise ValueError("unexpected structure")
        return render(text, boundaries)

    monkeypatch.setattr(transformer, "_render", flaky)
    with caplog.at_level(logging.WARNING):
        transformer.apply(HALF)

    assert document.soup.a.find(HOST_TAG) is None
    assert "Th" in _bolds(document, document.soup.h1)
    assert any("Skipping text node" in record.getMessage() for record in caplog.records)


def test_update_rerenders_marked_nodes():
    document, transformer = _load("<p>international</p>")
    transformer.apply(Preferences(fixation_strength=1))
    assert _bolds(document) == ["inte"]

    transformer.update(Preferences(fixation_strength=MAX_FIXATION_PARTS))
    assert _bolds(document) == ["international"]
    assert transformer.mark_count == 1

    transformer.revert()
    assert document.serialize() == "<p>international</p>"


def test_detached_roots_are_ignored():
    document, transformer = _load("<p>kept words</p>")
    assert transformer.apply(HALF, roots=[NavigableString("floating words")]) == 0
    assert transformer.mark_count == 0


# ---------------------------------------------------------------------------
# Mutation watcher
# ---------------------------------------------------------------------------

def test_own_writes_never_queue_work():
    document, transformer = _load()
    watcher = MutationWatcher(transformer, debounce_ms=5)
    watcher.start()

    transformer.apply(HALF)
    assert watcher.pending == 0

    transformer.update(Preferences(fixation_strength=1))
    assert watcher.pending == 0


def test_inserted_content_is_transformed_on_flush():
    document, transformer = _load()
    watcher = MutationWatcher(transformer, debounce_ms=5)
    watcher.start()
    transformer.apply(HALF)

    document.insert_html(document.soup.body, "<p>Fresh words arrive</p>")
    assert watcher.pending == 1

    assert watcher.flush() == 1
    assert watcher.pending == 0
    assert watcher.passes == 1
    assert _bolds(document, document.soup.body.find_all("p")[-1]) == ["Fre", "wor", "arr"]


def test_changed_text_is_transformed():
    document, transformer = _load()
    watcher = MutationWatcher(transformer, debounce_ms=5)
    watcher.start()
    transformer.apply(HALF)

    blank = next(node for node in document.soup.body.children if isinstance(node, NavigableString) and not node.strip())
    document.set_text(blank, "lately written")
    watcher.flush()

    assert "lat" in _bolds(document)


def test_nothing_is_queued_while_inactive():
    document, transformer = _load()
    watcher = MutationWatcher(transformer, debounce_ms=5)
    watcher.start()

    document.insert_html(document.soup.body, "<p>before activation</p>")
    transformer.apply(HALF)
    transformer.revert()
    document.insert_html(document.soup.body, "<p>after revert</p>")

    assert watcher.pending == 0


def test_burst_of_mutations_is_one_pass():
    async def scenario():
        document, transformer = _load()
        watcher = MutationWatcher(transformer, debounce_ms=10)
        watcher.start()
        transformer.apply(HALF)

        for index in range(5):
            document.insert_html(document.soup.body, f"<p>Burst number {index}</p>")
        assert watcher.pending == 5

        await asyncio.sleep(0.1)
        return document, watcher

    document, watcher = asyncio.run(scenario())
    assert watcher.passes == 1
    assert watcher.pending == 0
    bursts = [p for p in document.soup.find_all("p") if "Burst" in p.get_text()]
    assert len(bursts) == 5
    assert all(p.find(HOST_TAG) is not None for p in bursts)


def test_stop_cancels_pending_pass():
    async def scenario():
        document, transformer = _load()
        watcher = MutationWatcher(transformer, debounce_ms=10)
        watcher.start()
        transformer.apply(HALF)
        document.insert_html(document.soup.body, "<p>never processed</p>")
        watcher.stop()
        await asyncio.sleep(0.05)
        return document, watcher

    document, watcher = asyncio.run(scenario())
    assert watcher.passes == 0
    assert document.soup.body.find_all("p")[-1].find(HOST_TAG) is None

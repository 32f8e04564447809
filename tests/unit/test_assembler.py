"""Tests for merging spine order, navigation titles and sentences."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from epub_narrator.assembler import assemble_chapters, build_title_map, resolve_chapter_titles
from epub_narrator.models import NavEntry, SpineItem


def spine(*paths):
    return [
        SpineItem(id=f"i{index}", path=path, media_type="application/xhtml+xml")
        for index, path in enumerate(paths)
    ]


@pytest.mark.unit
class TestChapterTitles:
    def test_first_entry_for_a_document_wins(self):
        entries = [
            NavEntry("Part One", "a.xhtml"),
            NavEntry("Section", "a.xhtml", "s2"),
            NavEntry("Part Two", "b.xhtml"),
        ]

        assert build_title_map(entries) == {"a.xhtml": "Part One", "b.xhtml": "Part Two"}

    def test_unmatched_documents_get_positional_titles(self):
        titles = resolve_chapter_titles(
            spine("front.xhtml", "a.xhtml", "notes.xhtml"),
            [NavEntry("Part One", "a.xhtml")],
        )

        assert titles == ["Chapter 1", "Part One", "Chapter 3"]


@pytest.mark.unit
class TestAssembleChapters:
    def test_one_chapter_per_spine_item_in_order(self):
        chapters = assemble_chapters(
            "book",
            spine("a.xhtml", "b.xhtml", "c.xhtml"),
            [NavEntry("B", "b.xhtml")],
            {"a.xhtml": ["A1.", "A2."], "b.xhtml": ["B1."], "c.xhtml": []},
        )

        assert [chapter.id for chapter in chapters] == ["book:0", "book:1", "book:2"]
        assert [chapter.spine_index for chapter in chapters] == [0, 1, 2]
        assert [chapter.title for chapter in chapters] == ["Chapter 1", "B", "Chapter 3"]
        assert chapters[0].sentences == ("A1.", "A2.")
        assert chapters[2].sentences == ()
        assert not chapters[2].narratable

    def test_documents_without_sentences_entry_are_empty(self):
        chapters = assemble_chapters("book", spine("a.xhtml"), [], {})

        assert chapters[0].sentences == ()
        assert chapters[0].source_path == "a.xhtml"

"""End-to-end tests: container bytes through import into narration and resume."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from backends.mock import MockNarrationBackend
from conftest import Doc, FakeScheduler, build_epub, sample_docs, xhtml
from epub_narrator.engine import STATE_PLAYING, STATE_STOPPED, NarrationEngine
from epub_narrator.importer import import_book
from epub_narrator.runtime import NarrationSettings
from epub_narrator.store import InMemoryRecordStore, JsonRecordStore


def legacy_docs():
    return [
        Doc("cover.xhtml", xhtml("<div><p>Cover page.</p></div>"), linear=False),
        Doc(
            "text/part1.xhtml",
            xhtml("<h2>Part One</h2><p>Mrs. Hale opened the door. Nobody was there!</p>"),
            title="Part One",
            subsections=[("A Knock", "knock")],
        ),
        Doc(
            "text/part2.xhtml",
            xhtml("<p>It was 2.5 miles to town.</p><p>She walked.</p>"),
            title="Part Two",
        ),
    ]


@pytest.mark.integration
class TestImportDeterminism:
    def test_same_container_yields_identical_chapter_records(self):
        data = build_epub(sample_docs())
        first_store = InMemoryRecordStore()
        second_store = InMemoryRecordStore()

        first = import_book(data, first_store)
        second = import_book(data, second_store)

        assert first.book.id == second.book.id
        assert [chapter.to_dict() for chapter in first_store.get_chapters(first.book.id)] == [
            chapter.to_dict() for chapter in second_store.get_chapters(second.book.id)
        ]

    def test_reimport_into_json_store_is_stable(self, tmp_path):
        data = build_epub(sample_docs())
        store = JsonRecordStore(str(tmp_path))

        book_id = import_book(data, store, source_name="a.epub").book.id
        chapters_file = tmp_path / "books" / f"{book_id}.json"
        first_chapters = [chapter.to_dict() for chapter in store.get_chapters(book_id)]
        import_book(data, store, source_name="a.epub")

        assert [chapter.to_dict() for chapter in store.get_chapters(book_id)] == first_chapters
        assert chapters_file.exists()


@pytest.mark.integration
class TestLegacyBook:
    def test_version_two_book_with_ncx(self):
        store = InMemoryRecordStore()
        data = build_epub(legacy_docs(), version="2.0", cover=True, opf_dir="")

        result = import_book(data, store)

        assert result.book.cover_path == "images/cover.jpg"
        assert [chapter.title for chapter in result.chapters] == ["Part One", "Part Two"]
        assert [chapter.source_path for chapter in result.chapters] == [
            "text/part1.xhtml",
            "text/part2.xhtml",
        ]
        assert result.chapters[0].sentences == (
            "Part One",
            "Mrs. Hale opened the door.",
            "Nobody was there!",
        )
        assert result.chapters[1].sentences == ("It was 2.5 miles to town.", "She walked.")


@pytest.mark.integration
class TestImportThenNarrate:
    def test_narrate_pause_and_resume_across_engines(self, tmp_path):
        store = JsonRecordStore(str(tmp_path))
        book_id = import_book(build_epub(sample_docs()), store).book.id
        settings = NarrationSettings(persist_interval_seconds=0.0)

        backend = MockNarrationBackend()
        engine = NarrationEngine(store, backend, settings=settings, scheduler=FakeScheduler())
        engine.open(book_id)
        engine.play()
        for _ in range(4):
            backend.complete()
        engine.pause()
        engine.destroy()

        resumed_backend = MockNarrationBackend(auto_complete=True)
        renders = []
        resumed = NarrationEngine(
            store,
            resumed_backend,
            renders.append,
            settings=settings,
            scheduler=FakeScheduler(),
        )
        resumed.open(book_id)
        assert resumed.cursor == (1, 1)

        resumed.play()

        assert STATE_PLAYING in [render.state for render in renders]
        assert resumed.state == STATE_STOPPED
        assert resumed_backend.spoken_texts == ["Wait...", "really?!", "Yes.", "No title for this one."]
        position = store.get_position(book_id)
        assert (position.chapter_index, position.sentence_index) == (2, 0)

import json
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from .errors import RecordStoreError
from .models import Book, Chapter, PlaybackPosition


class RecordStore(ABC):
    """Keyed persistence for books, their chapters, and playback positions."""

    @abstractmethod
    def put_book(self, book: Book) -> None:
        pass

    @abstractmethod
    def get_book(self, book_id: str) -> Optional[Book]:
        pass

    @abstractmethod
    def list_books(self) -> List[Book]:
        pass

    @abstractmethod
    def put_chapters(self, book_id: str, chapters: Sequence[Chapter]) -> None:
        pass

    @abstractmethod
    def get_chapters(self, book_id: str) -> List[Chapter]:
        """Return the book's chapters in spine-index order."""

    @abstractmethod
    def put_position(self, position: PlaybackPosition) -> None:
        pass

    @abstractmethod
    def get_position(self, book_id: str) -> Optional[PlaybackPosition]:
        pass

    @abstractmethod
    def delete_book(self, book_id: str) -> None:
        """Remove the book together with its chapters and position."""


class InMemoryRecordStore(RecordStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._books: Dict[str, Book] = {}
        self._chapters: Dict[str, List[Chapter]] = {}
        self._positions: Dict[str, PlaybackPosition] = {}

    def put_book(self, book: Book) -> None:
        with self._lock:
            self._books[book.id] = book

    def get_book(self, book_id: str) -> Optional[Book]:
        with self._lock:
            return self._books.get(book_id)

    def list_books(self) -> List[Book]:
        with self._lock:
            return sorted(self._books.values(), key=lambda book: book.imported_at)

    def put_chapters(self, book_id: str, chapters: Sequence[Chapter]) -> None:
        with self._lock:
            self._chapters[book_id] = sorted(chapters, key=lambda ch: ch.spine_index)

    def get_chapters(self, book_id: str) -> List[Chapter]:
        with self._lock:
            return list(self._chapters.get(book_id, []))

    def put_position(self, position: PlaybackPosition) -> None:
        with self._lock:
            self._positions[position.book_id] = PlaybackPosition(
                book_id=position.book_id,
                chapter_index=position.chapter_index,
                sentence_index=position.sentence_index,
                updated_at=position.updated_at,
            )

    def get_position(self, book_id: str) -> Optional[PlaybackPosition]:
        with self._lock:
            return self._positions.get(book_id)

    def delete_book(self, book_id: str) -> None:
        with self._lock:
            self._books.pop(book_id, None)
            self._chapters.pop(book_id, None)
            self._positions.pop(book_id, None)


_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonRecordStore(RecordStore):
    """Directory-backed store: ``books/<id>.json`` and ``positions/<id>.json``."""

    def __init__(self, root_dir: str):
        self.root_dir = os.path.abspath(root_dir)
        self._books_dir = os.path.join(self.root_dir, "books")
        self._positions_dir = os.path.join(self.root_dir, "positions")
        self._lock = threading.Lock()
        try:
            os.makedirs(self._books_dir, exist_ok=True)
            os.makedirs(self._positions_dir, exist_ok=True)
        except OSError as exc:
            raise RecordStoreError(f"Cannot create library at {self.root_dir}: {exc}") from exc

    def _path(self, directory: str, book_id: str) -> str:
        if not _SAFE_ID_RE.match(book_id):
            raise RecordStoreError(f"Invalid book id: {book_id!r}", book_id=book_id)
        return os.path.join(directory, f"{book_id}.json")

    def _read(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise RecordStoreError(f"Cannot read {path}: {exc}") from exc

    def _write(self, path: str, payload: Dict[str, Any]) -> None:
        directory = os.path.dirname(path)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, ensure_ascii=False, indent=2)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as exc:
            raise RecordStoreError(f"Cannot write {path}: {exc}") from exc

    def _read_book_document(self, book_id: str) -> Optional[Dict[str, Any]]:
        return self._read(self._path(self._books_dir, book_id))

    def put_book(self, book: Book) -> None:
        with self._lock:
            document = self._read_book_document(book.id) or {"chapters": []}
            document["book"] = book.to_dict()
            self._write(self._path(self._books_dir, book.id), document)

    def get_book(self, book_id: str) -> Optional[Book]:
        with self._lock:
            document = self._read_book_document(book_id)
        if not document or "book" not in document:
            return None
        return Book.from_dict(document["book"])

    def list_books(self) -> List[Book]:
        books: List[Book] = []
        with self._lock:
            for name in sorted(os.listdir(self._books_dir)):
                if not name.endswith(".json"):
                    continue
                document = self._read(os.path.join(self._books_dir, name))
                if document and "book" in document:
                    books.append(Book.from_dict(document["book"]))
        return sorted(books, key=lambda book: book.imported_at)

    def put_chapters(self, book_id: str, chapters: Sequence[Chapter]) -> None:
        ordered = sorted(chapters, key=lambda ch: ch.spine_index)
        with self._lock:
            document = self._read_book_document(book_id) or {}
            document["chapters"] = [chapter.to_dict() for chapter in ordered]
            self._write(self._path(self._books_dir, book_id), document)

    def get_chapters(self, book_id: str) -> List[Chapter]:
        with self._lock:
            document = self._read_book_document(book_id)
        if not document:
            return []
        chapters = [Chapter.from_dict(data) for data in document.get("chapters", [])]
        return sorted(chapters, key=lambda ch: ch.spine_index)

    def put_position(self, position: PlaybackPosition) -> None:
        with self._lock:
            self._write(self._path(self._positions_dir, position.book_id), position.to_dict())

    def get_position(self, book_id: str) -> Optional[PlaybackPosition]:
        with self._lock:
            data = self._read(self._path(self._positions_dir, book_id))
        if data is None:
            return None
        try:
            return PlaybackPosition.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise RecordStoreError(f"Corrupt position for {book_id}: {exc}", book_id=book_id) from exc

    def delete_book(self, book_id: str) -> None:
        with self._lock:
            for directory in (self._books_dir, self._positions_dir):
                path = self._path(directory, book_id)
                try:
                    os.remove(path)
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    raise RecordStoreError(f"Cannot delete {path}: {exc}", book_id=book_id) from exc

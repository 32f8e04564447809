import hashlib
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .archive import ArchiveReader
from .assembler import assemble_chapters
from .errors import (
    ContainerCorruptError,
    EntryNotFoundError,
    ExtractionError,
    NavigationParseError,
    PackageParseError,
)
from .extractor import extract_paragraphs
from .models import Book, Chapter, NavEntry, PackageDocument
from .navigation import load_navigation
from .package import load_package
from .sentences import tokenize
from .store import RecordStore

ImportSource = Union[str, "os.PathLike[str]", bytes]


@dataclass
class ImportResult:
    book: Book
    chapters: List[Chapter]
    package: Optional[PackageDocument] = None
    nav_entries: List[NavEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ImportDeps:
    open_archive: Callable[[bytes], ArchiveReader] = ArchiveReader
    load_package: Callable[[ArchiveReader], PackageDocument] = load_package
    load_navigation: Callable[[ArchiveReader, PackageDocument], List[NavEntry]] = (
        load_navigation
    )
    extract_paragraphs: Callable[..., List[str]] = extract_paragraphs
    tokenize: Callable[[Sequence[str]], List[str]] = tokenize
    clock: Callable[[], float] = time.time


DEFAULT_IMPORT_DEPS = ImportDeps()


def compute_book_id(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:16]


def _read_source(source: ImportSource) -> Tuple[bytes, str]:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source), ""

    path = os.fspath(source)
    try:
        with open(path, "rb") as f:
            return f.read(), os.path.abspath(path)
    except OSError as exc:
        raise ContainerCorruptError(f"Cannot read container {path}: {exc}") from exc


def extract_document_sentences(
    archive: ArchiveReader,
    path: str,
    deps: Optional[ImportDeps] = None,
) -> List[str]:
    """Return the sentences of one content document, in reading order."""
    deps = deps or DEFAULT_IMPORT_DEPS
    paragraphs = deps.extract_paragraphs(archive.read_entry(path), path)
    return deps.tokenize(paragraphs)


def build_chapters(
    archive: ArchiveReader,
    package: PackageDocument,
    nav_entries: Sequence[NavEntry],
    book_id: str,
    *,
    progress_callback: Optional[Callable[[int, int, int], None]] = None,
    deps: Optional[ImportDeps] = None,
) -> Tuple[List[Chapter], List[str]]:
    deps = deps or DEFAULT_IMPORT_DEPS
    warnings: List[str] = []
    sentences_by_path: Dict[str, List[str]] = {}
    total_items = len(package.spine)
    narratable_count = 0

    for idx, item in enumerate(package.spine, start=1):
        if item.path not in sentences_by_path:
            try:
                sentences = extract_document_sentences(archive, item.path, deps)
            except (ContainerCorruptError, EntryNotFoundError, ExtractionError) as exc:
                warnings.append(f"{item.path}: {exc}; document contributes no sentences.")
                sentences = []
            sentences_by_path[item.path] = sentences

        if sentences_by_path[item.path]:
            narratable_count += 1
        if progress_callback is not None:
            progress_callback(idx, total_items, narratable_count)

    chapters = assemble_chapters(book_id, package.spine, nav_entries, sentences_by_path)
    return chapters, warnings


def import_book(
    source: ImportSource,
    store: RecordStore,
    *,
    source_name: Optional[str] = None,
    progress_callback: Optional[Callable[[int, int, int], None]] = None,
    deps: Optional[ImportDeps] = None,
) -> ImportResult:
    """Parse a container and persist its Book and Chapter records.

    Raises ContainerCorruptError when the container cannot be opened; the
    book is not added in that case. Every later failure degrades: a bad
    package descriptor yields a book with zero chapters, a bad navigation
    descriptor yields positional titles, and a bad document yields an empty
    chapter. Each degradation is reported in ``ImportResult.warnings``.
    """
    deps = deps or DEFAULT_IMPORT_DEPS
    data, source_path = _read_source(source)
    book_id = compute_book_id(data)
    archive = deps.open_archive(data)

    try:
        warnings: List[str] = []
        package: Optional[PackageDocument] = None
        nav_entries: List[NavEntry] = []
        chapters: List[Chapter] = []
        error: Optional[str] = None

        try:
            package = deps.load_package(archive)
        except PackageParseError as exc:
            error = str(exc)
            warnings.append(f"{exc} Book added without chapters.")

        if package is not None:
            try:
                nav_entries = deps.load_navigation(archive, package)
            except NavigationParseError as exc:
                warnings.append(f"Navigation unavailable ({exc}); using positional chapter titles.")

            chapters, chapter_warnings = build_chapters(
                archive,
                package,
                nav_entries,
                book_id,
                progress_callback=progress_callback,
                deps=deps,
            )
            warnings.extend(chapter_warnings)
    finally:
        archive.close()

    fallback_title = os.path.splitext(os.path.basename(source_name or source_path))[0]
    book = Book(
        id=book_id,
        title=package.metadata.title if package else (fallback_title or "Unknown Title"),
        author=package.metadata.author if package else "Unknown Author",
        source_path=source_name or source_path,
        imported_at=deps.clock(),
        chapter_count=len(chapters),
        cover_path=package.metadata.cover_path if package else None,
        error=error,
    )

    store.put_book(book)
    store.put_chapters(book.id, chapters)

    return ImportResult(
        book=book,
        chapters=chapters,
        package=package,
        nav_entries=nav_entries,
        warnings=warnings,
    )

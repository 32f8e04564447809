"""Shared fixtures: an in-memory EPUB builder, fake timers and seeded stores."""

import io
import sys
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape, quoteattr

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from backends.mock import MockNarrationBackend
from epub_narrator.engine import NarrationEngine
from epub_narrator.models import Book, Chapter
from epub_narrator.runtime import NarrationSettings
from epub_narrator.store import InMemoryRecordStore

FIXED_ZIP_TIME = (2020, 1, 1, 0, 0, 0)


@dataclass
class Doc:
    href: str
    body: str
    title: Optional[str] = None
    linear: bool = True
    media_type: str = "application/xhtml+xml"
    subsections: List[Tuple[str, str]] = field(default_factory=list)


def xhtml(body: str, head: str = "<title>doc</title>") -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<!DOCTYPE html>\n"
        '<html xmlns="http://www.w3.org/1999/xhtml">'
        f"<head>{head}</head><body>{body}</body></html>"
    )


def container_xml(opf_path: str) -> str:
    return (
        '<?xml version="1.0"?>\n'
        '<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">'
        "<rootfiles>"
        f'<rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>'
        "</rootfiles></container>"
    )


def nav_xhtml(docs: Sequence[Doc]) -> str:
    items = []
    for doc in docs:
        if doc.title is None:
            continue
        nested = ""
        if doc.subsections:
            nested = "<ol>" + "".join(
                f'<li><a href="{doc.href}#{fragment}">{escape(title)}</a></li>'
                for title, fragment in doc.subsections
            ) + "</ol>"
        items.append(f'<li><a href="{doc.href}">{escape(doc.title)}</a>{nested}</li>')
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">'
        "<head><title>Contents</title></head><body>"
        '<nav epub:type="landmarks"><ol><li><a href="cover.xhtml">Cover</a></li></ol></nav>'
        f'<nav epub:type="toc"><h1>Contents</h1><ol>{"".join(items)}</ol></nav>'
        "</body></html>"
    )


def toc_ncx(docs: Sequence[Doc]) -> str:
    points = []
    order = 1
    for doc in docs:
        if doc.title is None:
            continue
        children = []
        for title, fragment in doc.subsections:
            order += 1
            children.append(
                f'<navPoint id="np{order}" playOrder="{order}">'
                f"<navLabel><text>{escape(title)}</text></navLabel>"
                f'<content src="{doc.href}#{fragment}"/></navPoint>'
            )
        points.append(
            f'<navPoint id="np{order}" playOrder="{order}">'
            f"<navLabel><text>{escape(doc.title)}</text></navLabel>"
            f'<content src="{doc.href}"/>{"".join(children)}</navPoint>'
        )
        order += 1
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">'
        "<head/><docTitle><text>Book</text></docTitle>"
        f"<navMap>{''.join(points)}</navMap></ncx>"
    )


def package_opf(
    docs: Sequence[Doc],
    *,
    version: str,
    title: Optional[str],
    author: Optional[str],
    nav_format: str,
    reverse_manifest: bool,
    cover: bool,
) -> str:
    metadata = []
    if title is not None:
        metadata.append(f"<dc:title>{escape(title)}</dc:title>")
    if author is not None:
        metadata.append(f"<dc:creator>{escape(author)}</dc:creator>")
    metadata.append("<dc:language>en</dc:language>")

    items = [
        f'<item id="item{index}" href={quoteattr(doc.href)} media-type="{doc.media_type}"/>'
        for index, doc in enumerate(docs)
    ]
    if reverse_manifest:
        items.reverse()
    if nav_format in ("nav", "both"):
        items.append('<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>')
    if nav_format in ("ncx", "both"):
        items.append('<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>')
    if cover:
        if version.startswith("3"):
            items.append(
                '<item id="cover-img" href="images/cover.jpg" media-type="image/jpeg" '
                'properties="cover-image"/>'
            )
        else:
            items.append('<item id="cover-img" href="images/cover.jpg" media-type="image/jpeg"/>')
            metadata.append('<meta name="cover" content="cover-img"/>')

    itemrefs = []
    for index, doc in enumerate(docs):
        linear_attr = "" if doc.linear else ' linear="no"'
        itemrefs.append(f'<itemref idref="item{index}"{linear_attr}/>')
    toc_attr = ' toc="ncx"' if nav_format in ("ncx", "both") else ""
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        f'<package xmlns="http://www.idpf.org/2007/opf" version="{version}" unique-identifier="bookid">'
        f'<metadata xmlns:dc="http://purl.org/dc/elements/1.1/">{"".join(metadata)}</metadata>'
        f"<manifest>{''.join(items)}</manifest>"
        f"<spine{toc_attr}>{''.join(itemrefs)}</spine>"
        "</package>"
    )


def write_zip(entries: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            info = zipfile.ZipInfo(name, date_time=FIXED_ZIP_TIME)
            info.compress_type = zipfile.ZIP_STORED if name == "mimetype" else zipfile.ZIP_DEFLATED
            archive.writestr(info, data)
    return buffer.getvalue()


def build_epub(
    docs: Sequence[Doc],
    *,
    version: str = "3.0",
    title: Optional[str] = "Test Book",
    author: Optional[str] = "Test Author",
    nav_format: str = "auto",
    opf_dir: str = "OEBPS",
    reverse_manifest: bool = False,
    cover: bool = False,
    with_container: bool = True,
    overrides: Optional[Dict[str, Optional[str]]] = None,
) -> bytes:
    """Build an EPUB container in memory.

    ``nav_format`` is one of ``auto``, ``nav``, ``ncx``, ``both`` or ``none``;
    ``auto`` picks the navigation document for version 3 packages and the NCX
    otherwise. ``overrides`` replaces (or with ``None`` removes) entries by
    their path inside ``opf_dir``.
    """
    if nav_format == "auto":
        nav_format = "nav" if version.startswith("3") else "ncx"

    prefix = f"{opf_dir}/" if opf_dir else ""
    entries: Dict[str, bytes] = {"mimetype": b"application/epub+zip"}
    if with_container:
        entries["META-INF/container.xml"] = container_xml(f"{prefix}content.opf").encode()

    files: Dict[str, Optional[str]] = {
        "content.opf": package_opf(
            docs,
            version=version,
            title=title,
            author=author,
            nav_format=nav_format,
            reverse_manifest=reverse_manifest,
            cover=cover,
        )
    }
    if nav_format in ("nav", "both"):
        files["nav.xhtml"] = nav_xhtml(docs)
    if nav_format in ("ncx", "both"):
        files["toc.ncx"] = toc_ncx(docs)
    for doc in docs:
        files[doc.href] = doc.body
    files.update(overrides or {})

    for name, content in files.items():
        if content is not None:
            entries[f"{prefix}{name}"] = content.encode("utf-8")
    if cover:
        entries[f"{prefix}images/cover.jpg"] = b"\xff\xd8\xff\xe0fake-jpeg"
    return write_zip(entries)


def sample_docs() -> List[Doc]:
    return [
        Doc(
            "chapter1.xhtml",
            xhtml("<h1>The Arrival</h1><p>Dr. Smith arrived at 3.14pm. He left.</p>"),
            title="The Arrival",
        ),
        Doc(
            "chapter2.xhtml",
            xhtml("<h1>Waiting</h1><p>Wait... really?! Yes.</p><script>var x = 1;</script>"),
            title="Waiting",
        ),
        Doc("chapter3.xhtml", xhtml("<div><p>No title for this one.</p></div>")),
    ]


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> List[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled and not timer.fired]

    def fire_all(self) -> None:
        for timer in self.active:
            timer.fired = True
            timer.callback()


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def epub_bytes() -> bytes:
    return build_epub(sample_docs())


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def backend() -> MockNarrationBackend:
    return MockNarrationBackend()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def seed_book(store):
    """Return a function that stores a book whose chapters hold the given sentences."""

    def seed(sentences_per_chapter: Sequence[Sequence[str]], book_id: str = "book1") -> str:
        chapters = [
            Chapter(
                id=f"{book_id}:{index}",
                book_id=book_id,
                spine_index=index,
                title=f"Part {index + 1}",
                source_path=f"OEBPS/part{index + 1}.xhtml",
                sentences=tuple(sentences),
            )
            for index, sentences in enumerate(sentences_per_chapter)
        ]
        store.put_book(
            Book(
                id=book_id,
                title="Seeded",
                author="Author",
                source_path="seeded.epub",
                imported_at=0.0,
                chapter_count=len(chapters),
            )
        )
        store.put_chapters(book_id, chapters)
        return book_id

    return seed


@pytest.fixture
def make_engine(store, backend, scheduler, clock):
    """Return a factory for engines wired to the fake scheduler and clock."""

    def make(**overrides) -> Tuple[NarrationEngine, List, List[str]]:
        renders: List = []
        warnings: List[str] = []
        settings = overrides.pop("settings", None) or NarrationSettings(
            max_request_chars=overrides.pop("max_request_chars", 220),
            watchdog_seconds=overrides.pop("watchdog_seconds", 5.0),
            persist_interval_seconds=overrides.pop("persist_interval_seconds", 2.0),
        )
        engine = NarrationEngine(
            overrides.pop("store", store),
            overrides.pop("backend", backend),
            renders.append,
            settings=settings,
            scheduler=scheduler,
            warning_callback=warnings.append,
            clock=clock,
            wall_clock=lambda: 1700000000.0,
        )
        return engine, renders, warnings

    return make

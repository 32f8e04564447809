"""Tests for locating and parsing the package descriptor."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from conftest import Doc, build_epub, write_zip, xhtml
from epub_narrator.archive import ArchiveReader
from epub_narrator.errors import PackageParseError
from epub_narrator.package import (
    DEFAULT_AUTHOR,
    DEFAULT_TITLE,
    find_package_path,
    load_package,
    parse_package,
    resolve_href,
)


def three_docs():
    return [
        Doc("one.xhtml", xhtml("<p>One.</p>"), title="One"),
        Doc("two.xhtml", xhtml("<p>Two.</p>"), title="Two"),
        Doc("three.xhtml", xhtml("<p>Three.</p>"), title="Three"),
    ]


@pytest.mark.unit
class TestResolveHref:
    def test_relative_to_package_directory(self):
        assert resolve_href("OEBPS/content.opf", "text/ch1.xhtml") == "OEBPS/text/ch1.xhtml"

    def test_fragment_is_dropped(self):
        assert resolve_href("OEBPS/nav.xhtml", "ch1.xhtml#sec2") == "OEBPS/ch1.xhtml"

    def test_parent_segments(self):
        assert resolve_href("OEBPS/toc/nav.xhtml", "../text/ch1.xhtml") == "OEBPS/text/ch1.xhtml"

    def test_package_at_root(self):
        assert resolve_href("content.opf", "ch1.xhtml") == "ch1.xhtml"

    def test_fragment_only(self):
        assert resolve_href("OEBPS/nav.xhtml", "#top") == ""


@pytest.mark.unit
class TestLoadPackage:
    def test_spine_follows_declared_order_not_manifest_order(self):
        archive = ArchiveReader(build_epub(three_docs(), reverse_manifest=True))

        package = load_package(archive)

        assert [item.path for item in package.spine] == [
            "OEBPS/one.xhtml",
            "OEBPS/two.xhtml",
            "OEBPS/three.xhtml",
        ]
        assert all(item.linear for item in package.spine)

    def test_metadata_and_descriptor_paths(self):
        archive = ArchiveReader(build_epub(three_docs(), nav_format="both", cover=True))

        package = load_package(archive)

        assert package.path == "OEBPS/content.opf"
        assert package.version == "3.0"
        assert package.major_version == 3
        assert package.metadata.title == "Test Book"
        assert package.metadata.author == "Test Author"
        assert package.metadata.language == "en"
        assert package.metadata.cover_path == "OEBPS/images/cover.jpg"
        assert package.nav_path == "OEBPS/nav.xhtml"
        assert package.ncx_path == "OEBPS/toc.ncx"

    def test_version_two_cover_from_meta_element(self):
        archive = ArchiveReader(build_epub(three_docs(), version="2.0", cover=True))

        package = load_package(archive)

        assert package.major_version == 2
        assert package.metadata.cover_path == "OEBPS/images/cover.jpg"
        assert package.nav_path is None
        assert package.ncx_path == "OEBPS/toc.ncx"

    def test_missing_metadata_uses_defaults(self):
        archive = ArchiveReader(build_epub(three_docs(), title=None, author=None))

        metadata = load_package(archive).metadata

        assert metadata.title == DEFAULT_TITLE
        assert metadata.author == DEFAULT_AUTHOR
        assert metadata.cover_path is None

    def test_non_linear_items_are_kept_aside(self):
        docs = three_docs()
        docs[1].linear = False
        archive = ArchiveReader(build_epub(docs))

        package = load_package(archive)

        assert [item.id for item in package.spine] == ["item0", "item2"]
        assert [item.id for item in package.non_linear] == ["item1"]
        assert package.item_by_id("item1").path == "OEBPS/two.xhtml"

    def test_non_document_spine_items_are_not_narratable(self):
        docs = three_docs() + [Doc("plate.jpg", "not markup", media_type="image/jpeg")]
        archive = ArchiveReader(build_epub(docs))

        package = load_package(archive)

        assert len(package.spine) == 3

    def test_falls_back_to_scanning_for_opf_without_container(self):
        archive = ArchiveReader(build_epub(three_docs(), with_container=False))

        assert find_package_path(archive) == "OEBPS/content.opf"
        assert len(load_package(archive).spine) == 3

    def test_no_descriptor_raises(self):
        archive = ArchiveReader(write_zip({"mimetype": b"application/epub+zip"}))

        with pytest.raises(PackageParseError):
            load_package(archive)

    def test_unparsable_descriptor_raises(self):
        archive = ArchiveReader(
            build_epub(three_docs(), overrides={"content.opf": "<package><manifest>"})
        )

        with pytest.raises(PackageParseError):
            load_package(archive)


@pytest.mark.unit
class TestParsePackage:
    OPF = """<?xml version="1.0"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>  First
        Title </dc:title>
    <dc:title>Second Title</dc:title>
    <dc:creator>Ann Author</dc:creator>
    <dc:creator>Bob Author</dc:creator>
  </metadata>
  <manifest>
    <item id="b" href="b.xhtml" media-type="application/xhtml+xml"/>
    <item id="a" href="a.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
  <spine>
    <itemref idref="a"/>
    <itemref idref="ghost"/>
    <itemref idref="b"/>
  </spine>
</package>"""

    def test_first_metadata_value_wins(self):
        package = parse_package(self.OPF.encode(), "content.opf")

        assert package.metadata.title == "First Title"
        assert package.metadata.author == "Ann Author"

    def test_unknown_idrefs_are_skipped(self):
        package = parse_package(self.OPF.encode(), "content.opf")

        assert [item.path for item in package.spine] == ["a.xhtml", "b.xhtml"]

    def test_empty_spine_raises(self):
        opf = self.OPF.replace('<itemref idref="a"/>', "").replace('<itemref idref="b"/>', "")

        with pytest.raises(PackageParseError):
            parse_package(opf.encode(), "content.opf")

    def test_missing_spine_raises(self):
        opf = self.OPF.split("<spine>")[0] + "</package>"

        with pytest.raises(PackageParseError):
            parse_package(opf.encode(), "content.opf")

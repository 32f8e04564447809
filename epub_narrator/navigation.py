import xml.etree.ElementTree as ET
from typing import List, Optional

from bs4 import BeautifulSoup

from .archive import ArchiveReader
from .chunking import clean_text
from .errors import EntryNotFoundError, NavigationParseError
from .models import NavEntry, PackageDocument
from .package import resolve_href


def _make_entry(title: str, href: Optional[str], base_path: str) -> Optional[NavEntry]:
    title = clean_text(title)
    if not title or not href:
        return None

    fragment = href.split("#", 1)[1] if "#" in href else ""
    target_path = resolve_href(base_path, href)
    if not target_path:
        return None
    return NavEntry(title=title, target_path=target_path, target_fragment=fragment)


def parse_ncx(data: bytes, ncx_path: str) -> List[NavEntry]:
    """Parse the legacy NCX tree, keeping top-level navPoints only."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise NavigationParseError(f"Cannot parse {ncx_path}: {exc}") from exc

    nav_map = root.find("{*}navMap")
    if nav_map is None:
        raise NavigationParseError(f"No navMap found in {ncx_path}")

    entries: List[NavEntry] = []
    for nav_point in nav_map.findall("{*}navPoint"):
        label = nav_point.find("{*}navLabel/{*}text")
        content = nav_point.find("{*}content")
        entry = _make_entry(
            "".join(label.itertext()) if label is not None else "",
            content.get("src") if content is not None else None,
            ncx_path,
        )
        if entry is not None:
            entries.append(entry)
    return entries


def _find_toc_nav(soup: BeautifulSoup):
    navs = soup.find_all("nav")
    for nav in navs:
        nav_type = nav.get("epub:type") or nav.get("type") or ""
        if "toc" in nav_type.split():
            return nav
    return navs[0] if navs else None


def parse_nav_document(data: bytes, nav_path: str) -> List[NavEntry]:
    """Parse the EPUB 3 navigation document's toc list, top-level items only."""
    try:
        soup = BeautifulSoup(data, "html.parser")
    except Exception as exc:
        raise NavigationParseError(f"Cannot parse {nav_path}: {exc}") from exc

    toc_nav = _find_toc_nav(soup)
    if toc_nav is None:
        raise NavigationParseError(f"No nav element found in {nav_path}")

    top_list = toc_nav.find("ol")
    if top_list is None:
        return []

    entries: List[NavEntry] = []
    for item in top_list.find_all("li", recursive=False):
        link = item.find("a", recursive=False)
        if link is None:
            continue
        entry = _make_entry(link.get_text(" ", strip=True), link.get("href"), nav_path)
        if entry is not None:
            entries.append(entry)
    return entries


def load_navigation(archive: ArchiveReader, package: PackageDocument) -> List[NavEntry]:
    """Return top-level navigation entries, preferring the format of the package version.

    Returns an empty list when the package declares no navigation descriptor.
    Raises NavigationParseError when a declared descriptor cannot be used.
    """
    candidates = []
    if package.nav_path:
        candidates.append((package.nav_path, parse_nav_document))
    if package.ncx_path:
        candidates.append((package.ncx_path, parse_ncx))
    if package.major_version < 3:
        candidates.reverse()

    last_error: Optional[Exception] = None
    for path, parser in candidates:
        try:
            return parser(archive.read_entry(path), path)
        except (EntryNotFoundError, NavigationParseError) as exc:
            last_error = exc

    if last_error is not None:
        raise NavigationParseError(str(last_error)) from last_error
    return []

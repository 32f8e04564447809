import posixpath
import re
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional

from .archive import ArchiveReader, normalize_entry_path
from .errors import EntryNotFoundError, PackageParseError
from .models import BookMetadata, ManifestItem, PackageDocument, SpineItem

CONTAINER_PATH = "META-INF/container.xml"
PACKAGE_MEDIA_TYPE = "application/oebps-package+xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
DOCUMENT_MEDIA_TYPES = frozenset(
    {
        "application/xhtml+xml",
        "text/html",
        "application/xml",
        "text/xml",
    }
)

DEFAULT_TITLE = "Unknown Title"
DEFAULT_AUTHOR = "Unknown Author"


def _parse_xml(data: bytes, description: str) -> ET.Element:
    try:
        return ET.fromstring(data)
    except ET.ParseError as exc:
        raise PackageParseError(f"Cannot parse {description}: {exc}") from exc


def _collapse(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def resolve_href(base_path: str, href: str) -> str:
    """Resolve an href found in ``base_path`` to a container-relative path."""
    href = href.split("#", 1)[0]
    if not href:
        return ""
    base_dir = posixpath.dirname(base_path)
    return normalize_entry_path(posixpath.join(base_dir, href) if base_dir else href)


def find_package_path(archive: ArchiveReader) -> str:
    try:
        container = _parse_xml(archive.read_entry(CONTAINER_PATH), CONTAINER_PATH)
    except (EntryNotFoundError, PackageParseError):
        container = None

    if container is not None:
        rootfiles = container.findall(".//{*}rootfile")
        preferred = [
            rootfile
            for rootfile in rootfiles
            if rootfile.get("media-type") == PACKAGE_MEDIA_TYPE
        ]
        for rootfile in preferred + rootfiles:
            full_path = rootfile.get("full-path")
            if full_path and archive.has_entry(full_path):
                return normalize_entry_path(full_path)

    candidates = sorted(
        entry for entry in archive.list_entries() if entry.lower().endswith(".opf")
    )
    if candidates:
        return candidates[0]

    raise PackageParseError("No package descriptor found in container.")


def _first_text(metadata: Optional[ET.Element], local_name: str) -> str:
    if metadata is None:
        return ""
    for node in metadata.findall(f"{{*}}{local_name}"):
        text = _collapse("".join(node.itertext()))
        if text:
            return text
    return ""


def _parse_manifest(root: ET.Element, package_path: str) -> Dict[str, ManifestItem]:
    manifest: Dict[str, ManifestItem] = {}
    for item in root.findall("{*}manifest/{*}item"):
        item_id = item.get("id", "")
        href = item.get("href", "")
        if not item_id or not href or item_id in manifest:
            continue
        manifest[item_id] = ManifestItem(
            id=item_id,
            path=resolve_href(package_path, href),
            media_type=(item.get("media-type") or "").strip().lower(),
            properties=tuple((item.get("properties") or "").split()),
        )
    return manifest


def _find_cover_path(
    metadata: Optional[ET.Element],
    manifest: Dict[str, ManifestItem],
) -> Optional[str]:
    for item in manifest.values():
        if "cover-image" in item.properties:
            return item.path

    if metadata is not None:
        for meta in metadata.findall("{*}meta"):
            if meta.get("name") == "cover":
                cover = manifest.get(meta.get("content", ""))
                if cover is not None:
                    return cover.path
    return None


def parse_package(data: bytes, package_path: str) -> PackageDocument:
    root = _parse_xml(data, package_path)
    manifest = _parse_manifest(root, package_path)

    spine_node = root.find("{*}spine")
    if spine_node is None:
        raise PackageParseError(f"Package descriptor {package_path} has no spine.")

    spine: List[SpineItem] = []
    non_linear: List[SpineItem] = []
    for itemref in spine_node.findall("{*}itemref"):
        item = manifest.get(itemref.get("idref", ""))
        if item is None:
            continue
        linear = (itemref.get("linear") or "yes").strip().lower() != "no"
        spine_item = SpineItem(
            id=item.id,
            path=item.path,
            media_type=item.media_type,
            linear=linear,
        )
        if not linear:
            non_linear.append(spine_item)
        elif item.media_type in DOCUMENT_MEDIA_TYPES or not item.media_type:
            spine.append(spine_item)

    if not spine:
        raise PackageParseError(f"Package descriptor {package_path} has an empty spine.")

    metadata_node = root.find("{*}metadata")
    metadata = BookMetadata(
        title=_first_text(metadata_node, "title") or DEFAULT_TITLE,
        author=_first_text(metadata_node, "creator") or DEFAULT_AUTHOR,
        cover_path=_find_cover_path(metadata_node, manifest),
        language=_first_text(metadata_node, "language") or None,
    )

    nav_path = next(
        (item.path for item in manifest.values() if "nav" in item.properties),
        None,
    )
    ncx_item = manifest.get(spine_node.get("toc", ""))
    if ncx_item is None:
        ncx_item = next(
            (item for item in manifest.values() if item.media_type == NCX_MEDIA_TYPE),
            None,
        )

    return PackageDocument(
        path=package_path,
        version=(root.get("version") or "2.0").strip(),
        metadata=metadata,
        manifest=manifest,
        spine=spine,
        non_linear=non_linear,
        nav_path=nav_path,
        ncx_path=ncx_item.path if ncx_item is not None else None,
    )


def load_package(archive: ArchiveReader) -> PackageDocument:
    package_path = find_package_path(archive)
    try:
        data = archive.read_entry(package_path)
    except EntryNotFoundError as exc:
        raise PackageParseError(str(exc)) from exc
    return parse_package(data, package_path)

import io
import os
import posixpath
import zipfile
import zlib
from typing import BinaryIO, Dict, Set, Union
from urllib.parse import unquote

from .errors import ContainerCorruptError, EntryNotFoundError

ArchiveSource = Union[str, "os.PathLike[str]", bytes, BinaryIO]


def normalize_entry_path(path: str) -> str:
    """Normalize a container-relative path the way zip entry names are stored."""
    normalized = unquote(str(path)).replace("\\", "/").strip()
    normalized = normalized.lstrip("/")
    if not normalized:
        return ""
    normalized = posixpath.normpath(normalized)
    if normalized == ".":
        return ""
    while normalized.startswith("../"):
        normalized = normalized[3:]
    return normalized


class ArchiveReader:
    """Read-only view over an EPUB zip container."""

    def __init__(self, source: ArchiveSource):
        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(bytes(source))

        try:
            self._zip = zipfile.ZipFile(source)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError) as exc:
            raise ContainerCorruptError(f"Cannot open container: {exc}") from exc

        self._entries: Dict[str, str] = {}
        for info in self._zip.infolist():
            if info.is_dir():
                continue
            key = normalize_entry_path(info.filename)
            if key:
                self._entries.setdefault(key, info.filename)

    def list_entries(self) -> Set[str]:
        return set(self._entries)

    def has_entry(self, path: str) -> bool:
        return normalize_entry_path(path) in self._entries

    def read_entry(self, path: str) -> bytes:
        key = normalize_entry_path(path)
        name = self._entries.get(key)
        if name is None:
            raise EntryNotFoundError(path)

        try:
            return self._zip.read(name)
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as exc:
            raise ContainerCorruptError(f"Cannot read entry {path}: {exc}") from exc

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

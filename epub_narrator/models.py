from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ManifestItem:
    id: str
    path: str
    media_type: str
    properties: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SpineItem:
    id: str
    path: str
    media_type: str
    linear: bool = True


@dataclass(frozen=True)
class NavEntry:
    title: str
    target_path: str
    target_fragment: str = ""


@dataclass
class BookMetadata:
    title: str
    author: str
    cover_path: Optional[str] = None
    language: Optional[str] = None


@dataclass
class PackageDocument:
    path: str
    version: str
    metadata: BookMetadata
    manifest: Dict[str, ManifestItem]
    spine: List[SpineItem]
    non_linear: List[SpineItem] = field(default_factory=list)
    nav_path: Optional[str] = None
    ncx_path: Optional[str] = None

    @property
    def major_version(self) -> int:
        try:
            return int(self.version.split(".", 1)[0])
        except ValueError:
            return 2

    def item_by_id(self, item_id: str) -> Optional[ManifestItem]:
        return self.manifest.get(item_id)


@dataclass
class Book:
    id: str
    title: str
    author: str
    source_path: str
    imported_at: float
    chapter_count: int = 0
    cover_path: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "source_path": self.source_path,
            "imported_at": self.imported_at,
            "chapter_count": self.chapter_count,
            "cover_path": self.cover_path,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Book":
        return cls(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            source_path=data.get("source_path", ""),
            imported_at=float(data.get("imported_at", 0.0)),
            chapter_count=int(data.get("chapter_count", 0)),
            cover_path=data.get("cover_path"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class Chapter:
    id: str
    book_id: str
    spine_index: int
    title: str
    source_path: str
    sentences: Tuple[str, ...] = ()

    @property
    def narratable(self) -> bool:
        return len(self.sentences) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "spine_index": self.spine_index,
            "title": self.title,
            "source_path": self.source_path,
            "sentences": list(self.sentences),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chapter":
        return cls(
            id=data["id"],
            book_id=data["book_id"],
            spine_index=int(data["spine_index"]),
            title=data.get("title", ""),
            source_path=data.get("source_path", ""),
            sentences=tuple(data.get("sentences", ())),
        )


@dataclass
class PlaybackPosition:
    book_id: str
    chapter_index: int
    sentence_index: int
    updated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "book_id": self.book_id,
            "chapter_index": self.chapter_index,
            "sentence_index": self.sentence_index,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlaybackPosition":
        return cls(
            book_id=data["book_id"],
            chapter_index=int(data.get("chapter_index", 0)),
            sentence_index=int(data.get("sentence_index", 0)),
            updated_at=float(data.get("updated_at", 0.0)),
        )


@dataclass(frozen=True)
class RenderState:
    state: str
    chapter_index: int
    sentence_index: int
    total_chapters: int
    chapter_title: str
    current_sentence_text: str
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "chapter_index": self.chapter_index,
            "sentence_index": self.sentence_index,
            "total_chapters": self.total_chapters,
            "chapter_title": self.chapter_title,
            "current_sentence_text": self.current_sentence_text,
            "message": self.message,
        }

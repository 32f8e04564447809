from typing import Dict, List, Mapping, Sequence

from .models import Chapter, NavEntry, SpineItem


def fallback_title(spine_position: int) -> str:
    return f"Chapter {spine_position}"


def build_title_map(nav_entries: Sequence[NavEntry]) -> Dict[str, str]:
    titles: Dict[str, str] = {}
    for entry in nav_entries:
        if entry.target_path and entry.title:
            titles.setdefault(entry.target_path, entry.title)
    return titles


def resolve_chapter_titles(
    spine: Sequence[SpineItem],
    nav_entries: Sequence[NavEntry],
) -> List[str]:
    titles = build_title_map(nav_entries)
    return [
        titles.get(item.path) or fallback_title(position)
        for position, item in enumerate(spine, start=1)
    ]


def assemble_chapters(
    book_id: str,
    spine: Sequence[SpineItem],
    nav_entries: Sequence[NavEntry],
    sentences_by_path: Mapping[str, Sequence[str]],
) -> List[Chapter]:
    """Build one Chapter per narratable spine item, in spine order."""
    titles = resolve_chapter_titles(spine, nav_entries)
    return [
        Chapter(
            id=f"{book_id}:{spine_index}",
            book_id=book_id,
            spine_index=spine_index,
            title=titles[spine_index],
            source_path=item.path,
            sentences=tuple(sentences_by_path.get(item.path, ())),
        )
        for spine_index, item in enumerate(spine)
    ]

"""Block-ordered text extraction from content documents.

The walker only relies on three node attributes: ``tag`` (``None`` for text
nodes), ``children`` and ``text``. ``TreeNode`` builds such trees directly
and ``SoupNode`` adapts a BeautifulSoup tree, so the extraction rules do not
depend on a particular parser.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Union

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag

from .chunking import clean_text
from .errors import ExtractionError

BLOCK_TAGS = frozenset(
    {
        "p",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "li",
        "blockquote",
        "div",
        "td",
        "th",
        "dt",
        "dd",
        "pre",
        "figcaption",
        "caption",
    }
)
SKIPPED_TAGS = frozenset({"script", "style", "head", "template", "noscript"})
SKIPPED_STRING_TYPES = (Comment, Declaration, Doctype, ProcessingInstruction)


@dataclass
class TreeNode:
    tag: Optional[str] = None
    children: List["TreeNode"] = field(default_factory=list)
    text: str = ""


class SoupNode:
    __slots__ = ("_element",)

    def __init__(self, element: Union[Tag, NavigableString]):
        self._element = element

    @property
    def tag(self) -> Optional[str]:
        if isinstance(self._element, Tag):
            return (self._element.name or "").lower()
        return None

    @property
    def text(self) -> str:
        if isinstance(self._element, Tag):
            return ""
        return str(self._element)

    @property
    def children(self) -> Iterator["SoupNode"]:
        if not isinstance(self._element, Tag):
            return
        for child in self._element.children:
            if isinstance(child, SKIPPED_STRING_TYPES):
                continue
            if isinstance(child, (Tag, NavigableString)):
                yield SoupNode(child)


def collect_blocks(root: Any) -> List[str]:
    """Walk ``root`` in document order and return one string per text block."""
    blocks: List[str] = []
    buffer: List[str] = []

    def flush() -> None:
        text = clean_text("".join(buffer))
        buffer.clear()
        if text:
            blocks.append(text)

    stack = [(root, False)]
    while stack:
        node, leaving = stack.pop()
        tag = node.tag

        if tag is None:
            buffer.append(node.text)
            continue
        if tag in SKIPPED_TAGS:
            continue

        is_block = tag in BLOCK_TAGS
        if leaving:
            if is_block:
                flush()
            continue

        if is_block:
            flush()
        if tag == "br":
            buffer.append(" ")

        stack.append((node, True))
        stack.extend((child, False) for child in reversed(list(node.children)))

    flush()
    return blocks


def extract_paragraphs(markup: Union[bytes, str], path: str = "<document>") -> List[str]:
    """Return the clean paragraph strings of one content document."""
    try:
        soup = BeautifulSoup(markup, "html.parser")
    except Exception as exc:
        raise ExtractionError(path, str(exc)) from exc

    body = soup.body or soup
    return collect_blocks(SoupNode(body))

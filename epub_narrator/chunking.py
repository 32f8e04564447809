import re
from typing import List

CLAUSE_BREAK_CHARS = ",;:"


def clean_text(text: str) -> str:
    text = re.sub(r"\s+", " ", text).strip()
    return text


def clean_text_with_paragraphs(text: str) -> List[str]:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    paragraphs = []

    for raw_paragraph in re.split(r"\n\s*\n+", text):
        paragraph = clean_text(raw_paragraph)
        if paragraph:
            paragraphs.append(paragraph)

    return paragraphs


def split_for_narration(sentence: str, max_chars: int) -> List[str]:
    """Split one sentence into request-sized pieces narrated back-to-back.

    Pieces break after clause punctuation where possible, then at the last
    space, and only cut inside a word when a single word exceeds the limit.
    """
    sentence = clean_text(sentence)
    if max_chars <= 0 or len(sentence) <= max_chars:
        return [sentence] if sentence else []

    pieces: List[str] = []
    remaining = sentence
    while len(remaining) > max_chars:
        window = remaining[: max_chars + 1]
        split_at = max(window.rfind(f"{char} ") for char in CLAUSE_BREAK_CHARS)
        if split_at > max_chars // 2:
            split_at += 1
        else:
            split_at = window.rfind(" ")
        if split_at <= 0:
            split_at = max_chars

        piece = remaining[:split_at].strip()
        if piece:
            pieces.append(piece)
        remaining = remaining[split_at:].strip()

    if remaining:
        pieces.append(remaining)
    return pieces

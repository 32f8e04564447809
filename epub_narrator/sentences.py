from typing import Iterable, List, Union

from .chunking import clean_text, clean_text_with_paragraphs

TERMINATORS = ".?!"
CLOSING_CHARS = "\"')]}’”»"

ABBREVIATIONS = frozenset(
    {
        "mr",
        "mrs",
        "ms",
        "dr",
        "st",
        "vs",
        "etc",
        "e.g",
        "i.e",
        "jr",
        "sr",
        "prof",
        "mt",
        "fig",
        "vol",
        "cf",
        "approx",
        "capt",
        "col",
        "gen",
        "lt",
        "sgt",
        "rev",
        "hon",
    }
)


def _is_decimal_point(text: str, index: int) -> bool:
    return (
        text[index] == "."
        and 0 < index < len(text) - 1
        and text[index - 1].isdigit()
        and text[index + 1].isdigit()
    )


def _preceding_token(text: str, index: int) -> str:
    start = index
    while start > 0 and (text[start - 1].isalpha() or text[start - 1] == "."):
        start -= 1
    return text[start:index]


def _is_abbreviation(token: str) -> bool:
    if not token:
        return False
    if token.lower() in ABBREVIATIONS:
        return True
    # Initials: "A", "U.S", "J.R.R". A lone "I" is the pronoun.
    if token == "I":
        return False
    parts = token.split(".")
    return all(len(part) == 1 and part.isalpha() for part in parts) and token[0].isupper()


def split_sentences(paragraph: str) -> List[str]:
    """Split a single paragraph into sentences."""
    text = clean_text(paragraph)
    sentences: List[str] = []
    start = 0
    index = 0
    length = len(text)

    while index < length:
        char = text[index]
        if char not in TERMINATORS:
            index += 1
            continue

        if _is_decimal_point(text, index):
            index += 1
            continue

        run_end = index
        while run_end + 1 < length and text[run_end + 1] in TERMINATORS:
            run_end += 1

        boundary = run_end + 1
        while boundary < length and text[boundary] in CLOSING_CHARS:
            boundary += 1

        if boundary < length and not text[boundary].isspace():
            index = boundary
            continue

        if run_end == index and char == "." and _is_abbreviation(_preceding_token(text, index)):
            index = boundary
            continue

        sentence = text[start:boundary].strip()
        if sentence:
            sentences.append(sentence)
        start = boundary
        index = boundary

    tail = text[start:].strip()
    if tail:
        sentences.append(tail)
    return sentences


def tokenize(paragraphs: Union[str, Iterable[str]]) -> List[str]:
    """Split paragraphs into an ordered list of non-empty sentences.

    A plain string is treated as text whose blank lines separate paragraphs.
    Paragraph boundaries always end a sentence.
    """
    if isinstance(paragraphs, str):
        paragraphs = clean_text_with_paragraphs(paragraphs)

    sentences: List[str] = []
    for paragraph in paragraphs:
        sentences.extend(split_sentences(paragraph))
    return sentences

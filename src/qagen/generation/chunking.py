"""Boundary-aware splitting of free text into bounded chunks."""

from __future__ import annotations

from functools import lru_cache

from langchain_text_splitters import RecursiveCharacterTextSplitter

# Coarsest boundary first; "" lets the splitter cut inside a word as a last resort.
CHUNK_SEPARATORS = [
    "\n\n",
    "\n",
    "。",
    "！",
    "？",
    "；",
    ".",
    "!",
    "?",
    ";",
    " ",
    "",
]


@lru_cache(maxsize=8)
def _text_splitter(max_len: int) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        separators=CHUNK_SEPARATORS,
        chunk_size=max_len,
        chunk_overlap=0,
        length_function=len,
        keep_separator="end",
        is_separator_regex=False,
    )


def split_text_to_chunks(text: str, *, max_len: int) -> list[str]:
    """Split text into non-empty chunks of at most ``max_len`` characters.

    Paragraph breaks are tried first, then line breaks, sentence terminators
    (Latin and CJK), spaces, and finally single characters. Terminators stay
    at the end of the sentence they close.
    """

    if max_len <= 0:
        raise ValueError(f"max_len must be a positive integer, got {max_len}.")
    if not text.strip():
        return []
    return [chunk for chunk in _text_splitter(max_len).split_text(text) if chunk.strip()]

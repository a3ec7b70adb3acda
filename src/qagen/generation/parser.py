"""Extraction of question/answer pairs from free-form model output."""

from __future__ import annotations

import re
from collections.abc import Iterator
from enum import Enum

from qagen.generation.chunking import split_text_to_chunks
from qagen.generation.models import QAPair

FALLBACK_CHUNK_MAX_LEN = 500

_MARKER = re.compile(r"\b([QA])\d+:")
_ANSWER_LINE_BREAK = re.compile(r"\n\s*")


class _ScanState(Enum):
    SEEK_QUESTION = "seek_question"
    IN_QUESTION = "in_question"
    IN_ANSWER = "in_answer"


def parse_qa_response(text: str, *, max_chunk_len: int = FALLBACK_CHUNK_MAX_LEN) -> list[QAPair]:
    """Turn model output into ordered QA pairs.

    Well-formed output (``Q1: ... A1: ...`` blocks) yields one pair per block,
    question and answer merged into ``question`` with an empty ``answer``.
    Output with no usable block falls back to fixed-size chunks of the whole
    text, so a job never ends with nothing to index unless the text is empty.
    """

    normalized = text.replace("\\n", "\n")
    pairs = list(_iter_marked_pairs(normalized))
    if pairs:
        return pairs
    return [
        QAPair(question=chunk, answer="")
        for chunk in split_text_to_chunks(normalized, max_len=max_chunk_len)
    ]


def _iter_marked_pairs(text: str) -> Iterator[QAPair]:
    # A markers outside a question belong to the surrounding answer text.
    state = _ScanState.SEEK_QUESTION
    question_start = 0
    answer_start = 0
    question = ""
    for marker in _MARKER.finditer(text):
        if marker.group(1) == "Q":
            if state is _ScanState.IN_ANSWER:
                pair = _build_pair(question, text[answer_start : marker.start()])
                if pair is not None:
                    yield pair
            state = _ScanState.IN_QUESTION
            question_start = marker.end()
        elif state is _ScanState.IN_QUESTION:
            question = text[question_start : marker.start()]
            state = _ScanState.IN_ANSWER
            answer_start = marker.end()

    if state is _ScanState.IN_ANSWER:
        pair = _build_pair(question, text[answer_start:])
        if pair is not None:
            yield pair


def _build_pair(raw_question: str, raw_answer: str) -> QAPair | None:
    question = " ".join(raw_question.split())
    answer = _ANSWER_LINE_BREAK.sub("\n", raw_answer.strip())
    if not question or not answer:
        return None
    return QAPair(question=f"{question}\n{answer}", answer="")

# docvector/memory/chunker.py

import logging
import re
from typing import List, Tuple

from docvector.config import (
    CHUNK_SIZE,
    CHUNK_OVERLAP,
)
from docvector.errors import InvalidArgument
from docvector.memory.types import TextChunk

logger = logging.getLogger(__name__)

SENTENCE_DELIMITER = " "

_SENTENCE_PATTERN = re.compile(r"([^.!?]+)([.!?]*)")


def split_sentences(text: str) -> List[Tuple[str, int, int]]:
    """
    Split text on runs of sentence terminators (. ! ?).

    Each sentence keeps its own terminator run so that a chunk made of
    whole sentences reads exactly like the source text. Returns
    (sentence, start, end) triples with offsets into `text`. Units that are
    empty after trimming are dropped.
    """

    sentences = []

    for match in _SENTENCE_PATTERN.finditer(text):

        raw, terminators = match.group(1), match.group(2)
        body = raw.strip()

        if not body:
            continue

        start = match.start(1) + (len(raw) - len(raw.lstrip()))

        sentences.append((body + terminators, start, match.end()))

    return sentences


def chunk_text(
    text: str,
    size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> List[TextChunk]:
    """
    Sentence-aligned chunker with character overlap.

    Architecture contract:
    loader → chunker → embedder → vector_store

    Sentences are appended greedily, joined with a space. When the next
    sentence does not fit and the buffer is non-empty, the buffer is closed
    as a chunk and the next buffer starts with the last `overlap` characters
    of that chunk followed by the sentence that did not fit.

    Guarantees:
    • deterministic chunk generation
    • no empty chunks, sequential indexes
    • no sentence is ever cut, so a chunk may exceed `size` by at most
      the length of one sentence
    """

    # ============================================================
    # SAFETY CHECKS
    # ============================================================

    if size <= 0:
        raise InvalidArgument(f"Invalid chunk size: {size}")

    if overlap < 0:
        raise InvalidArgument(f"Invalid chunk overlap: {overlap}")

    if overlap >= size:
        raise InvalidArgument(
            f"Overlap must be smaller than chunk size "
            f"(overlap={overlap}, size={size})"
        )

    if not text or not text.strip():
        logger.warning("Chunking skipped: empty text")
        return []

    sentences = split_sentences(text)

    if not sentences:
        logger.warning("Chunking skipped: no sentences found")
        return []

    # ============================================================
    # CHUNK GENERATION LOOP
    # ============================================================

    chunks: List[TextChunk] = []

    buffer = ""
    span_start = 0
    span_end = 0

    def close(body: str, start: int, end: int):
        chunks.append(
            TextChunk(
                index=len(chunks),
                text=body.strip(),
                source_span=(start, end),
            )
        )

    for sentence, start, end in sentences:

        needed = len(buffer) + len(SENTENCE_DELIMITER) + len(sentence)

        if buffer and needed > size:

            closed = buffer.strip()

            close(closed, span_start, span_end)

            carried = closed[-overlap:].strip() if overlap else ""

            if carried:
                buffer = f"{carried} {sentence}"
                span_start = max(span_end - len(carried), 0)
            else:
                buffer = sentence
                span_start = start

        elif buffer:

            buffer = f"{buffer}{SENTENCE_DELIMITER}{sentence}"

        else:

            buffer = sentence
            span_start = start

        span_end = end

    if buffer.strip():
        close(buffer, span_start, span_end)

    # ============================================================
    # OBSERVABILITY
    # ============================================================

    logger.info(
        "Chunking completed",
        extra={
            "total_sentences": len(sentences),
            "chunk_size": size,
            "overlap": overlap,
            "chunks_created": len(chunks),
        },
    )

    return chunks

from __future__ import annotations

from typing import List, Sequence

from docqa_shared import RetrievedChunk

DEFAULT_TERM_BOOST = 0.02
DEFAULT_FIRST_CHUNK_BOOST = 0.01
DEFAULT_MIN_TERM_LENGTH = 2


def query_terms(query: str, min_length: int = DEFAULT_MIN_TERM_LENGTH) -> List[str]:
    return [term for term in query.lower().split() if len(term) > min_length]


def rerank(
    chunks: Sequence[RetrievedChunk],
    query: str,
    *,
    term_boost: float = DEFAULT_TERM_BOOST,
    first_chunk_boost: float = DEFAULT_FIRST_CHUNK_BOOST,
    min_term_length: int = DEFAULT_MIN_TERM_LENGTH,
) -> List[RetrievedChunk]:
    """Boost chunks that share query terms or open their document, then sort.

    Returns new chunk objects; only ``confidence`` differs from the input.
    The sort is stable, so equal confidences keep their retrieval order.
    """

    terms = query_terms(query, min_term_length)
    boosted: List[RetrievedChunk] = []
    for chunk in chunks:
        content = chunk.content.lower()
        confidence = chunk.confidence
        confidence += term_boost * sum(1 for term in terms if term in content)
        if chunk.position_index == 0:
            confidence += first_chunk_boost
        # model_copy skips validation, so the derived confidence is not recomputed
        boosted.append(chunk.model_copy(update={"confidence": min(1.0, confidence)}))

    return sorted(boosted, key=lambda chunk: chunk.confidence, reverse=True)

"""Citation numbering, prompt formatting and post-generation validation.

Generators may reference passages in either of two forms, which share one
numbering scheme:

* verbose: ``[Citation 3]`` (case-insensitive, optional space)
* bracketed: ``[3]``

Numbers are assigned once per query by :func:`build_context` and are never
reused across requests.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Literal, NamedTuple, Sequence

from pydantic import BaseModel, Field

from docqa_shared import Citation, RetrievedChunk

PASSAGE_DIVIDER = "\n\n---\n\n"

_CITATION_PATTERN = re.compile(r"\[Citation\s*(\d+)\]|\[(\d+)\]", re.IGNORECASE)


class CitationMarker(NamedTuple):
    number: int
    form: Literal["verbose", "bracketed"]


@dataclass(frozen=True)
class CitationContext:
    chunks: List[RetrievedChunk]
    number_by_chunk_id: Dict[str, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.chunks)

    def chunk_for(self, number: int) -> RetrievedChunk:
        return self.chunks[number - 1]

    def is_valid_number(self, number: int) -> bool:
        return 1 <= number <= len(self.chunks)


class ParsedCitations(BaseModel):
    citations: List[Citation] = Field(default_factory=list)
    used_chunk_ids: List[str] = Field(default_factory=list)
    invalid_numbers: List[int] = Field(default_factory=list)


class CitationValidation(BaseModel):
    is_valid: bool
    has_citations: bool
    invalid_citations: List[int] = Field(default_factory=list)
    unused_chunks: List[int] = Field(default_factory=list)


def build_context(chunks: Sequence[RetrievedChunk]) -> CitationContext:
    ordered = list(chunks)
    numbers = {chunk.id: index for index, chunk in enumerate(ordered, start=1)}
    return CitationContext(chunks=ordered, number_by_chunk_id=numbers)


def format_for_prompt(context: CitationContext) -> str:
    return PASSAGE_DIVIDER.join(
        f"[{number}] (Source: {chunk.document_title})\n{chunk.content}"
        for number, chunk in enumerate(context.chunks, start=1)
    )


def iter_markers(text: str) -> Iterator[CitationMarker]:
    for match in _CITATION_PATTERN.finditer(text or ""):
        verbose, bracketed = match.groups()
        if verbose is not None:
            yield CitationMarker(int(verbose), "verbose")
        else:
            yield CitationMarker(int(bracketed), "bracketed")


def parse_citations(text: str, context: CitationContext) -> ParsedCitations:
    """Resolve the markers in ``text`` to citations, sorted by number.

    Out-of-range numbers are reported in ``invalid_numbers`` in order of first
    appearance; repeated references collapse to a single citation.
    """

    used: set[int] = set()
    invalid: List[int] = []
    for marker in iter_markers(text):
        if context.is_valid_number(marker.number):
            used.add(marker.number)
        elif marker.number not in invalid:
            invalid.append(marker.number)

    citations: List[Citation] = []
    used_chunk_ids: List[str] = []
    for number in sorted(used):
        chunk = context.chunk_for(number)
        citations.append(
            Citation(
                number=number,
                document_id=chunk.document_id,
                document_title=chunk.document_title,
                chunk_content=chunk.content,
                chunk_position_index=chunk.position_index,
                confidence=chunk.confidence,
                source=chunk.document_source,
            )
        )
        used_chunk_ids.append(chunk.id)

    return ParsedCitations(citations=citations, used_chunk_ids=used_chunk_ids, invalid_numbers=invalid)


def validate_citations(text: str, context: CitationContext) -> CitationValidation:
    # unused chunks are reported but do not make the answer invalid
    parsed = parse_citations(text, context)
    cited = {citation.number for citation in parsed.citations}
    unused = [number for number in range(1, len(context) + 1) if number not in cited]
    return CitationValidation(
        is_valid=not parsed.invalid_numbers,
        has_citations=bool(cited),
        invalid_citations=parsed.invalid_numbers,
        unused_chunks=unused,
    )


def calculate_overall_confidence(citations: Sequence[Citation]) -> float:
    if not citations:
        return 0.0
    return sum(citation.confidence for citation in citations) / len(citations)


def format_sources_section(citations: Sequence[Citation]) -> str:
    """Markdown list of the cited documents, in order of first citation."""

    if not citations:
        return ""

    documents: Dict[str, Citation] = {}
    for citation in citations:
        documents.setdefault(citation.document_id, citation)

    lines = ["**Sources:**"]
    for index, citation in enumerate(documents.values(), start=1):
        suffix = f" ({citation.source})" if citation.source else ""
        lines.append(f"{index}. {citation.document_title}{suffix}")
    return "\n".join(lines)

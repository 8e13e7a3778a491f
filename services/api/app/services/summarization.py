from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from docqa_shared import RetrievedChunk, Settings

from ..errors import GenerationError
from .generation import ChatMessage, TextGenerator

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY_LENGTH = 500

BROAD_QUESTION_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"summarize",
        r"overview",
        r"what.*overall",
        r"tell me about",
        r"explain.*company",
        r"how.*perform",
        r"financial.*performance",
        r"key.*point",
        r"main.*takeaway",
        r"high.*level",
        r"in general",
        r"compare",
        r"trend",
        r"across.*year",
        r"year.*over.*year",
    )
]

SUMMARY_SYSTEM_PROMPT = (
    "You are a document summarizer. Create a concise summary of the document content that is "
    "relevant to the user's question. Focus on key facts, figures, and conclusions. "
    "Be factual and objective."
)


class DocumentSummary(BaseModel):
    document_id: str
    document_title: str
    summary: str
    chunk_count: int
    confidence: float
    source: Optional[str] = None


class SummarizationResult(BaseModel):
    summaries: List[DocumentSummary] = Field(default_factory=list)
    tokens_used: int = 0


def is_broad_question(query: str) -> bool:
    return any(pattern.search(query) for pattern in BROAD_QUESTION_PATTERNS)


def group_chunks_by_document(chunks: Sequence[RetrievedChunk]) -> Dict[str, List[RetrievedChunk]]:
    grouped: Dict[str, List[RetrievedChunk]] = {}
    for chunk in chunks:
        grouped.setdefault(chunk.document_id, []).append(chunk)
    return {
        document_id: sorted(items, key=lambda chunk: chunk.position_index)
        for document_id, items in grouped.items()
    }


def build_summary_context(summaries: Sequence[DocumentSummary]) -> str:
    return "\n\n---\n\n".join(
        f"[Document {index}: {summary.document_title}]\n"
        f"Summary: {summary.summary}\n"
        f"(Based on {summary.chunk_count} sections, confidence: {round(summary.confidence * 100)}%)"
        for index, summary in enumerate(summaries, start=1)
    )


class DocumentSummarizer:
    """Per-document summaries for broad questions, at most ``max_concurrent`` in flight."""

    def __init__(
        self,
        generator: TextGenerator,
        *,
        max_concurrent: int = 3,
        max_tokens: int = 300,
        temperature: float = 0.3,
    ) -> None:
        self.generator = generator
        self.max_concurrent = max(1, max_concurrent)
        self.max_tokens = max_tokens
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings: Settings, generator: TextGenerator) -> "DocumentSummarizer":
        return cls(
            generator,
            max_concurrent=settings.summary_max_concurrent,
            max_tokens=settings.summary_max_tokens,
            temperature=settings.summary_temperature,
        )

    async def summarize(self, chunks: Sequence[RetrievedChunk], query: str) -> SummarizationResult:
        if not chunks:
            return SummarizationResult()

        grouped = group_chunks_by_document(chunks)
        logger.info(
            "Starting document summarization",
            extra={
                "event": "summarization_start",
                "documents": len(grouped),
                "chunks": len(chunks),
                "max_concurrent": self.max_concurrent,
            },
        )

        # created per call so concurrent requests do not share a limit
        limiter = asyncio.Semaphore(self.max_concurrent)

        async def _limited(document_chunks: List[RetrievedChunk]):
            async with limiter:
                return await self._summarize_document(document_chunks, query)

        results = await asyncio.gather(*(_limited(items) for items in grouped.values()))

        summaries = [summary for summary, _ in results]
        summaries.sort(key=lambda summary: summary.confidence, reverse=True)
        tokens = sum(tokens for _, tokens in results)
        logger.info(
            "Document summarization completed",
            extra={"event": "summarization_complete", "documents": len(summaries), "tokens": tokens},
        )
        return SummarizationResult(summaries=summaries, tokens_used=tokens)

    async def _summarize_document(self, chunks: List[RetrievedChunk], query: str) -> tuple[DocumentSummary, int]:
        first = chunks[0]
        combined = "\n\n".join(f"[Section {index}]\n{chunk.content}" for index, chunk in enumerate(chunks, start=1))
        user_prompt = (
            f"Question: {query}\n\n"
            f"Document: {first.document_title}\n\n"
            f"Content:\n{combined}\n\n"
            "Provide a concise summary (2-4 sentences) of the relevant information from this document "
            "that helps answer the question. Focus on specific facts, numbers, and key points."
        )

        try:
            completion = await self.generator.complete(
                [ChatMessage(role="system", content=SUMMARY_SYSTEM_PROMPT), ChatMessage(role="user", content=user_prompt)],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
            text, tokens = completion.text, completion.total_tokens
        except GenerationError as exc:
            logger.error(
                "Failed to summarize document",
                extra={"event": "summarization_error", "document": first.document_title, "error": str(exc)},
            )
            text, tokens = first.content[:FALLBACK_SUMMARY_LENGTH], 0

        summary = DocumentSummary(
            document_id=first.document_id,
            document_title=first.document_title,
            summary=text or "Unable to summarize document.",
            chunk_count=len(chunks),
            confidence=max(chunk.confidence for chunk in chunks),
            source=first.document_source,
        )
        return summary, tokens

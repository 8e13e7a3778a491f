"""Query rewriting for the two retrieval modalities.

The vector query can be replaced by a hypothetical answer passage (HyDE) and
the keyword query by an extracted keyword list. Any failure falls back to the
original question so expansion never fails retrieval.
"""
from __future__ import annotations

import logging
import re

from docqa_shared import Settings

from ..errors import GenerationError
from .generation import ChatMessage, TextGenerator

logger = logging.getLogger(__name__)

HYDE_MAX_TOKENS = 150
HYDE_TEMPERATURE = 0.3
KEYWORD_MAX_TOKENS = 50
KEYWORD_TEMPERATURE = 0.2

HYDE_SYSTEM_PROMPT = """You generate hypothetical document excerpts.
Given a question, write a short passage (2-3 sentences) that would answer it.
Write in a factual, document-like style as if taken from a report or policy.
Do NOT include phrases like "According to" or "The document states".
Write the content directly as if it came from the source document."""

KEYWORD_SYSTEM_PROMPT = """You extract search keywords for a document search system.
Given a user question, return the keywords most likely to appear in matching documents.

Rules:
1. Extract key nouns, entities and domain-specific terms
2. Include common synonyms (e.g. "revenue" also "sales", "income")
3. Remove filler words like "summarize", "explain", "tell me about", "what is"
4. Return 5-15 keywords at most
5. Return ONLY space-separated keywords, no punctuation or explanations"""

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def extract_basic_keywords(query: str) -> str:
    words = _NON_WORD.sub("", query.lower()).split()
    return " ".join(word for word in words if len(word) > 2)


class QueryExpander:
    def __init__(
        self,
        generator: TextGenerator,
        *,
        hyde_enabled: bool = True,
        keyword_extraction_enabled: bool = True,
    ) -> None:
        self.generator = generator
        self.hyde_enabled = hyde_enabled
        self.keyword_extraction_enabled = keyword_extraction_enabled

    @classmethod
    def from_settings(cls, settings: Settings, generator: TextGenerator) -> "QueryExpander":
        return cls(
            generator,
            hyde_enabled=settings.hyde_enabled,
            keyword_extraction_enabled=settings.keyword_extraction_enabled,
        )

    async def hypothetical_document(self, query: str) -> str:
        if not self.hyde_enabled:
            return query
        try:
            completion = await self.generator.complete(
                [ChatMessage(role="system", content=HYDE_SYSTEM_PROMPT), ChatMessage(role="user", content=query)],
                max_tokens=HYDE_MAX_TOKENS,
                temperature=HYDE_TEMPERATURE,
            )
        except GenerationError as exc:
            logger.warning(
                "Failed to generate hypothetical document, using original query",
                extra={"event": "hyde_error", "error": str(exc)},
            )
            return query

        hypothetical = completion.text.strip()
        if not hypothetical:
            return query
        logger.debug(
            "Generated hypothetical document",
            extra={"event": "hyde_generated", "query_length": len(query), "hyde_length": len(hypothetical)},
        )
        return hypothetical

    async def search_keywords(self, query: str) -> str:
        if not self.keyword_extraction_enabled:
            return query
        try:
            completion = await self.generator.complete(
                [ChatMessage(role="system", content=KEYWORD_SYSTEM_PROMPT), ChatMessage(role="user", content=query)],
                max_tokens=KEYWORD_MAX_TOKENS,
                temperature=KEYWORD_TEMPERATURE,
            )
        except GenerationError as exc:
            logger.warning(
                "Failed to extract keywords, using basic extraction",
                extra={"event": "keyword_extraction_error", "error": str(exc)},
            )
            return extract_basic_keywords(query)

        cleaned = _WHITESPACE.sub(" ", _NON_WORD.sub("", completion.text.lower())).strip()
        if not cleaned:
            return extract_basic_keywords(query)
        logger.debug("Extracted search keywords", extra={"event": "keywords_extracted", "keywords": cleaned})
        return cleaned

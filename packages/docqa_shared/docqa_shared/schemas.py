"""Shared Pydantic schemas."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .scoring import confidence_score


class RAGConfig(BaseModel):
    """Per-tenant retrieval settings, fixed for the duration of a request."""

    model_config = ConfigDict(frozen=True)

    top_k: int = Field(25, ge=1)
    confidence_threshold: float = Field(0.25, ge=0.0, le=1.0)
    chunk_size: int = Field(500, ge=1)
    chunk_overlap: int = Field(50, ge=0)


class RetrievedChunk(BaseModel):
    """A passage candidate produced for a single query.

    ``confidence`` is recomputed from ``raw_score`` on construction; only the
    reranker adjusts it afterwards.
    """

    id: str
    content: str
    position_index: int = Field(0, ge=0)
    raw_score: float
    confidence: float = 0.0
    document_id: str
    document_title: str
    document_source: Optional[str] = None
    vector_rank: Optional[int] = None
    keyword_rank: Optional[int] = None
    rrf_score: float = 0.0

    @model_validator(mode="after")
    def _derive_confidence(self) -> "RetrievedChunk":
        self.confidence = confidence_score(self.raw_score)
        return self


class Citation(BaseModel):
    """A validated reference from a generated answer back to a chunk."""

    number: int = Field(..., ge=1)
    document_id: str
    document_title: str
    chunk_content: str
    chunk_position_index: int = 0
    confidence: float
    source: Optional[str] = None


class TokenUsage(BaseModel):
    embedding: int = 0
    completion: int = 0


class ResponseTiming(BaseModel):
    retrieval_ms: int = 0
    generation_ms: int = 0


class RAGResponse(BaseModel):
    """A complete question/answer cycle."""

    answer: str
    citations: List[Citation] = Field(default_factory=list)
    confidence: float = 0.0
    retrieved_chunk_count: int = 0
    tokens_used: TokenUsage = Field(default_factory=TokenUsage)
    timing: ResponseTiming = Field(default_factory=ResponseTiming)


class CachedResponse(RAGResponse):
    """A :class:`RAGResponse` as persisted in the response cache."""

    cached_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    cache_schema_version: str
    original_query: str

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from docqa_shared import Citation, ResponseTiming, TokenUsage, confidence_label
from docqa_shared.scoring import ConfidenceLabel

from .services.citations import CitationValidation
from .services.pipeline import PipelineResult

SNIPPET_LENGTH = 200
# ":" separates the tenant from the hash in cache keys
TENANT_ID_PATTERN = r"^[^:]+$"


class QuestionRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000, description="Natural-language question")
    tenant_id: str = Field(
        ..., min_length=1, max_length=255, pattern=TENANT_ID_PATTERN, description="Tenant whose documents are searched"
    )
    session_id: Optional[str] = Field(None, max_length=255, description="Client session for the interaction log")
    document_ids: Optional[List[str]] = Field(None, description="Restrict retrieval to these documents")
    stream: bool = Field(False, description="Stream the answer as server-sent events")


class CitationOut(BaseModel):
    number: int
    document_id: str
    document_title: str
    snippet: str
    confidence: float
    confidence_label: ConfidenceLabel
    source: Optional[str] = None


class AnswerResponse(BaseModel):
    answer: str
    citations: List[CitationOut]
    confidence: float
    confidence_label: ConfidenceLabel
    retrieved_chunks: int
    tokens_used: TokenUsage
    timing: ResponseTiming
    cached: bool = False
    validation: Optional[CitationValidation] = None
    answered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CacheInvalidationResponse(BaseModel):
    tenant_id: str
    deleted: int


def citation_out(citation: Citation, *, high: float, medium: float) -> CitationOut:
    return CitationOut(
        number=citation.number,
        document_id=citation.document_id,
        document_title=citation.document_title,
        snippet=citation.chunk_content[:SNIPPET_LENGTH],
        confidence=citation.confidence,
        confidence_label=confidence_label(citation.confidence, high=high, medium=medium),
        source=citation.source,
    )


def answer_response(result: PipelineResult, *, high: float, medium: float) -> AnswerResponse:
    return AnswerResponse(
        answer=result.answer,
        citations=[citation_out(citation, high=high, medium=medium) for citation in result.citations],
        confidence=result.confidence,
        confidence_label=confidence_label(result.confidence, high=high, medium=medium),
        retrieved_chunks=result.retrieved_chunk_count,
        tokens_used=result.tokens_used,
        timing=result.timing,
        cached=result.cached,
        validation=result.validation,
    )

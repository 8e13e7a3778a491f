"""Question answering over a tenant's documents.

Per request the pipeline runs, in order: conversational check, cache lookup,
retrieval, rerank, citation context, generation, citation parsing, overall
confidence, interaction log (fire-and-forget) and cache write. Only answers
whose citations are present and all valid are cached. Greetings,
cache hits and empty retrievals short-circuit but are still logged. Only
embedding, retrieval-store and generation failures fail a request.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel

from docqa_shared import Citation, RAGResponse, ResponseTiming, RetrievedChunk, Settings, TokenUsage

from ..errors import PipelineError
from .cache import ResponseCache
from .citations import (
    CitationContext,
    CitationValidation,
    build_context,
    calculate_overall_confidence,
    parse_citations,
    validate_citations,
)
from .conversational import conversational_response, detect_conversational
from .generation import ChatMessage, TextGenerator, build_messages
from .persistence import InteractionLogger, InteractionRecord, summarize_citations
from .reranker import rerank
from .retrieval import HybridRetriever
from .sanitize import should_block_input
from .summarization import DocumentSummarizer, build_summary_context, is_broad_question
from .tenants import TenantConfigProvider

logger = logging.getLogger(__name__)

NO_CONTEXT_ANSWER = (
    "I couldn't find relevant information in the available documents to answer this question. "
    "Could you try rephrasing it or asking about a different topic?"
)


class QARequest(BaseModel):
    question: str
    tenant_id: str
    session_id: Optional[str] = None
    document_ids: Optional[List[str]] = None


class PipelineResult(RAGResponse):
    cached: bool = False
    conversational: bool = False
    validation: Optional[CitationValidation] = None


class PipelineEvent(BaseModel):
    type: Literal["start", "chunk", "citations", "complete", "error"]
    text: Optional[str] = None
    citations: Optional[List[Citation]] = None
    result: Optional[PipelineResult] = None
    code: Optional[str] = None
    message: Optional[str] = None


@dataclass
class _Prepared:
    """Everything the generation step needs once retrieval has succeeded."""

    context: CitationContext
    messages: List[ChatMessage]
    embedding_tokens: int
    summary_tokens: int = 0
    retrieval_ms: int = 0

    @property
    def chunks(self) -> List[RetrievedChunk]:
        return self.context.chunks


class QAPipeline:
    def __init__(
        self,
        *,
        retriever: HybridRetriever,
        generator: TextGenerator,
        cache: ResponseCache,
        interactions: InteractionLogger,
        tenant_configs: TenantConfigProvider,
        summarizer: Optional[DocumentSummarizer] = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        rerank_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.retriever = retriever
        self.generator = generator
        self.cache = cache
        self.interactions = interactions
        self.tenant_configs = tenant_configs
        self.summarizer = summarizer
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.rerank_options = rerank_options or {}

    @classmethod
    def from_settings(cls, settings: Settings, **collaborators: Any) -> "QAPipeline":
        return cls(
            max_tokens=settings.rag_max_tokens,
            temperature=settings.rag_temperature,
            rerank_options={
                "term_boost": settings.rerank_term_boost,
                "first_chunk_boost": settings.rerank_first_chunk_boost,
                "min_term_length": settings.rerank_min_term_length,
            },
            **collaborators,
        )

    async def query(self, request: QARequest) -> PipelineResult:
        started = time.perf_counter()
        question = request.question.strip()

        early = await self._short_circuit(request, question, started)
        if early is not None:
            return early

        prepared = await self._prepare(request, question)
        if not prepared.chunks:
            return self._no_context(request, question, prepared, started)

        generation_started = time.perf_counter()
        completion = await self.generator.complete(
            prepared.messages,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        generation_ms = _elapsed_ms(generation_started)

        return await self._finish(
            request,
            question,
            prepared,
            answer=completion.text,
            completion_tokens=completion.total_tokens,
            generation_ms=generation_ms,
            started=started,
        )

    async def stream(self, request: QARequest) -> AsyncIterator[PipelineEvent]:
        """Same flow as :meth:`query`, emitting answer text as it is generated.

        Citations are parsed once the generator signals the end of the stream.
        Failures are reported as a final ``error`` event after any partial text.
        """

        started = time.perf_counter()
        question = request.question.strip()
        yield PipelineEvent(type="start")

        try:
            early = await self._short_circuit(request, question, started)
            if early is None:
                prepared = await self._prepare(request, question)
                if not prepared.chunks:
                    early = self._no_context(request, question, prepared, started)

            if early is not None:
                yield PipelineEvent(type="chunk", text=early.answer)
                yield PipelineEvent(type="citations", citations=early.citations)
                yield PipelineEvent(type="complete", result=early)
                return

            generation_started = time.perf_counter()
            parts: List[str] = []
            completion_tokens = 0
            async for delta in self.generator.stream_complete(
                prepared.messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            ):
                if delta.text:
                    parts.append(delta.text)
                    yield PipelineEvent(type="chunk", text=delta.text)
                if delta.total_tokens is not None:
                    completion_tokens = delta.total_tokens

            result = await self._finish(
                request,
                question,
                prepared,
                answer="".join(parts),
                completion_tokens=completion_tokens,
                generation_ms=_elapsed_ms(generation_started),
                started=started,
            )
            yield PipelineEvent(type="citations", citations=result.citations)
            yield PipelineEvent(type="complete", result=result)
        except PipelineError as exc:
            logger.error(
                "streaming answer failed",
                extra={"event": "pipeline_error", "tenant": request.tenant_id, "code": exc.code},
            )
            yield PipelineEvent(type="error", code=exc.code, message=str(exc))
        except ValueError as exc:
            yield PipelineEvent(type="error", code="INVALID_INPUT", message=str(exc))

    async def _short_circuit(
        self, request: QARequest, question: str, started: float
    ) -> Optional[PipelineResult]:
        kind = detect_conversational(question)
        if kind is not None:
            result = PipelineResult(answer=conversational_response(kind), conversational=True)
            self._log(request, question, result, started=started, conversational=True)
            return result

        reason = should_block_input(question)
        if reason is not None:
            raise ValueError(reason)

        cached = await self.cache.get(request.tenant_id, question, request.document_ids)
        if cached is not None:
            fields = cached.model_dump(include=set(RAGResponse.model_fields))
            result = PipelineResult(**fields, cached=True)
            self._log(request, question, result, started=started, cache_hit=True)
            return result
        return None

    async def _prepare(self, request: QARequest, question: str) -> _Prepared:
        config = await self.tenant_configs.get_rag_config(request.tenant_id)

        retrieval_started = time.perf_counter()
        retrieval = await self.retriever.retrieve(
            question,
            tenant_id=request.tenant_id,
            config=config,
            document_ids=request.document_ids,
        )
        retrieval_ms = _elapsed_ms(retrieval_started)
        if not retrieval.chunks:
            return _Prepared(
                context=build_context([]),
                messages=[],
                embedding_tokens=retrieval.embedding_tokens,
                retrieval_ms=retrieval_ms,
            )

        ranked = rerank(retrieval.chunks, question, **self.rerank_options)
        context = build_context(ranked)

        overviews = ""
        summary_tokens = 0
        if self.summarizer is not None and is_broad_question(question):
            summarized = await self.summarizer.summarize(ranked, question)
            overviews = build_summary_context(summarized.summaries)
            summary_tokens = summarized.tokens_used

        return _Prepared(
            context=context,
            messages=build_messages(question, context, overviews),
            embedding_tokens=retrieval.embedding_tokens,
            summary_tokens=summary_tokens,
            retrieval_ms=retrieval_ms,
        )

    def _no_context(
        self, request: QARequest, question: str, prepared: _Prepared, started: float
    ) -> PipelineResult:
        result = PipelineResult(
            answer=NO_CONTEXT_ANSWER,
            confidence=0.0,
            tokens_used=TokenUsage(embedding=prepared.embedding_tokens),
            timing=ResponseTiming(retrieval_ms=prepared.retrieval_ms),
        )
        self._log(request, question, result, started=started)
        return result

    async def _finish(
        self,
        request: QARequest,
        question: str,
        prepared: _Prepared,
        *,
        answer: str,
        completion_tokens: int,
        generation_ms: int,
        started: float,
    ) -> PipelineResult:
        context = prepared.context
        parsed = parse_citations(answer, context)
        validation = validate_citations(answer, context)
        if not validation.is_valid:
            logger.warning(
                "answer cites passages that were not provided",
                extra={"tenant": request.tenant_id, "invalid": validation.invalid_citations},
            )

        result = PipelineResult(
            answer=answer,
            citations=parsed.citations,
            confidence=calculate_overall_confidence(parsed.citations),
            retrieved_chunk_count=len(prepared.chunks),
            tokens_used=TokenUsage(
                embedding=prepared.embedding_tokens,
                completion=completion_tokens + prepared.summary_tokens,
            ),
            timing=ResponseTiming(retrieval_ms=prepared.retrieval_ms, generation_ms=generation_ms),
            validation=validation,
        )

        self._log(request, question, result, started=started, chunks=prepared.chunks)
        if validation.is_valid and validation.has_citations:
            await self.cache.set(request.tenant_id, question, result, request.document_ids)
        return result

    def _log(
        self,
        request: QARequest,
        question: str,
        result: PipelineResult,
        *,
        started: float,
        chunks: Sequence[RetrievedChunk] = (),
        cache_hit: bool = False,
        conversational: bool = False,
    ) -> None:
        record = InteractionRecord(
            tenant_id=request.tenant_id,
            session_id=request.session_id,
            question=question,
            answer=result.answer,
            confidence=result.confidence,
            citations=summarize_citations(result.citations, chunks),
            retrieval_scores=[chunk.confidence for chunk in chunks],
            cache_hit=cache_hit,
            conversational=conversational,
            debug_info={
                "total_ms": _elapsed_ms(started),
                "retrieval_ms": result.timing.retrieval_ms,
                "generation_ms": result.timing.generation_ms,
                "chunks_retrieved": result.retrieved_chunk_count,
            },
        )
        self.interactions.record(record)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)

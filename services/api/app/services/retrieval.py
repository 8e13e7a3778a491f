from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from docqa_shared import RAGConfig, RetrievedChunk, Settings

from ..errors import EmbeddingError
from .embeddings import EmbeddingProvider
from .query_expansion import QueryExpander
from .search_store import SearchHit, SearchStore

logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60


class RetrievalResult(BaseModel):
    query: str
    chunks: List[RetrievedChunk] = Field(default_factory=list)
    embedding_tokens: int = 0


@dataclass
class FusedHit:
    """A chunk with its reciprocal-rank-fusion score across both modalities."""

    hit: SearchHit
    rrf_score: float
    vector_rank: Optional[int]
    keyword_rank: Optional[int]
    order: int

    def sort_key(self):
        return (
            -self.rrf_score,
            self.vector_rank if self.vector_rank is not None else math.inf,
            self.keyword_rank if self.keyword_rank is not None else math.inf,
            self.order,
        )


def reciprocal_rank_fusion(
    vector_hits: Sequence[SearchHit],
    keyword_hits: Sequence[SearchHit],
    k: int = DEFAULT_RRF_K,
) -> List[FusedHit]:
    """Fuse two ranked lists with RRF, best first.

    Ties fall back to vector rank, then keyword rank, then first appearance.
    """

    fused: Dict[str, FusedHit] = {}
    for hits, field_name in ((vector_hits, "vector_rank"), (keyword_hits, "keyword_rank")):
        for hit in hits:
            entry = fused.get(hit.chunk_id)
            if entry is None:
                entry = FusedHit(hit=hit, rrf_score=0.0, vector_rank=None, keyword_rank=None, order=len(fused))
                fused[hit.chunk_id] = entry
            if getattr(entry, field_name) is not None:
                # a list repeating a chunk only counts its best rank
                continue
            setattr(entry, field_name, hit.rank)
            entry.rrf_score += 1.0 / (k + hit.rank)

    return sorted(fused.values(), key=FusedHit.sort_key)


def normalize_scores(fused: Sequence[FusedHit]) -> List[float]:
    """Divide every fused score by the best one, so the top result is 1.0."""

    if not fused:
        return []
    best = max(item.rrf_score for item in fused)
    if best <= 0:
        return [0.0 for _ in fused]
    return [item.rrf_score / best for item in fused]


def select_diverse(
    candidates: Sequence[FusedHit],
    *,
    limit: int,
    max_per_document: int,
    min_documents: int,
) -> List[FusedHit]:
    """Pick up to ``limit`` candidates without letting one document dominate.

    The best chunk of each of the first ``min_documents`` distinct documents
    is always kept, then remaining slots are filled in rank order while no
    document exceeds ``max_per_document`` chunks. Output keeps rank order.

    Two-pass retrieval calls this on the wider ``first_pass_top_k`` pool from a
    single round trip per modality. The per-document limits are applied here
    on the client, and the store is not queried again per document.
    """

    if limit <= 0:
        return []

    selected: set[int] = set()
    per_document: Counter[str] = Counter()
    coverage = min(min_documents, limit)

    for index, candidate in enumerate(candidates):
        if len(per_document) >= coverage:
            break
        document_id = candidate.hit.document_id
        if document_id not in per_document:
            per_document[document_id] += 1
            selected.add(index)

    for index, candidate in enumerate(candidates):
        if len(selected) >= limit:
            break
        if index in selected:
            continue
        document_id = candidate.hit.document_id
        if per_document[document_id] >= max_per_document:
            continue
        per_document[document_id] += 1
        selected.add(index)

    return [candidates[index] for index in sorted(selected)]


class HybridRetriever:
    """Vector + keyword retrieval fused with reciprocal rank fusion."""

    def __init__(
        self,
        *,
        embedder: EmbeddingProvider,
        store: SearchStore,
        rrf_k: int = DEFAULT_RRF_K,
        candidate_pool_size: int = 50,
        two_pass: bool = False,
        first_pass_top_k: int = 50,
        max_chunks_per_document: int = 5,
        min_documents_to_include: int = 4,
        expander: Optional[QueryExpander] = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.rrf_k = rrf_k
        self.candidate_pool_size = candidate_pool_size
        self.two_pass = two_pass
        self.first_pass_top_k = first_pass_top_k
        self.max_chunks_per_document = max_chunks_per_document
        self.min_documents_to_include = min_documents_to_include
        self.expander = expander

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        embedder: EmbeddingProvider,
        store: SearchStore,
        expander: Optional[QueryExpander] = None,
    ) -> "HybridRetriever":
        return cls(
            embedder=embedder,
            store=store,
            rrf_k=settings.rrf_k,
            candidate_pool_size=settings.candidate_pool_size,
            two_pass=settings.two_pass_retrieval_enabled,
            first_pass_top_k=settings.first_pass_top_k,
            max_chunks_per_document=settings.max_chunks_per_document,
            min_documents_to_include=settings.min_documents_to_include,
            expander=expander,
        )

    async def retrieve(
        self,
        query: str,
        *,
        tenant_id: str,
        config: RAGConfig,
        document_ids: Optional[Sequence[str]] = None,
    ) -> RetrievalResult:
        if not query or not query.strip():
            raise EmbeddingError("Cannot retrieve for an empty query")

        vector_text, keyword_text = await self._expand(query)
        vector, embedding_tokens = await self.embedder.embed(vector_text)
        if not vector:
            raise EmbeddingError("embedding provider returned an empty vector")

        pool_size = self.first_pass_top_k if self.two_pass else max(self.candidate_pool_size, config.top_k)
        vector_hits, keyword_hits = await asyncio.gather(
            self.store.vector_search(
                tenant_id=tenant_id,
                vector=vector,
                limit=pool_size,
                document_ids=document_ids,
            ),
            self.store.keyword_search(
                tenant_id=tenant_id,
                query=keyword_text,
                limit=pool_size,
                document_ids=document_ids,
            ),
        )

        fused = reciprocal_rank_fusion(vector_hits, keyword_hits, k=self.rrf_k)
        normalized = normalize_scores(fused)
        scores: Dict[str, float] = {}
        survivors: List[FusedHit] = []
        for item, score in zip(fused, normalized):
            if score >= config.confidence_threshold:
                survivors.append(item)
                scores[item.hit.chunk_id] = score

        if self.two_pass:
            picked = select_diverse(
                survivors,
                limit=config.top_k,
                max_per_document=self.max_chunks_per_document,
                min_documents=self.min_documents_to_include,
            )
        else:
            picked = survivors[: config.top_k]

        chunks = [_to_chunk(item, scores[item.hit.chunk_id]) for item in picked]
        logger.info(
            "retrieval complete",
            extra={
                "event": "retrieval_complete",
                "tenant": tenant_id,
                "vector_hits": len(vector_hits),
                "keyword_hits": len(keyword_hits),
                "fused": len(fused),
                "above_threshold": len(survivors),
                "returned": len(chunks),
                "documents": len({chunk.document_id for chunk in chunks}),
                "two_pass": self.two_pass,
            },
        )
        return RetrievalResult(query=query, chunks=chunks, embedding_tokens=embedding_tokens)

    async def _expand(self, query: str) -> tuple[str, str]:
        if self.expander is None:
            return query, query
        hypothetical, keywords = await asyncio.gather(
            self.expander.hypothetical_document(query),
            self.expander.search_keywords(query),
        )
        return hypothetical or query, keywords or query


def _to_chunk(item: FusedHit, normalized_score: float) -> RetrievedChunk:
    hit = item.hit
    return RetrievedChunk(
        id=hit.chunk_id,
        content=hit.content,
        position_index=hit.position_index,
        raw_score=normalized_score,
        document_id=hit.document_id,
        document_title=hit.document_title,
        document_source=hit.document_source,
        vector_rank=item.vector_rank,
        keyword_rank=item.keyword_rank,
        rrf_score=item.rrf_score,
    )

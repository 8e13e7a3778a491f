from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests
import weaviate
from pydantic import BaseModel, ValidationError

from ..errors import RetrievalStoreError

logger = logging.getLogger(__name__)

READY_STATUS = "ready"
CHUNK_PROPERTIES = [
    "chunk_id",
    "content",
    "position_index",
    "document_id",
    "document_title",
    "document_source",
]


class SearchHit(BaseModel):
    """Typed row returned by either search modality."""

    chunk_id: str
    content: str
    position_index: int = 0
    score: float = 0.0
    rank: int
    document_id: str
    document_title: str
    document_source: Optional[str] = None


class SearchStore(Protocol):
    async def vector_search(
        self,
        *,
        tenant_id: str,
        vector: Sequence[float],
        limit: int,
        document_ids: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        ...

    async def keyword_search(
        self,
        *,
        tenant_id: str,
        query: str,
        limit: int,
        document_ids: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        ...


class WeaviateSearchStore:
    """Vector and BM25 search over the tenant chunk class in Weaviate."""

    def __init__(self, client: weaviate.Client, index_name: str) -> None:
        self.client = client
        self.index_name = index_name

    async def vector_search(
        self,
        *,
        tenant_id: str,
        vector: Sequence[float],
        limit: int,
        document_ids: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        def _query() -> Dict[str, Any]:
            return (
                self.client.query.get(self.index_name, CHUNK_PROPERTIES)
                .with_near_vector({"vector": list(vector)})
                .with_where(build_where_filter(tenant_id, document_ids))
                .with_limit(limit)
                .with_additional(["id", "distance"])
                .do()
            )

        rows = await self._run(_query, modality="vector")
        return [self._to_hit(row, rank, _vector_score(row)) for rank, row in enumerate(rows, start=1)]

    async def keyword_search(
        self,
        *,
        tenant_id: str,
        query: str,
        limit: int,
        document_ids: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        if not query.strip():
            return []

        def _query() -> Dict[str, Any]:
            return (
                self.client.query.get(self.index_name, CHUNK_PROPERTIES)
                .with_bm25(query=query, properties=["content"])
                .with_where(build_where_filter(tenant_id, document_ids))
                .with_limit(limit)
                .with_additional(["id", "score"])
                .do()
            )

        rows = await self._run(_query, modality="keyword")
        return [self._to_hit(row, rank, _keyword_score(row)) for rank, row in enumerate(rows, start=1)]

    async def _run(self, query_fn, *, modality: str) -> List[Dict[str, Any]]:
        try:
            response = await asyncio.to_thread(query_fn)
        except (weaviate.exceptions.WeaviateBaseError, requests.RequestException) as exc:
            raise RetrievalStoreError(f"{modality} search failed: {exc}") from exc

        if not isinstance(response, dict):
            raise RetrievalStoreError(f"{modality} search returned a malformed payload")
        if response.get("errors"):
            raise RetrievalStoreError(f"{modality} search failed: {response['errors']}")

        container = (response.get("data") or {}).get("Get") or {}
        rows = container.get(self.index_name)
        if rows is None:
            for key, value in container.items():
                if key.lower() == self.index_name.lower():
                    rows = value
                    break
        logger.debug("weaviate %s search", modality, extra={"count": len(rows or [])})
        return rows or []

    def _to_hit(self, row: Dict[str, Any], rank: int, score: float) -> SearchHit:
        additional = row.get("_additional") or {}
        try:
            return SearchHit(
                chunk_id=row.get("chunk_id") or additional.get("id"),
                content=row.get("content") or "",
                position_index=int(row.get("position_index") or 0),
                score=score,
                rank=rank,
                document_id=row.get("document_id"),
                document_title=row.get("document_title") or "Untitled",
                document_source=row.get("document_source"),
            )
        except (ValidationError, TypeError, ValueError) as exc:
            raise RetrievalStoreError(f"malformed search row: {exc}") from exc


def build_where_filter(tenant_id: str, document_ids: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    operands: List[Dict[str, Any]] = [
        {"path": ["tenant_id"], "operator": "Equal", "valueText": tenant_id},
        {"path": ["document_status"], "operator": "Equal", "valueText": READY_STATUS},
    ]
    if document_ids:
        operands.append(
            {
                "operator": "Or",
                "operands": [
                    {"path": ["document_id"], "operator": "Equal", "valueText": document_id}
                    for document_id in document_ids
                ],
            }
        )
    return {"operator": "And", "operands": operands}


def _vector_score(row: Dict[str, Any]) -> float:
    distance = (row.get("_additional") or {}).get("distance")
    if distance is None:
        return 0.0
    try:
        return max(0.0, min(1.0, 1.0 - float(distance)))
    except (TypeError, ValueError):
        return 0.0


def _keyword_score(row: Dict[str, Any]) -> float:
    score = (row.get("_additional") or {}).get("score")
    try:
        return float(score) if score is not None else 0.0
    except (TypeError, ValueError):
        return 0.0

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from pydantic import BaseModel, Field
from tortoise.exceptions import BaseORMException

from docqa_shared import Citation, RetrievedChunk

from ..db.models import QALog
from ..errors import LoggingError

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 200


class CitationSummary(BaseModel):
    document_id: str
    title: str
    chunk_id: str
    snippet: str
    score: float
    chunk_index: int


class InteractionRecord(BaseModel):
    """One question/answer cycle as written to the interaction log."""

    tenant_id: str
    session_id: Optional[str] = None
    question: str
    answer: str
    confidence: float = 0.0
    citations: List[CitationSummary] = Field(default_factory=list)
    retrieval_scores: List[float] = Field(default_factory=list)
    cache_hit: bool = False
    conversational: bool = False
    debug_info: Dict[str, Any] = Field(default_factory=dict)


def summarize_citations(citations: Sequence[Citation], chunks: Sequence[RetrievedChunk] = ()) -> List[CitationSummary]:
    chunk_ids = {index: chunk.id for index, chunk in enumerate(chunks, start=1)}
    return [
        CitationSummary(
            document_id=citation.document_id,
            title=citation.document_title,
            chunk_id=chunk_ids.get(citation.number, str(citation.number)),
            snippet=citation.chunk_content[:SNIPPET_LENGTH],
            score=citation.confidence,
            chunk_index=citation.chunk_position_index,
        )
        for citation in citations
    ]


class InteractionSink(Protocol):
    async def write(self, record: InteractionRecord) -> None:
        ...


class TortoiseInteractionSink:
    """Appends interaction records to the ``qa_logs`` table."""

    async def write(self, record: InteractionRecord) -> None:
        payload = record.model_dump()
        try:
            await QALog.create(**payload)
        except BaseORMException as exc:
            raise LoggingError(f"failed to write interaction log: {exc}") from exc


class InteractionLogger:
    """Dispatches interaction-log writes without blocking the response.

    Each write runs in its own task. Failures are logged from the task's done
    callback and never reach the request that scheduled them.
    """

    def __init__(self, sink: InteractionSink) -> None:
        self.sink = sink
        self._pending: Set[asyncio.Task] = set()

    def record(self, record: InteractionRecord) -> asyncio.Task:
        task = asyncio.create_task(self.sink.write(record))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def drain(self) -> None:
        """Wait for every write scheduled so far."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("interaction log write cancelled", extra={"event": "interaction_log_cancelled"})
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Failed to log Q&A interaction",
                extra={"event": "interaction_log_error", "error": str(exc)},
            )

import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from docqa_shared import Settings

from ..dependencies import get_pipeline_dep, get_settings_dep
from ..errors import PipelineError
from ..models import AnswerResponse, QuestionRequest, answer_response, citation_out
from ..services.pipeline import PipelineEvent, QAPipeline, QARequest
from ..telemetry import record_answer, record_failure

router = APIRouter(prefix="/v1/qa", tags=["qa"])
logger = logging.getLogger(__name__)


def _format_event(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def _event_payload(event: PipelineEvent, settings: Settings) -> dict:
    thresholds = {"high": settings.confidence_label_high, "medium": settings.confidence_label_medium}
    if event.type == "chunk":
        return {"text": event.text}
    if event.type == "citations":
        return {"citations": [citation_out(c, **thresholds).model_dump() for c in event.citations or []]}
    if event.type == "complete" and event.result is not None:
        return answer_response(event.result, **thresholds).model_dump(mode="json")
    if event.type == "error":
        return {"code": event.code, "message": event.message}
    return {}


async def _sse_stream(pipeline: QAPipeline, request: QARequest, settings: Settings) -> AsyncIterator[str]:
    try:
        async for event in pipeline.stream(request):
            if event.type == "complete" and event.result is not None:
                record_answer(
                    cached=event.result.cached,
                    conversational=event.result.conversational,
                    confidence=event.result.confidence,
                    grounded=event.result.retrieved_chunk_count > 0,
                )
            elif event.type == "error":
                record_failure(event.code or "error")
            yield _format_event(event.type, _event_payload(event, settings))
    except Exception:
        logger.error("Unexpected error while streaming answer", exc_info=True)
        record_failure("internal_error")
        yield _format_event("error", {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"})


@router.post("", response_model=AnswerResponse)
async def ask_question(
    payload: QuestionRequest,
    settings: Settings = Depends(get_settings_dep),
    pipeline: QAPipeline = Depends(get_pipeline_dep),
):
    """Answer a question from the tenant's documents, with citations."""

    if not payload.question.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question cannot be empty")

    request = QARequest(
        question=payload.question,
        tenant_id=payload.tenant_id,
        session_id=payload.session_id,
        document_ids=payload.document_ids,
    )
    logger.info(f"Processing question for tenant {payload.tenant_id}: {payload.question[:100]}...")

    if payload.stream:
        return StreamingResponse(
            _sse_stream(pipeline, request, settings),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    try:
        result = await pipeline.query(request)
    except ValueError as e:
        logger.warning(f"Rejected question: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PipelineError as e:
        logger.error(f"Q&A pipeline failed: {e}", extra={"code": e.code})
        record_failure(e.code)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": e.code, "message": "An upstream service failed while answering the question."},
        )
    except Exception as e:
        logger.error(f"Unexpected error in Q&A: {str(e)}", exc_info=True)
        record_failure("internal_error")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while processing your request. Please try again.",
        )

    record_answer(
        cached=result.cached,
        conversational=result.conversational,
        confidence=result.confidence,
        grounded=result.retrieved_chunk_count > 0,
    )
    return answer_response(
        result,
        high=settings.confidence_label_high,
        medium=settings.confidence_label_medium,
    )

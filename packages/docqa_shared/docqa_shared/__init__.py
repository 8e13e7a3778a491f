"""Shared configuration, schemas and client factories for the document Q&A system."""

from .clients import create_redis_client, create_weaviate_client
from .config import Settings, get_settings
from .logging import configure_logging
from .schemas import (
    CachedResponse,
    Citation,
    RAGConfig,
    RAGResponse,
    ResponseTiming,
    RetrievedChunk,
    TokenUsage,
)
from .scoring import confidence_label, confidence_score

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    "create_redis_client",
    "create_weaviate_client",
    "CachedResponse",
    "Citation",
    "RAGConfig",
    "RAGResponse",
    "ResponseTiming",
    "RetrievedChunk",
    "TokenUsage",
    "confidence_label",
    "confidence_score",
]

"""Provisioning of the Weaviate chunk class used by the search store."""
import logging
from typing import Any, Dict, List

import weaviate

from docqa_shared import Settings

logger = logging.getLogger(__name__)


_CLASS_DESCRIPTION = "Tenant document chunks searched by vector and BM25 ranking"


def _text(name: str, description: str, **extra: Any) -> Dict[str, Any]:
    return {"name": name, "dataType": ["text"], "description": description, **extra}


CHUNK_CLASS_PROPERTIES: List[Dict[str, Any]] = [
    _text("chunk_id", "Stable chunk identifier", tokenization="field"),
    _text("content", "Chunk text, indexed for BM25", tokenization="word"),
    {"name": "position_index", "dataType": ["int"], "description": "Order of the chunk within its document"},
    _text("document_id", "Identifier of the parent document", tokenization="field"),
    _text("document_title", "Title of the parent document"),
    _text("document_source", "URL or pointer to the original document", tokenization="field"),
    _text("document_status", "Processing state of the parent document", tokenization="field"),
    _text("tenant_id", "Owning tenant", tokenization="field"),
]
_VECTOR_INDEX_CONFIG: Dict[str, Any] = {
    "distance": "cosine",
    "efConstruction": 128,
    "maxConnections": 64,
}


def chunk_class_definition(index_name: str) -> Dict[str, Any]:
    return {
        "class": index_name,
        "description": _CLASS_DESCRIPTION,
        "vectorizer": "none",
        "vectorIndexType": "hnsw",
        "vectorIndexConfig": _VECTOR_INDEX_CONFIG,
        "invertedIndexConfig": {"bm25": {"b": 0.75, "k1": 1.2}},
        "properties": CHUNK_CLASS_PROPERTIES,
    }


def ensure_weaviate_schema(client: weaviate.Client, settings: Settings) -> None:
    """Create the configured chunk class unless it already exists."""

    existing_schema = client.schema.get()
    if any(cls["class"] == settings.weaviate_index for cls in existing_schema.get("classes", [])):
        logger.info("Weaviate class already exists", extra={"class": settings.weaviate_index})
        return

    try:
        client.schema.create_class(chunk_class_definition(settings.weaviate_index))
        logger.info("Created Weaviate class", extra={"class": settings.weaviate_index})
    except weaviate.exceptions.UnexpectedStatusCodeException as exc:
        if getattr(exc, "status_code", None) == 422:
            logger.info("Weaviate class already provisioned", extra={"class": settings.weaviate_index})
        else:
            raise

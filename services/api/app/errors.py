"""Error taxonomy for the Q&A pipeline.

Only embedding, retrieval-store and generation failures may fail a request.
Cache and interaction-log failures are raised inside their own components
and recovered there.
"""


class PipelineError(Exception):
    """Base class for failures that abort a Q&A request."""

    code = "RAG_ERROR"


class EmbeddingError(PipelineError):
    """The embedding provider failed or was given empty input."""

    code = "EMBEDDING_ERROR"


class RetrievalStoreError(PipelineError):
    """The search store was unreachable or returned a malformed payload."""

    code = "RETRIEVAL_ERROR"


class GenerationError(PipelineError):
    """The text generator failed."""

    code = "GENERATION_ERROR"


class CacheError(Exception):
    """A response-cache operation failed. Never escapes the cache."""


class LoggingError(Exception):
    """The interaction sink rejected a write. Never escapes the logger."""

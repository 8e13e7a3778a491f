from __future__ import annotations

import asyncio
import logging
from typing import List, Protocol, Tuple

import requests
from openai import AsyncOpenAI, OpenAIError

from docqa_shared import Settings

from ..errors import EmbeddingError

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> Tuple[List[float], int]:
        ...

    async def embed_batch(self, texts: List[str]) -> Tuple[List[List[float]], int]:
        ...


class OpenAIEmbeddingProvider:
    """Embeddings through the OpenAI embeddings endpoint."""

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None) -> None:
        if client is None:
            if not settings.openai_api_key:
                raise ValueError("OpenAI API key not configured")
            client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
        self.client = client
        self.model = settings.embedding_model
        self.dimensions = settings.embedding_dim
        self.batch_size = min(settings.embedding_batch_size, MAX_BATCH_SIZE)

    async def embed(self, text: str) -> Tuple[List[float], int]:
        if not text or not text.strip():
            raise EmbeddingError("Cannot generate embedding for empty text")

        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=text,
                dimensions=self.dimensions,
            )
        except OpenAIError as exc:
            raise EmbeddingError(f"embedding request failed: {exc}") from exc

        if not response.data:
            raise EmbeddingError("embedding response is empty")
        tokens = response.usage.total_tokens if response.usage else 0
        return list(response.data[0].embedding), tokens

    async def embed_batch(self, texts: List[str]) -> Tuple[List[List[float]], int]:
        valid = [text for text in texts if text and text.strip()]
        if not valid:
            return [], 0

        vectors: List[List[float]] = []
        total_tokens = 0
        for start in range(0, len(valid), self.batch_size):
            batch = valid[start : start + self.batch_size]
            try:
                response = await self.client.embeddings.create(
                    model=self.model,
                    input=batch,
                    dimensions=self.dimensions,
                )
            except OpenAIError as exc:
                raise EmbeddingError(f"batch embedding request failed: {exc}") from exc

            ordered = sorted(response.data, key=lambda item: item.index)
            vectors.extend(list(item.embedding) for item in ordered)
            total_tokens += response.usage.total_tokens if response.usage else 0
        return vectors, total_tokens


class EmbeddingServiceProvider:
    """Embeddings through the self-hosted embedding service."""

    def __init__(self, settings: Settings, timeout: int = 30) -> None:
        self.url = f"{settings.embedding_service_url}/v1/embed"
        self.model = settings.embedding_model
        self.dimensions = settings.embedding_dim
        self.timeout = timeout

    async def embed(self, text: str) -> Tuple[List[float], int]:
        if not text or not text.strip():
            raise EmbeddingError("Cannot generate embedding for empty text")
        vectors, tokens = await self.embed_batch([text])
        if not vectors:
            raise EmbeddingError("embedding service returned no vectors")
        return vectors[0], tokens

    async def embed_batch(self, texts: List[str]) -> Tuple[List[List[float]], int]:
        valid = [text for text in texts if text and text.strip()]
        if not valid:
            return [], 0

        def _post() -> dict:
            response = requests.post(
                self.url,
                json={"texts": valid, "model": self.model, "dimensions": self.dimensions},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()

        try:
            payload = await asyncio.to_thread(_post)
        except (requests.RequestException, ValueError) as exc:
            raise EmbeddingError(f"embedding service request failed: {exc}") from exc

        embeddings = payload.get("embeddings") or []
        if len(embeddings) != len(valid):
            raise EmbeddingError(
                f"embedding service returned {len(embeddings)} vectors for {len(valid)} texts"
            )
        # approximate with whitespace tokens when the service omits usage
        tokens = int(payload.get("tokens") or sum(len(text.split()) for text in valid))
        return [list(vector) for vector in embeddings], tokens


def create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    if settings.embedding_backend == "service":
        return EmbeddingServiceProvider(settings)
    if settings.embedding_backend == "openai":
        return OpenAIEmbeddingProvider(settings)
    raise ValueError(f"Unknown embedding backend '{settings.embedding_backend}'")

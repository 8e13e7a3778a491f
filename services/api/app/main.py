import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docqa_shared import Settings, configure_logging, create_redis_client, create_weaviate_client, get_settings

from .db import close_db, init_db
from .infra.weaviate_schema import ensure_weaviate_schema
from .routers import cache, qa, system
from .services.cache import ResponseCache
from .services.embeddings import create_embedding_provider
from .services.generation import OpenAITextGenerator
from .services.persistence import InteractionLogger, TortoiseInteractionSink
from .services.pipeline import QAPipeline
from .services.query_expansion import QueryExpander
from .services.retrieval import HybridRetriever
from .services.search_store import WeaviateSearchStore
from .services.summarization import DocumentSummarizer
from .services.tenants import SettingsTenantConfigProvider
from .telemetry import setup_observability

logger = logging.getLogger(__name__)


@dataclass
class Services:
    cache: ResponseCache
    interactions: InteractionLogger
    pipeline: Optional[QAPipeline] = None

    async def aclose(self) -> None:
        await self.interactions.drain()
        if self.cache.client is not None:
            await self.cache.client.aclose()


def build_services(settings: Settings) -> Services:
    """Construct the pipeline and its collaborators from settings."""

    response_cache = ResponseCache.from_settings(settings, create_redis_client(settings))
    interactions = InteractionLogger(TortoiseInteractionSink())
    services = Services(cache=response_cache, interactions=interactions)

    try:
        generator = OpenAITextGenerator(settings)
        embedder = create_embedding_provider(settings)
    except ValueError as exc:
        logger.error(f"Q&A pipeline disabled: {exc}")
        return services

    weaviate_client = create_weaviate_client(settings)
    ensure_weaviate_schema(weaviate_client, settings)

    expander = None
    if settings.hyde_enabled or settings.keyword_extraction_enabled:
        expander = QueryExpander.from_settings(
            settings, OpenAITextGenerator(settings, model=settings.query_expansion_model)
        )
    retriever = HybridRetriever.from_settings(
        settings,
        embedder=embedder,
        store=WeaviateSearchStore(weaviate_client, settings.weaviate_index),
        expander=expander,
    )
    summarizer = DocumentSummarizer.from_settings(settings, generator) if settings.summarization_enabled else None

    services.pipeline = QAPipeline.from_settings(
        settings,
        retriever=retriever,
        generator=generator,
        cache=response_cache,
        interactions=interactions,
        tenant_configs=SettingsTenantConfigProvider(settings),
        summarizer=summarizer,
    )
    return services


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(f"api::{settings.env}")
    await init_db(settings)
    services = build_services(settings)
    app.state.pipeline = services.pipeline
    app.state.cache = services.cache
    try:
        yield
    finally:
        await services.aclose()
        await close_db()


def create_app() -> FastAPI:
    settings: Settings = get_settings()

    app = FastAPI(title="Document Q&A API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_observability(app, settings)

    app.include_router(system.router)
    app.include_router(qa.router)
    app.include_router(cache.router)

    @app.get("/")
    async def root() -> dict:
        return {"service": "docqa-api", "env": settings.env}

    return app


app = create_app()

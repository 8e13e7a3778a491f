"""Factories for the external stores used by the Q&A pipeline.

Callers own the returned clients; nothing here is cached at module level.
"""
from __future__ import annotations

import logging
from typing import Optional

import weaviate
from redis import asyncio as redis_asyncio

from .config import Settings

logger = logging.getLogger(__name__)


def create_weaviate_client(settings: Settings) -> weaviate.Client:
    """Build a Weaviate client for the chunk store."""

    auth = None
    if settings.weaviate_api_key:
        auth = weaviate.AuthApiKey(api_key=settings.weaviate_api_key)

    return weaviate.Client(
        url=settings.weaviate_url,
        auth_client_secret=auth,
        timeout_config=(5, 60),
        startup_period=None,
    )


def create_redis_client(settings: Settings) -> Optional[redis_asyncio.Redis]:
    """Build an asyncio Redis client, or ``None`` when caching is unavailable."""

    if not settings.rag_cache_enabled:
        logger.info("response cache disabled by configuration")
        return None
    if not settings.redis_url:
        logger.warning("response cache enabled but redis_url is not set")
        return None

    timeout = settings.rag_cache_timeout_seconds
    return redis_asyncio.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )

"""Tenant-scoped cache of complete question/answer cycles in Redis.

Keys are ``{prefix}{tenant_id}:{sha256(normalized question)[:32]}``; a request
restricted to some documents also hashes the sorted document ids. Every
Redis failure is logged and turned into a miss or a no-op; nothing raised by
the store leaves this module.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
import time
from typing import Any, Awaitable, Optional, Sequence

from prometheus_client import Counter
from pydantic import ValidationError
from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

from docqa_shared import CachedResponse, RAGResponse, Settings

from ..errors import CacheError

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = "1.0.0"
DEFAULT_KEY_PREFIX = "rag:qa:"
DEFAULT_TTL_SECONDS = 3600
SCAN_BATCH_SIZE = 100
HASH_LENGTH = 32

_TRAILING_PUNCTUATION = re.compile(r"[?!.]+$")
_WHITESPACE = re.compile(r"\s+")
_GLOB_SPECIALS = re.compile(r"([*?\[\]\\])")

CACHE_EVENTS = Counter(
    "docqa_response_cache_events_total",
    "Response cache operations by outcome",
    ["outcome"],
)


def normalize_question(question: str) -> str:
    text = _TRAILING_PUNCTUATION.sub("", question.lower().strip())
    return _WHITESPACE.sub(" ", text).strip()


def generate_cache_key(
    tenant_id: str,
    question: str,
    prefix: str = DEFAULT_KEY_PREFIX,
    document_ids: Optional[Sequence[str]] = None,
) -> str:
    material = normalize_question(question)
    if document_ids:
        # a document subset gets its own key
        material += "\n" + ",".join(sorted(set(document_ids)))
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"{prefix}{tenant_id}:{digest[:HASH_LENGTH]}"


def tenant_key_pattern(tenant_id: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    # tenant ids are matched literally, never as glob syntax
    escaped = _GLOB_SPECIALS.sub(r"\\\1", f"{prefix}{tenant_id}")
    return f"{escaped}:*"


class ResponseCache:
    def __init__(
        self,
        client: Optional[redis_asyncio.Redis],
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        timeout_seconds: float = 0.5,
        scan_batch_size: int = SCAN_BATCH_SIZE,
        schema_version: str = CACHE_SCHEMA_VERSION,
    ) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.timeout_seconds = timeout_seconds
        self.scan_batch_size = scan_batch_size
        self.schema_version = schema_version

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[redis_asyncio.Redis]) -> "ResponseCache":
        return cls(
            client if settings.rag_cache_enabled else None,
            ttl_seconds=settings.rag_cache_ttl_seconds,
            key_prefix=settings.rag_cache_key_prefix,
            timeout_seconds=settings.rag_cache_timeout_seconds,
            scan_batch_size=settings.rag_cache_scan_batch_size,
        )

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def key_for(self, tenant_id: str, question: str, document_ids: Optional[Sequence[str]] = None) -> str:
        return generate_cache_key(tenant_id, question, self.key_prefix, document_ids)

    async def get(
        self, tenant_id: str, question: str, document_ids: Optional[Sequence[str]] = None
    ) -> Optional[CachedResponse]:
        if not self.enabled:
            return None
        started = time.perf_counter()
        key = self.key_for(tenant_id, question, document_ids)
        try:
            return await self._read(key, tenant_id, started)
        except CacheError as exc:
            CACHE_EVENTS.labels(outcome="error").inc()
            logger.warning(
                "cache read failed, treating as miss",
                extra={"event": "cache_get_error", "tenant": tenant_id, "error": str(exc)},
            )
            return None

    async def set(
        self,
        tenant_id: str,
        question: str,
        response: RAGResponse,
        document_ids: Optional[Sequence[str]] = None,
    ) -> None:
        if not self.enabled:
            return
        key = self.key_for(tenant_id, question, document_ids)
        entry = CachedResponse(
            **response.model_dump(include=set(RAGResponse.model_fields)),
            cache_schema_version=self.schema_version,
            original_query=question,
        )
        try:
            await self._call(self.client.set(key, entry.model_dump_json(), ex=self.ttl_seconds), "set")
        except CacheError as exc:
            CACHE_EVENTS.labels(outcome="error").inc()
            logger.warning(
                "cache write failed",
                extra={"event": "cache_set_error", "tenant": tenant_id, "error": str(exc)},
            )
            return
        CACHE_EVENTS.labels(outcome="set").inc()
        logger.debug("response cached", extra={"event": "cache_set", "tenant": tenant_id, "ttl": self.ttl_seconds})

    async def invalidate_tenant(self, tenant_id: str) -> int:
        """Delete every cached response for ``tenant_id``; returns the count removed.

        Keys are found with SCAN in batches of ``scan_batch_size`` so a large
        tenant never issues one unbounded listing call.
        """

        if ":" in tenant_id:
            raise ValueError("tenant_id cannot contain ':'")
        if not self.enabled:
            return 0
        pattern = tenant_key_pattern(tenant_id, self.key_prefix)
        deleted = 0
        cursor: Any = 0
        try:
            while True:
                cursor, keys = await self._call(
                    self.client.scan(cursor=cursor, match=pattern, count=self.scan_batch_size),
                    "scan",
                )
                if keys:
                    deleted += int(await self._call(self.client.delete(*keys), "delete"))
                if int(cursor) == 0:
                    break
        except CacheError as exc:
            CACHE_EVENTS.labels(outcome="error").inc()
            logger.warning(
                "tenant cache invalidation failed",
                extra={"event": "cache_invalidate_error", "tenant": tenant_id, "deleted": deleted, "error": str(exc)},
            )
            return deleted

        if deleted:
            CACHE_EVENTS.labels(outcome="invalidated").inc(deleted)
            logger.info(
                f"Invalidated {deleted} cached responses for tenant",
                extra={"event": "cache_invalidate_tenant", "tenant": tenant_id, "deleted": deleted},
            )
        return deleted

    async def _read(self, key: str, tenant_id: str, started: float) -> Optional[CachedResponse]:
        raw = await self._call(self.client.get(key), "get")
        duration_ms = int((time.perf_counter() - started) * 1000)
        if raw is None:
            CACHE_EVENTS.labels(outcome="miss").inc()
            logger.debug("cache miss", extra={"event": "cache_miss", "tenant": tenant_id, "duration_ms": duration_ms})
            return None

        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            payload = None
        version = payload.get("cache_schema_version") if isinstance(payload, dict) else None
        if version != self.schema_version:
            CACHE_EVENTS.labels(outcome="version_mismatch").inc()
            logger.debug(
                "cache version mismatch, treating as miss",
                extra={
                    "event": "cache_version_mismatch",
                    "tenant": tenant_id,
                    "cached": version,
                    "current": self.schema_version,
                },
            )
            await self._call(self.client.delete(key), "delete")
            return None

        try:
            entry = CachedResponse.model_validate(payload)
        except ValidationError as exc:
            await self._call(self.client.delete(key), "delete")
            raise CacheError(f"malformed cache entry: {exc}") from exc

        CACHE_EVENTS.labels(outcome="hit").inc()
        logger.info("cache hit", extra={"event": "cache_hit", "tenant": tenant_id, "duration_ms": duration_ms})
        return entry

    async def _call(self, awaitable: Awaitable[Any], operation: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError(f"redis {operation} failed: {exc!r}") from exc

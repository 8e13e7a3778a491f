from __future__ import annotations

import logging
from typing import Protocol

from pydantic import ValidationError

from docqa_shared import RAGConfig, Settings

logger = logging.getLogger(__name__)


class TenantConfigProvider(Protocol):
    async def get_rag_config(self, tenant_id: str) -> RAGConfig:
        ...


class SettingsTenantConfigProvider:
    """Per-tenant RAG settings from ``tenant_rag_overrides`` over the global defaults."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def get_rag_config(self, tenant_id: str) -> RAGConfig:
        defaults = self.settings.default_rag_config()
        overrides = self.settings.tenant_rag_overrides.get(tenant_id) or {}
        if not overrides:
            return defaults
        merged = {**defaults.model_dump(), **overrides}
        try:
            return RAGConfig(**merged)
        except ValidationError as exc:
            logger.warning(
                "invalid RAG overrides for tenant, using defaults",
                extra={"tenant": tenant_id, "error": str(exc)},
            )
            return defaults

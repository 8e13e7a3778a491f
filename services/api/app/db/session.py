from __future__ import annotations

import logging

from tortoise import Tortoise

from docqa_shared import Settings

logger = logging.getLogger(__name__)

MODEL_MODULES = {"models": ["app.db.models"]}


async def init_db(settings: Settings) -> None:
    await init_db_url(normalize_dsn(settings.postgres_dsn))


async def init_db_url(db_url: str) -> None:
    await Tortoise.init(db_url=db_url, modules=MODEL_MODULES)
    await Tortoise.generate_schemas(safe=True)
    logger.info("interaction log database ready", extra={"engine": db_url.split(":", 1)[0]})


async def close_db() -> None:
    await Tortoise.close_connections()


def normalize_dsn(dsn: str) -> str:
    """Translate SQLAlchemy-style DSNs into the scheme Tortoise expects."""

    for prefix in ("postgresql+asyncpg://", "postgresql://"):
        if dsn.startswith(prefix):
            return "postgres://" + dsn[len(prefix) :]
    return dsn

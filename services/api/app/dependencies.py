from functools import lru_cache

from fastapi import HTTPException, Request, status

from docqa_shared import Settings, configure_logging, get_settings

from .services.cache import ResponseCache
from .services.pipeline import QAPipeline


@lru_cache(maxsize=1)
def init_logging() -> None:
    settings = get_settings()
    configure_logging(f"api::{settings.env}")


async def get_settings_dep() -> Settings:
    init_logging()
    return get_settings()


def get_pipeline_dep(request: Request) -> QAPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Q&A pipeline not initialised")
    return pipeline


def get_cache_dep(request: Request) -> ResponseCache:
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Response cache not initialised")
    return cache

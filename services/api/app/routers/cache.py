import logging

from fastapi import APIRouter, Depends, HTTPException, Path, status

from ..dependencies import get_cache_dep
from ..models import TENANT_ID_PATTERN, CacheInvalidationResponse
from ..services.cache import ResponseCache

router = APIRouter(prefix="/v1/tenants", tags=["cache"])
logger = logging.getLogger(__name__)


@router.post("/{tenant_id}/cache/invalidate", response_model=CacheInvalidationResponse)
async def invalidate_tenant_cache(
    tenant_id: str = Path(..., min_length=1, max_length=255, pattern=TENANT_ID_PATTERN),
    cache: ResponseCache = Depends(get_cache_dep),
) -> CacheInvalidationResponse:
    """Drop every cached answer for a tenant. Call after the tenant's documents change."""

    if not tenant_id.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="tenant_id cannot be blank")

    deleted = await cache.invalidate_tenant(tenant_id)
    logger.info(f"Cache invalidated for tenant {tenant_id}", extra={"deleted": deleted})
    return CacheInvalidationResponse(tenant_id=tenant_id, deleted=deleted)

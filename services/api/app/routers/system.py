from fastapi import APIRouter, Request

router = APIRouter(tags=["system"], prefix="/system")


@router.get("/health")
async def healthcheck(request: Request) -> dict:
    cache = getattr(request.app.state, "cache", None)
    return {
        "status": "ok",
        "cache": "enabled" if cache is not None and cache.enabled else "disabled",
    }

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response, status

from app.core.container import Services
from app.schemas.messages import MessageEnvelope, MessageResponse
from app.schemas.translation import CacheStats

router = APIRouter(tags=["messages"])


def _services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Services not initialized")
    return services


@router.post("/messages", response_model=MessageResponse)
async def post_message(envelope: MessageEnvelope, request: Request) -> MessageResponse:
    return await _services(request).router.dispatch(envelope)


@router.get("/messages/types", response_model=list[str])
def list_message_types(request: Request) -> list[str]:
    return _services(request).router.message_types


@router.get("/cache/stats", response_model=CacheStats)
def cache_stats(request: Request) -> CacheStats:
    return _services(request).cache.get_stats()


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cache(request: Request) -> Response:
    await _services(request).cache.clear_all()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/config/status")
def config_status(request: Request) -> dict[str, str | None]:
    return {"configuration_error": _services(request).router.last_configuration_error}

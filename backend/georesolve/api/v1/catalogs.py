from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from georesolve.core.logging import get_logger
from georesolve.domain.text import SearchIndex
from georesolve.schemas.catalog import GeoState, Municipality
from georesolve.services.cache import CatalogCache
from georesolve.services.gateway import CatalogGatewayError
from georesolve.services.sessions import get_session_registry


router = APIRouter()

_logger = get_logger(__name__)


def get_cache() -> CatalogCache:
    return get_session_registry().cache


@router.get("/states", response_model=list[GeoState])
async def list_states(
    q: str | None = Query(None, max_length=100),
    cache: CatalogCache = Depends(get_cache),
) -> list[GeoState]:
    try:
        states = await cache.states()
    except CatalogGatewayError as exc:
        _logger.warning("State list unavailable", error=str(exc))
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Catalog unavailable")
    return SearchIndex(states).filter(q)


@router.get("/states/{state_id}/municipalities", response_model=list[Municipality])
async def list_municipalities(
    state_id: int,
    q: str | None = Query(None, max_length=100),
    cache: CatalogCache = Depends(get_cache),
) -> list[Municipality]:
    try:
        municipalities = await cache.municipalities(state_id)
    except CatalogGatewayError as exc:
        _logger.warning(
            "Municipality list unavailable", state_id=state_id, error=str(exc)
        )
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Catalog unavailable")
    return SearchIndex(municipalities).filter(q)

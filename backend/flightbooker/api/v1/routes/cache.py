from typing import Annotated

from fastapi import APIRouter, HTTPException, Query

from flightbooker.api.v1.routes.flights import AggregatorDep
from flightbooker.models.schemas import CacheInvalidateOut, CacheStatsOut
from flightbooker.services.providers.base import route_cache_prefix

router = APIRouter()


"""
Amministrazione della cache dei risultati di ricerca.

GET    /api/v1/cache                              → backend + numero di ricerche in cache
DELETE /api/v1/cache                              → svuota tutte le ricerche
DELETE /api/v1/cache?origin=JFK&destination=LAX   → solo quella tratta
"""
@router.get("", response_model=CacheStatsOut)
async def cache_stats(aggregator: AggregatorDep) -> CacheStatsOut:
    return CacheStatsOut(**await aggregator.cache.stats())


@router.delete("", response_model=CacheInvalidateOut)
async def invalidate_cache(
    aggregator: AggregatorDep,
    origin: Annotated[str | None, Query(min_length=3, max_length=3)] = None,
    destination: Annotated[str | None, Query(min_length=3, max_length=3)] = None,
) -> CacheInvalidateOut:
    if (origin is None) != (destination is None):
        raise HTTPException(status_code=400, detail="origin and destination must be given together")

    if origin is None:
        removed = await aggregator.cache.invalidate()
        return CacheInvalidateOut(scope="all", invalidated=removed)

    removed = await aggregator.cache.invalidate(route_cache_prefix(origin, destination))
    return CacheInvalidateOut(scope=f"{origin.upper()}-{destination.upper()}", invalidated=removed)

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from flightbooker.models.schemas import (
    ProviderInfoOut,
    ProvidersOut,
    ProviderUsageOut,
    SearchIn,
    SearchOut,
)
from flightbooker.services.providers.base import InvalidSearchParams
from flightbooker.services.providers.factory import ProviderRegistry
from flightbooker.services.search_engine import FlightAggregator
from flightbooker.utils.rate_limiter import RateLimiter

router = APIRouter()


# Le istanze vivono su app.state (create nel lifespan, sostituibili nei test)
def get_aggregator(request: Request) -> FlightAggregator:
    return request.app.state.aggregator


AggregatorDep = Annotated[FlightAggregator, Depends(get_aggregator)]


"""
Endpoint ricerca voli multi-provider.-----------------------------------------------------------------------

POST /api/v1/flights/search
  {"origin": "JFK", "destination": "LAX", "depart_date": "2026-11-20",
   "passengers": 1, "trip_type": "one-way", "travel_class": "economy"}
"""
@router.post("/search", response_model=SearchOut)
async def search_flights(aggregator: AggregatorDep, body: SearchIn) -> SearchOut:
    try:
        result = await aggregator.search(body.to_params())
    except InvalidSearchParams as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    return SearchOut.from_result(result)


"""
Stato dei provider.

GET /api/v1/flights/providers?action=health   → abilitato + credenziali
GET /api/v1/flights/providers?action=stats    → uso rate limit corrente
GET /api/v1/flights/providers?action=full     → entrambi + configurazione
"""
@router.get("/providers", response_model=ProvidersOut, response_model_exclude_none=True)
async def provider_status(
    aggregator: AggregatorDep,
    action: Annotated[str, Query(description="health | stats | full")] = "health",
) -> ProvidersOut:
    if action not in ("health", "stats", "full"):
        raise HTTPException(status_code=400, detail="Invalid action. Use: health, stats, or full")

    registry: ProviderRegistry = aggregator.registry
    limiter: RateLimiter = aggregator.rate_limiter

    if action == "health":
        return ProvidersOut(action=action, health=registry.health())

    stats = {name: ProviderUsageOut(**usage) for name, usage in limiter.stats().items()}
    if action == "stats":
        return ProvidersOut(action=action, stats=stats)

    providers = [
        ProviderInfoOut(
            name=config.name,
            display_name=config.display_name,
            enabled=config.enabled,
            configured=getattr(registry.adapter(config.name), "configured", True),
            priority=config.priority,
            reliability=config.reliability,
        )
        for config in sorted(registry.configs(), key=lambda c: c.priority)
    ]
    return ProvidersOut(action=action, health=registry.health(), stats=stats, providers=providers)

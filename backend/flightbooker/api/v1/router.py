#To aggregate all routes for API1


from fastapi import APIRouter

from flightbooker.api.v1.routes.cache import router as cache_router
from flightbooker.api.v1.routes.flights import router as flights_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(flights_router, prefix="/flights", tags=["flights"])
api_router.include_router(cache_router, prefix="/cache", tags=["cache"])

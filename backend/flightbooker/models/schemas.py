from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from flightbooker.services.providers.base import AggregatedResult, SearchParams, TravelClass, TripType


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class SearchIn(BaseModel):
    # I controlli di dominio (IATA, date, round-trip) stanno in SearchParams.validate()
    origin: str = Field(min_length=3, max_length=3, description="Codice IATA origine")
    destination: str = Field(min_length=3, max_length=3, description="Codice IATA destinazione")
    depart_date: date
    return_date: date | None = None
    passengers: int = 1
    trip_type: TripType = "one-way"
    travel_class: TravelClass | None = None

    def to_params(self) -> SearchParams:
        return SearchParams(
            origin=self.origin,
            destination=self.destination,
            depart_date=self.depart_date,
            return_date=self.return_date,
            passengers=self.passengers,
            trip_type=self.trip_type,
            travel_class=self.travel_class,
        )


# ---------------------------------------------------------------------------
# Singola offerta (strutture nidificate)
# ---------------------------------------------------------------------------

class LayoverOut(BaseModel):
    airport: str
    duration: str

    model_config = {"from_attributes": True}


class PriceBreakdownOut(BaseModel):
    base_fare: float
    taxes: float
    fees: float
    total: float

    model_config = {"from_attributes": True}


class AmenitiesOut(BaseModel):
    wifi: bool
    meals: bool
    entertainment: bool
    power_outlets: bool

    model_config = {"from_attributes": True}


class FlightOfferOut(BaseModel):
    id: str
    provider: str
    origin: str
    destination: str
    depart_time: str
    arrive_time: str
    duration: str
    price: float
    airline: str
    flight_number: str
    aircraft: str
    stops: int
    travel_class: TravelClass | None = None
    layovers: list[LayoverOut]
    price_breakdown: PriceBreakdownOut | None = None
    amenities: AmenitiesOut | None = None
    reliability: str | None = None
    booking_url: str | None = None

    # Letto direttamente dalle dataclass FlightOffer (raw_offer escluso)
    model_config = {"from_attributes": True}


class ProviderFailureOut(BaseModel):
    provider: str
    message: str
    kind: str

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Risposta ricerca
# ---------------------------------------------------------------------------

class SearchOut(BaseModel):
    flights: list[FlightOfferOut]
    count: int
    sources: list[str]
    cached: bool
    search_time_ms: int
    errors: list[ProviderFailureOut]
    data_source: Literal["live", "demo"]     # "demo" = solo dati sintetici

    @classmethod
    def from_result(cls, result: AggregatedResult) -> "SearchOut":
        live = any(offer.provider != "synthetic" for offer in result.flights)
        return cls(
            flights=[FlightOfferOut.model_validate(offer) for offer in result.flights],
            count=len(result.flights),
            sources=result.sources,
            cached=result.cached,
            search_time_ms=result.search_time_ms,
            errors=[ProviderFailureOut.model_validate(err) for err in result.errors],
            data_source="live" if live else "demo",
        )


# ---------------------------------------------------------------------------
# Provider status: /flights/providers
# ---------------------------------------------------------------------------

class ProviderUsageOut(BaseModel):
    requests_last_minute: int
    requests_last_hour: int
    requests_per_minute: int
    requests_per_hour: int
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_used_at: datetime | None = None


class ProviderInfoOut(BaseModel):
    name: str
    display_name: str
    enabled: bool
    configured: bool
    priority: int
    reliability: str


class ProvidersOut(BaseModel):
    action: Literal["health", "stats", "full"]
    health: dict[str, bool] | None = None
    stats: dict[str, ProviderUsageOut] | None = None
    providers: list[ProviderInfoOut] | None = None


# ---------------------------------------------------------------------------
# Cache admin: /cache
# ---------------------------------------------------------------------------

class CacheStatsOut(BaseModel):
    backend: Literal["memory", "redis"]
    entries: int | None = None      # None = Redis non raggiungibile


class CacheInvalidateOut(BaseModel):
    scope: str                      # "all" oppure "JFK-LAX"
    invalidated: int

"""
Flight Provider Layer: tipi di dominio, errori e interfaccia astratta (Strategy Pattern).

Il codice applicativo (search_engine, amenities, cache) usa solo queste classi.
Ogni adapter concreto traduce la risposta del proprio upstream in FlightOffer
e fallisce con ProviderError: mai un'offerta malformata verso il merge.
"""
import json
import math
import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, replace
from datetime import date
from typing import Any, Literal

TravelClass = Literal["economy", "premium-economy", "business", "first"]
TripType = Literal["one-way", "round-trip"]
Reliability = Literal["high", "medium", "low"]

TRAVEL_CLASSES: tuple[str, ...] = ("economy", "premium-economy", "business", "first")
TRIP_TYPES: tuple[str, ...] = ("one-way", "round-trip")

# Ordine usato dal dedup: a parità di volo vince la fonte più affidabile
RELIABILITY_RANK: dict[str, int] = {"high": 3, "medium": 2, "low": 1}

# Limite passeggeri per singola ricerca (stesso limite di Amadeus)
MAX_PASSENGERS = 9

_IATA_RE = re.compile(r"^[A-Z]{3}$")

# Prefisso comune delle chiavi di cache delle ricerche
CACHE_KEY_PREFIX = "multi-provider-flight-search"


# ---------------------------------------------------------------------------
# Errori
# ---------------------------------------------------------------------------

class ProviderError(Exception):
    """Errore localizzato ad un singolo provider: mai fatale per la ricerca."""

    kind = "transport"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ProviderTransportError(ProviderError):
    """Rete, autenticazione, status non-2xx o payload malformato."""


class ProviderTimeout(ProviderError):
    kind = "timeout"


class ProviderThrottled(ProviderError):
    """Il rate limiter ha rifiutato la chiamata prima che partisse."""

    kind = "throttled"


class NoProvidersAvailable(Exception):
    """Nessun provider reale ha prodotto offerte → fallback sintetico."""


class InvalidSearchParams(ValueError):
    """Parametri di ricerca non validi: unico errore che esce da search()."""


# ---------------------------------------------------------------------------
# FlightOffer
# ---------------------------------------------------------------------------

@dataclass
class Layover:
    airport: str      # codice IATA dello scalo
    duration: str     # es. "1h 45m"


@dataclass
class PriceBreakdown:
    base_fare: float
    taxes: float
    fees: float
    total: float


@dataclass
class Amenities:
    wifi: bool
    meals: bool
    entertainment: bool
    power_outlets: bool


@dataclass
class FlightOffer:
    """Risultato normalizzato indipendente dal provider."""
    id: str                 # univoco solo dentro un singolo AggregatedResult
    provider: str           # nome dell'adapter che l'ha prodotto
    origin: str
    destination: str
    depart_time: str        # orario locale "HH:MM"
    arrive_time: str
    duration: str           # es. "5h 20m"
    price: float            # valuta di riferimento (settings.currency)
    airline: str
    flight_number: str      # es. "BA 117"
    aircraft: str = ""      # codice IATA aeromobile (es. "77W") o nome esteso
    stops: int = 0
    travel_class: TravelClass | None = None
    layovers: list[Layover] = field(default_factory=list)
    price_breakdown: PriceBreakdown | None = None
    amenities: Amenities | None = None
    reliability: Reliability | None = None
    booking_url: str | None = None
    raw_offer: dict | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not (math.isfinite(self.price) and self.price > 0):
            raise ValueError(f"price must be a finite number > 0 (got {self.price})")
        if self.stops < 0:
            raise ValueError(f"stops must be >= 0 (got {self.stops})")
        if self.stops == 0 and self.layovers:
            raise ValueError("a direct flight cannot have layovers")

    @property
    def carrier_code(self) -> str:
        """'BA 117' → 'BA'."""
        return self.flight_number.split(" ", 1)[0].strip().upper() if self.flight_number else ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FlightOffer":
        """Ricostruisce l'offerta (e le strutture annidate) da to_dict()."""
        item = dict(data)
        item["layovers"] = [Layover(**lay) for lay in item.get("layovers") or []]
        if item.get("price_breakdown") is not None:
            item["price_breakdown"] = PriceBreakdown(**item["price_breakdown"])
        if item.get("amenities") is not None:
            item["amenities"] = Amenities(**item["amenities"])
        return cls(**item)


# ---------------------------------------------------------------------------
# SearchParams
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SearchParams:
    origin: str
    destination: str
    depart_date: date
    return_date: date | None = None
    passengers: int = 1
    trip_type: TripType = "one-way"
    travel_class: TravelClass | None = None

    def normalized(self) -> "SearchParams":
        """Codici IATA maiuscoli; il ritorno esiste solo per i round-trip."""
        return replace(
            self,
            origin=self.origin.strip().upper(),
            destination=self.destination.strip().upper(),
            return_date=self.return_date if self.trip_type == "round-trip" else None,
        )

    def validate(self, today: date | None = None) -> None:
        """
        Controlli preliminari, eseguiti prima di contattare qualsiasi provider.

        Raises:
            InvalidSearchParams: al primo vincolo violato.
        """
        today = today or date.today()
        origin = self.origin.strip().upper()
        destination = self.destination.strip().upper()

        if not _IATA_RE.match(origin) or not _IATA_RE.match(destination):
            raise InvalidSearchParams("origin and destination must be 3-letter IATA codes")
        if origin == destination:
            raise InvalidSearchParams("Origin and destination airports must be different")
        if not 1 <= self.passengers <= MAX_PASSENGERS:
            raise InvalidSearchParams(f"passengers must be between 1 and {MAX_PASSENGERS}")
        if self.trip_type not in TRIP_TYPES:
            raise InvalidSearchParams(f"unknown trip type: {self.trip_type!r}")
        if self.travel_class is not None and self.travel_class not in TRAVEL_CLASSES:
            raise InvalidSearchParams(f"unknown travel class: {self.travel_class!r}")
        if self.depart_date < today:
            raise InvalidSearchParams("Departure date cannot be in the past")
        if self.trip_type == "round-trip":
            if self.return_date is None:
                raise InvalidSearchParams("round-trip searches need a return date")
            if self.return_date <= self.depart_date:
                raise InvalidSearchParams("Return date must be after departure date")

    def cache_key(self) -> str:
        """Chiave deterministica: campi normalizzati, ordinati, None esclusi."""
        params = self.normalized()
        payload = {
            "origin": params.origin,
            "destination": params.destination,
            "depart_date": params.depart_date.isoformat(),
            "return_date": params.return_date.isoformat() if params.return_date else None,
            "passengers": params.passengers,
            "trip_type": params.trip_type,
            "travel_class": params.travel_class,
        }
        payload = {k: v for k, v in payload.items() if v is not None}
        return route_cache_prefix(params.origin, params.destination) + json.dumps(payload, sort_keys=True)


def route_cache_prefix(origin: str, destination: str) -> str:
    """Parte iniziale comune a tutte le chiavi di una tratta (es. per invalidarla)."""
    return f"{CACHE_KEY_PREFIX}:{origin.strip().upper()}-{destination.strip().upper()}:"


# ---------------------------------------------------------------------------
# ProviderConfig / AggregatedResult
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderConfig:
    """Policy statica per provider: letta dal core, mai modificata a runtime."""
    name: str
    display_name: str
    source_label: str           # etichetta human-readable in AggregatedResult.sources
    enabled: bool
    priority: int               # più basso = lanciato per primo
    timeout_ms: int
    reliability: Reliability
    requests_per_minute: int
    requests_per_hour: int
    honors_cabin_filter: bool = False   # restituisce solo la classe richiesta


@dataclass
class ProviderFailure:
    provider: str
    message: str
    kind: str = "transport"     # "transport" | "timeout" | "throttled"


@dataclass
class AggregatedResult:
    flights: list[FlightOffer]
    sources: list[str]
    cached: bool
    search_time_ms: int
    errors: list[ProviderFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AggregatedResult":
        return cls(
            flights=[FlightOffer.from_dict(item) for item in data.get("flights", [])],
            sources=list(data.get("sources", [])),
            cached=bool(data.get("cached", False)),
            search_time_ms=int(data.get("search_time_ms", 0)),
            errors=[ProviderFailure(**err) for err in data.get("errors", [])],
        )


# ---------------------------------------------------------------------------
# Interfaccia provider
# ---------------------------------------------------------------------------

class FlightProvider(ABC):

    name: str = "base"

    @abstractmethod
    async def search(self, params: SearchParams) -> list[FlightOffer]:
        """
        Cerca voli per i parametri dati e li restituisce nel formato comune.

        Lista vuota = nessun volo (successo valido).

        Raises:
            ProviderError: upstream irraggiungibile, non configurato,
                           status non-2xx o payload malformato.
        """
        ...

"""
GoogleFlightsProvider: provider secondario via SerpAPI.

SerpAPI espone i dati di Google Flights (incluse le low-cost europee:
Ryanair, Wizz Air, easyJet) in JSON strutturato senza scraping diretto.
Il parametro travel_class filtra lato server (honors_cabin_filter=True).

Free tier: 100 ricerche/mese, il rate limiter del registry tiene un margine.
Registrazione: https://serpapi.com

Documentazione endpoint:
  https://serpapi.com/google-flights-api
"""
import logging

import httpx

from flightbooker.services.providers.base import (
    FlightOffer,
    FlightProvider,
    Layover,
    ProviderTransportError,
    SearchParams,
    TravelClass,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "serpapi"

_SERPAPI_URL = "https://serpapi.com/search.json"

# es. "Google Flights hasn't returned any results for this query."
_NO_RESULTS_MARKERS = ("no results", "returned any results")

# 1=economy, 2=premium economy, 3=business, 4=first
_CLASS_TO_SERPAPI = {"economy": "1", "premium-economy": "2", "business": "3", "first": "4"}
_SERPAPI_LABEL_TO_CLASS: dict[str, TravelClass] = {
    "economy": "economy",
    "premium economy": "premium-economy",
    "business": "business",
    "first": "first",
}


def _format_minutes(minutes: int) -> str:
    return f"{minutes // 60}h {minutes % 60}m"


def _clock_time(serp_time: str) -> str:
    """SerpAPI restituisce orari come '2026-04-01 07:15' → '07:15'."""
    return serp_time.strip().split(" ")[-1][:5]


def _parse_offer(item: dict, offer_id: str) -> FlightOffer:
    """
    Normalizza un'offerta SerpAPI (best_flights o other_flights) in FlightOffer.

    Struttura SerpAPI:
    {
      "flights": [{"departure_airport": {"id": "JFK", "time": "..."}, "arrival_airport": {...},
                   "airline": "Delta", "flight_number": "DL 123", "airplane": "Boeing 737",
                   "travel_class": "Economy", ...}],
      "layovers": [{"id": "ORD", "duration": 70}],
      "total_duration": 325,
      "price": 289,
      ...
    }

    Raises:
        KeyError, IndexError, TypeError, ValueError: payload malformato.
    """
    flights = item["flights"]
    first_leg = flights[0]
    last_leg = flights[-1]

    label = str(first_leg.get("travel_class", "")).strip().lower()
    layovers = [
        Layover(airport=lay["id"], duration=_format_minutes(int(lay.get("duration", 0))))
        for lay in item.get("layovers", [])
    ]

    return FlightOffer(
        id=offer_id,
        provider=PROVIDER_NAME,
        origin=first_leg["departure_airport"]["id"],
        destination=last_leg["arrival_airport"]["id"],
        depart_time=_clock_time(first_leg["departure_airport"]["time"]),
        arrive_time=_clock_time(last_leg["arrival_airport"]["time"]),
        duration=_format_minutes(int(item["total_duration"])),
        price=float(item["price"]),
        airline=first_leg.get("airline", "Unknown"),
        flight_number=first_leg.get("flight_number", ""),
        aircraft=first_leg.get("airplane", ""),
        stops=len(flights) - 1,
        travel_class=_SERPAPI_LABEL_TO_CLASS.get(label),
        layovers=layovers,
        raw_offer=item,
    )


class GoogleFlightsProvider(FlightProvider):

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str,
        currency: str = "USD",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.currency = currency
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _query(self, params: SearchParams) -> dict:
        round_trip = params.trip_type == "round-trip" and params.return_date is not None
        query: dict = {
            "engine": "google_flights",
            "departure_id": params.origin,
            "arrival_id": params.destination,
            "outbound_date": params.depart_date.isoformat(),
            "currency": self.currency,
            "hl": "en",
            "type": "1" if round_trip else "2",      # 1=andata/ritorno, 2=solo andata
            "adults": str(params.passengers),
            "api_key": self.api_key,
        }
        if round_trip:
            query["return_date"] = params.return_date.isoformat()
        if params.travel_class:
            query["travel_class"] = _CLASS_TO_SERPAPI[params.travel_class]
        return query

    async def search(self, params: SearchParams) -> list[FlightOffer]:
        if not self.configured:
            raise ProviderTransportError(PROVIDER_NAME, "SERPAPI_API_KEY not configured")

        try:
            async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
                resp = await client.get(_SERPAPI_URL, params=self._query(params))
        except httpx.HTTPError as exc:
            raise ProviderTransportError(
                PROVIDER_NAME, f"Network error: {type(exc).__name__}: {exc}"
            ) from exc

        if resp.is_error:
            logger.warning(
                "SerpAPI %s→%s: HTTP %d: %s",
                params.origin, params.destination, resp.status_code, resp.text[:300],
            )
            raise ProviderTransportError(PROVIDER_NAME, f"HTTP {resp.status_code}")

        try:
            data = resp.json()
            if data.get("error") and not data.get("best_flights") and not data.get("other_flights"):
                # SerpAPI segnala "nessun risultato" con un messaggio in "error"
                if any(marker in str(data["error"]).lower() for marker in _NO_RESULTS_MARKERS):
                    return []
                raise ProviderTransportError(PROVIDER_NAME, str(data["error"]))

            offers: list[FlightOffer] = []
            # SerpAPI suddivide i risultati in best_flights e other_flights
            for section in ("best_flights", "other_flights"):
                for index, item in enumerate(data.get(section, [])):
                    if item.get("price") is None:
                        # offerta senza prezzo (capita sulle tratte con pochi dati)
                        continue
                    offers.append(_parse_offer(item, f"{PROVIDER_NAME}-{section}-{index}"))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderTransportError(
                PROVIDER_NAME, f"malformed response: {type(exc).__name__}: {exc}"
            ) from exc

        logger.debug("SerpAPI %s→%s: %d offers", params.origin, params.destination, len(offers))
        return offers

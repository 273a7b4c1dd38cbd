"""
AmadeusProvider: provider primario (API ufficiale, dati real-time).

Usa l'Amadeus Self-Service API (Flight Offers Search v2).
Il filtro travelClass viene applicato lato server: le offerte restituite sono
tutte della classe richiesta (honors_cabin_filter=True nel registry).

Ottimizzazione token: il token OAuth2 (valido ~30 min) è cachato sull'istanza
per evitare una POST /oauth2/token extra ad ogni ricerca.
Il lock asincrono serializza le richieste di token concorrenti
evitando burst multipli verso l'endpoint auth.

Rate limiting: l'API test Amadeus ha un limite di ~10 req/sec. In caso di
HTTP 429 la search ritenta con backoff esponenziale (1s, 2s), senza attesa
dopo l'ultimo tentativo. Un 401 sulla ricerca (token revocato) scarta il
token e ritenta una sola volta con un token nuovo.

Errori: credenziali mancanti, errori di rete, status non-2xx e payload
malformati diventano ProviderTransportError. Zero offerte = lista vuota.

Documentazione: https://developers.amadeus.com/self-service/category/flights
"""
import asyncio
import logging
import re
import time
from datetime import datetime

import httpx

from flightbooker.services.providers.base import (
    FlightOffer,
    FlightProvider,
    Layover,
    PriceBreakdown,
    ProviderTransportError,
    SearchParams,
    TravelClass,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "amadeus"

_HOSTS = {
    "test": "https://test.api.amadeus.com",
    "production": "https://api.amadeus.com",
}
_AUTH_PATH = "/v1/security/oauth2/token"
_SEARCH_PATH = "/v2/shopping/flight-offers"

_CABIN_TO_CLASS: dict[str, TravelClass] = {
    "ECONOMY": "economy",
    "PREMIUM_ECONOMY": "premium-economy",
    "BUSINESS": "business",
    "FIRST": "first",
}
_CLASS_TO_CABIN = {v: k for k, v in _CABIN_TO_CLASS.items()}

_MAX_ATTEMPTS = 3


def _parse_iso_duration(duration: str) -> int:
    """Converte durata ISO 8601 'PT2H30M' (o 'P1DT2H') in minuti totali."""
    days = int(re.search(r"(\d+)D", duration).group(1)) if "D" in duration else 0
    hours = int(re.search(r"(\d+)H", duration).group(1)) if "H" in duration else 0
    mins = int(re.search(r"(\d+)M", duration).group(1)) if "M" in duration else 0
    return days * 1440 + hours * 60 + mins


def _format_minutes(minutes: int) -> str:
    return f"{minutes // 60}h {minutes % 60}m"


def _clock_time(iso: str) -> str:
    """'2026-06-01T08:05:00' → '08:05' (orario locale dell'aeroporto)."""
    return datetime.fromisoformat(iso).strftime("%H:%M")


def _layovers(segments: list[dict]) -> list[Layover]:
    result: list[Layover] = []
    for current, following in zip(segments, segments[1:]):
        arrived = datetime.fromisoformat(current["arrival"]["at"])
        leaving = datetime.fromisoformat(following["departure"]["at"])
        minutes = max(0, int((leaving - arrived).total_seconds() // 60))
        result.append(Layover(airport=current["arrival"]["iataCode"], duration=_format_minutes(minutes)))
    return result


def _cabin(item: dict) -> TravelClass | None:
    """Classe dichiarata da Amadeus (autoritativa), se presente."""
    pricings = item.get("travelerPricings") or []
    if not pricings:
        return None
    details = pricings[0].get("fareDetailsBySegment") or []
    if not details:
        return None
    return _CABIN_TO_CLASS.get(details[0].get("cabin", ""))


def _parse_offer(item: dict, carriers: dict[str, str]) -> FlightOffer:
    """
    Normalizza un'offerta Amadeus nel formato FlightOffer.

    Raises:
        KeyError, IndexError, TypeError, ValueError: payload malformato.
    """
    itinerary = item["itineraries"][0]
    segments = itinerary["segments"]
    first_seg = segments[0]
    last_seg = segments[-1]

    price = item["price"]
    total = float(price["grandTotal"])
    base_fare = float(price.get("base", total))
    fees = sum(float(f.get("amount", 0)) for f in price.get("fees", []))
    taxes = round(max(0.0, total - base_fare - fees), 2)

    carrier = first_seg["carrierCode"]
    return FlightOffer(
        id=f"{PROVIDER_NAME}-{item['id']}",
        provider=PROVIDER_NAME,
        origin=first_seg["departure"]["iataCode"],
        destination=last_seg["arrival"]["iataCode"],
        depart_time=_clock_time(first_seg["departure"]["at"]),
        arrive_time=_clock_time(last_seg["arrival"]["at"]),
        duration=_format_minutes(_parse_iso_duration(itinerary["duration"])),
        price=total,
        airline=carriers.get(carrier, f"{carrier} Airlines"),
        flight_number=f"{carrier} {first_seg['number']}",
        aircraft=(first_seg.get("aircraft") or {}).get("code", ""),
        stops=len(segments) - 1,
        travel_class=_cabin(item),
        layovers=_layovers(segments),
        price_breakdown=PriceBreakdown(base_fare=base_fare, taxes=taxes, fees=fees, total=total),
        raw_offer=item,
    )


class AmadeusProvider(FlightProvider):

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        hostname: str = "test",
        currency: str = "USD",
        max_results: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_base_delay: float = 1.0,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = _HOSTS.get(hostname, _HOSTS["test"])
        self.currency = currency
        self.max_results = max_results
        self._transport = transport
        self._retry_base_delay = retry_base_delay
        # token → scadenza (time.monotonic)
        self._token: tuple[str, float] | None = None
        self._token_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=30, transport=self._transport)

    async def _get_token(self, client: httpx.AsyncClient) -> str:
        """Restituisce un token OAuth2 valido, usando la cache se disponibile.

        Il lock serializza le richieste concorrenti: solo il primo task chiama
        l'endpoint auth, gli altri attendono e poi trovano il token in cache.
        """
        async with self._token_lock:
            now = time.monotonic()
            if self._token and now < self._token[1] - 60:   # 60s di margine prima della scadenza
                return self._token[0]

            resp = await client.post(
                _AUTH_PATH,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.api_key,
                    "client_secret": self.api_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            if resp.status_code in (401, 403):
                raise ProviderTransportError(PROVIDER_NAME, "Authentication failed - check API credentials")
            resp.raise_for_status()
            data = resp.json()
            token: str = data["access_token"]
            expires_in = int(data.get("expires_in", 1799))
            self._token = (token, now + expires_in)
            return token

    def _query(self, params: SearchParams) -> dict:
        query: dict = {
            "originLocationCode": params.origin,
            "destinationLocationCode": params.destination,
            "departureDate": params.depart_date.isoformat(),
            "adults": params.passengers,
            "currencyCode": self.currency,
            "max": min(self.max_results, 250),  # Amadeus max è 250
        }
        if params.trip_type == "round-trip" and params.return_date:
            query["returnDate"] = params.return_date.isoformat()
        if params.travel_class:
            query["travelClass"] = _CLASS_TO_CABIN[params.travel_class]
        return query

    async def search(self, params: SearchParams) -> list[FlightOffer]:
        """Cerca voli con retry automatico su HTTP 429 (backoff 1s, 2s) e su un 401."""
        if not self.configured:
            raise ProviderTransportError(PROVIDER_NAME, "API credentials not configured")

        query = self._query(params)
        route = f"{params.origin}→{params.destination} {params.depart_date}"
        token_refreshed = False

        for attempt in range(_MAX_ATTEMPTS):
            last_attempt = attempt == _MAX_ATTEMPTS - 1
            try:
                async with self._client() as client:
                    token = await self._get_token(client)
                    resp = await client.get(
                        _SEARCH_PATH,
                        params=query,
                        headers={"Authorization": f"Bearer {token}"},
                    )
            except httpx.HTTPStatusError as exc:
                raise ProviderTransportError(
                    PROVIDER_NAME, f"auth HTTP {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise ProviderTransportError(
                    PROVIDER_NAME, f"Network error: {type(exc).__name__}: {exc}"
                ) from exc
            # client chiuso qui, resp.json() resta accessibile (body già letto da httpx)

            if resp.status_code == 429:
                if last_attempt:
                    logger.warning("Amadeus %s: HTTP 429 (tentativo %d/%d)", route, attempt + 1, _MAX_ATTEMPTS)
                    continue
                wait = self._retry_base_delay * 2 ** attempt  # 1s, 2s
                logger.warning(
                    "Amadeus %s: HTTP 429 (tentativo %d/%d), retry in %.1fs",
                    route, attempt + 1, _MAX_ATTEMPTS, wait,
                )
                await asyncio.sleep(wait)
                continue

            if resp.status_code == 401:
                # token non più valido: scartato anche per le ricerche successive
                self._token = None
                if not token_refreshed and not last_attempt:
                    token_refreshed = True
                    logger.info("Amadeus %s: HTTP 401, nuovo token e retry", route)
                    continue

            if resp.is_error:
                logger.warning(
                    "Amadeus %s: HTTP %d: %s", route, resp.status_code, resp.text[:300],
                )
                raise ProviderTransportError(PROVIDER_NAME, f"HTTP {resp.status_code}")

            try:
                body = resp.json()
                carriers = (body.get("dictionaries") or {}).get("carriers") or {}
                offers = [_parse_offer(item, carriers) for item in body.get("data", [])]
            except (KeyError, IndexError, TypeError, ValueError) as exc:
                raise ProviderTransportError(
                    PROVIDER_NAME, f"malformed response: {type(exc).__name__}: {exc}"
                ) from exc

            logger.debug("Amadeus %s: %d offers", route, len(offers))
            return offers

        raise ProviderTransportError(
            PROVIDER_NAME, f"Rate limit exceeded - HTTP 429 after {_MAX_ATTEMPTS} attempts"
        )

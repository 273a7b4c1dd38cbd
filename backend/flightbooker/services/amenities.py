"""
Inferenza servizi di bordo e classe di viaggio.

Regole deterministiche, applicate solo dove il provider non ha fornito il dato:
  - aeromobile wide-body      → wifi, prese elettriche, intrattenimento
  - compagnia "premium"       → wifi, prese elettriche
  - pasti                     → sempre True
  - classe di viaggio mancante:
      1. classe richiesta, se il provider restituisce solo la classe filtrata
      2. fasce di prezzo (economy → premium-economy → business → first)

È un'approssimazione: non sovrascrive mai un valore già presente.
"""
from dataclasses import dataclass

from flightbooker.services.providers.base import Amenities, FlightOffer, TravelClass

WIDEBODY_CODES = frozenset({"77W", "380", "787", "788", "789", "350", "359", "333"})
# Nomi estesi (es. SerpAPI restituisce "Boeing 777")
WIDEBODY_MARKERS: tuple[str, ...] = (
    "777", "787", "747", "A350", "A380", "A330", "A340", "DREAMLINER",
)
PREMIUM_CARRIERS = frozenset({"EK", "QR", "SQ", "CX", "LH", "BA", "AF"})


@dataclass(frozen=True)
class ClassThresholds:
    """Soglie di prezzo (valuta di riferimento). Policy, non fisica."""
    premium_economy: float = 800
    business: float = 2000
    first: float = 5000


DEFAULT_THRESHOLDS = ClassThresholds()


def is_widebody(aircraft: str) -> bool:
    code = (aircraft or "").strip().upper()
    if code in WIDEBODY_CODES:
        return True
    return any(marker in code for marker in WIDEBODY_MARKERS)


def infer_amenities(offer: FlightOffer) -> Amenities:
    widebody = is_widebody(offer.aircraft)
    premium = offer.carrier_code in PREMIUM_CARRIERS
    return Amenities(
        wifi=widebody or premium,
        meals=True,
        entertainment=widebody,
        power_outlets=widebody or premium,
    )


def class_from_price(price: float, thresholds: ClassThresholds = DEFAULT_THRESHOLDS) -> TravelClass:
    if price > thresholds.first:
        return "first"
    if price > thresholds.business:
        return "business"
    if price > thresholds.premium_economy:
        return "premium-economy"
    return "economy"


def infer_travel_class(
    offer: FlightOffer,
    requested: TravelClass | None,
    honors_cabin_filter: bool,
    thresholds: ClassThresholds = DEFAULT_THRESHOLDS,
) -> TravelClass:
    if offer.travel_class is not None:
        return offer.travel_class
    if requested is not None and honors_cabin_filter:
        return requested
    return class_from_price(offer.price, thresholds)


def enrich(
    offer: FlightOffer,
    requested: TravelClass | None = None,
    honors_cabin_filter: bool = False,
    thresholds: ClassThresholds = DEFAULT_THRESHOLDS,
) -> FlightOffer:
    """Completa l'offerta in place (amenities + classe) e la restituisce."""
    if offer.amenities is None:
        offer.amenities = infer_amenities(offer)
    if offer.travel_class is None:
        offer.travel_class = infer_travel_class(offer, requested, honors_cabin_filter, thresholds)
    return offer

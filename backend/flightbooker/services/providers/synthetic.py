"""
SyntheticProvider: fallback garantito (dati demo, mai un'eccezione).

Genera 6-9 offerte plausibili partendo solo dai parametri di ricerca:
  - roster compagnie filtrato per le regioni di origine/destinazione
  - prezzo base da tabella rotte esplicite, con fallback regionale
    (domestico ×0.6, internazionale = media regionale ×1.8 / range ×1.5)
  - orari di partenza da slot comuni, durata da modello domestico/long-haul
  - scali 0 (70%), 1 o 2 con hub plausibili
  - classe di viaggio pesata (wide-body più probabile in premium)

Non è una fonte di qualità: serve perché l'aggregatore abbia sempre almeno
una sorgente non vuota. Taggato provider="synthetic", reliability="low".

La sorgente random è iniettabile (seed) per avere output deterministico nei test.
"""
import logging
import random
from dataclasses import dataclass

from flightbooker.services.providers.base import (
    FlightOffer,
    FlightProvider,
    Layover,
    PriceBreakdown,
    SearchParams,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "synthetic"

MIN_OFFERS = 6
MAX_OFFERS = 9
PRICE_FLOOR = 150


@dataclass(frozen=True)
class _Airline:
    name: str
    code: str
    aircraft: tuple[str, ...]
    regions: tuple[str, ...]


# ---------------------------------------------------------------------------
# Tabelle
# ---------------------------------------------------------------------------

# Paese (ISO-2) per aeroporto; codici sconosciuti → "DEFAULT"
AIRPORT_COUNTRY: dict[str, str] = {
    # Stati Uniti
    "JFK": "US", "LAX": "US", "ORD": "US", "SFO": "US", "MIA": "US", "DEN": "US",
    "SEA": "US", "ATL": "US", "DFW": "US", "LAS": "US", "PHX": "US", "IAH": "US",
    "MCO": "US", "EWR": "US", "MSP": "US", "DTW": "US", "PHL": "US", "LGA": "US",
    "BWI": "US", "SLC": "US", "BOS": "US",
    # Canada / Messico
    "YYZ": "CA", "YVR": "CA", "YUL": "CA", "YYC": "CA",
    "MEX": "MX", "CUN": "MX", "GDL": "MX",
    # Sud America
    "GRU": "BR", "GIG": "BR", "EZE": "AR", "BOG": "CO", "LIM": "PE", "SCL": "CL",
    # Europa
    "LHR": "GB", "LGW": "GB", "MAN": "GB", "STN": "GB", "EDI": "GB",
    "CDG": "FR", "ORY": "FR", "NCE": "FR", "LYS": "FR",
    "FRA": "DE", "MUC": "DE", "DUS": "DE", "HAM": "DE", "BER": "DE",
    "AMS": "NL", "FCO": "IT", "MXP": "IT", "VCE": "IT", "NAP": "IT", "CTA": "IT",
    "MAD": "ES", "BCN": "ES", "PMI": "ES", "VLC": "ES",
    "ZRH": "CH", "GVA": "CH", "VIE": "AT", "BRU": "BE", "CPH": "DK", "HEL": "FI",
    "OSL": "NO", "ARN": "SE", "WAW": "PL", "KRK": "PL", "PRG": "CZ", "BUD": "HU",
    "OTP": "RO", "SOF": "BG", "ATH": "GR", "LIS": "PT", "OPO": "PT",
    "IST": "TR", "SAW": "TR",
    # India
    "BOM": "IN", "DEL": "IN", "CCU": "IN", "BLR": "IN", "MAA": "IN", "HYD": "IN",
    "COK": "IN", "AMD": "IN", "PNQ": "IN", "GOI": "IN",
    # Asia
    "PVG": "CN", "PEK": "CN", "CAN": "CN", "SZX": "CN",
    "NRT": "JP", "HND": "JP", "KIX": "JP",
    "ICN": "KR", "SIN": "SG", "BKK": "TH", "HKT": "TH", "KUL": "MY",
    "CGK": "ID", "DPS": "ID", "MNL": "PH", "HAN": "VN", "SGN": "VN",
    "HKG": "HK", "TPE": "TW",
    # Medio Oriente
    "DXB": "AE", "AUH": "AE", "DOH": "QA", "KWI": "KW", "BAH": "BH", "MCT": "OM",
    "RUH": "SA", "JED": "SA", "AMM": "JO", "TLV": "IL",
    # Africa
    "CAI": "EG", "JNB": "ZA", "CPT": "ZA", "LOS": "NG", "ADD": "ET", "NBO": "KE",
    "CMN": "MA", "RAK": "MA", "TUN": "TN",
    # Oceania
    "SYD": "AU", "MEL": "AU", "BNE": "AU", "PER": "AU",
    "AKL": "NZ", "CHC": "NZ",
}

# Prezzo base/range per paese (usato quando la rotta non è in ROUTE_PRICING)
REGIONAL_PRICING: dict[str, tuple[float, float]] = {
    "US": (250, 150), "CA": (280, 180),
    "GB": (200, 120), "FR": (220, 140), "DE": (210, 130),
    "ES": (180, 100), "IT": (190, 110), "NL": (200, 120),
    "IN": (150, 100), "JP": (400, 200), "CN": (300, 150),
    "SG": (350, 180), "TH": (200, 120),
    "AE": (450, 250), "QA": (500, 300),
    "AU": (400, 200), "NZ": (450, 250),
    "DEFAULT": (350, 200),
}

# Rotte popolari con prezzo esplicito (entrambi i sensi)
_ROUTES: dict[tuple[str, str], tuple[float, float]] = {
    ("JFK", "LAX"): (280, 200),
    ("ORD", "SFO"): (220, 150),
    ("MIA", "JFK"): (180, 120),
    ("CCU", "BOM"): (120, 80),
    ("DEL", "BOM"): (110, 70),
    ("CCU", "DEL"): (130, 90),
    ("BLR", "BOM"): (100, 60),
    ("JFK", "LHR"): (550, 300),
    ("LAX", "NRT"): (650, 400),
    ("JFK", "CDG"): (520, 280),
    ("DXB", "JFK"): (780, 450),
    ("SYD", "LAX"): (850, 500),
    ("FCO", "JFK"): (490, 250),
    ("AMS", "JFK"): (460, 220),
    ("BOM", "DXB"): (200, 100),
    ("DEL", "LHR"): (400, 200),
    ("CCU", "SIN"): (250, 120),
}
ROUTE_PRICING: dict[str, tuple[float, float]] = {}
for (_a, _b), _price in _ROUTES.items():
    ROUTE_PRICING[f"{_a}-{_b}"] = _price
    ROUTE_PRICING[f"{_b}-{_a}"] = _price

AIRLINES: tuple[_Airline, ...] = (
    # USA
    _Airline("American Airlines", "AA", ("738", "772", "321"), ("US", "DEFAULT")),
    _Airline("Delta Air Lines", "DL", ("739", "333", "32N"), ("US", "DEFAULT")),
    _Airline("United Airlines", "UA", ("738", "789", "320"), ("US", "DEFAULT")),
    _Airline("JetBlue Airways", "B6", ("320", "321", "E90"), ("US",)),
    _Airline("Southwest Airlines", "WN", ("73G", "738", "7M8"), ("US",)),
    # India
    _Airline("Air India", "AI", ("320", "321", "77W", "788"), ("IN", "DEFAULT")),
    _Airline("IndiGo", "6E", ("320", "321"), ("IN", "DEFAULT")),
    _Airline("SpiceJet", "SG", ("738", "38M"), ("IN",)),
    _Airline("Vistara", "UK", ("320", "321", "788"), ("IN", "DEFAULT")),
    _Airline("Air India Express", "IX", ("738",), ("IN", "AE", "SG")),
    # Europa
    _Airline("British Airways", "BA", ("77W", "388", "789"), ("GB", "DEFAULT")),
    _Airline("Lufthansa", "LH", ("320", "74H", "359"), ("DE", "DEFAULT")),
    _Airline("Air France", "AF", ("350", "77W", "320"), ("FR", "DEFAULT")),
    _Airline("KLM", "KL", ("789", "333", "738"), ("NL", "DEFAULT")),
    _Airline("Turkish Airlines", "TK", ("77W", "330", "738"), ("TR", "DEFAULT")),
    # Medio Oriente
    _Airline("Emirates", "EK", ("380", "77W", "789"), ("AE", "DEFAULT")),
    _Airline("Qatar Airways", "QR", ("350", "77W", "321"), ("QA", "DEFAULT")),
    _Airline("Etihad Airways", "EY", ("380", "77W", "789"), ("AE", "DEFAULT")),
    # Asia
    _Airline("Singapore Airlines", "SQ", ("380", "359", "789"), ("SG", "DEFAULT")),
    _Airline("Thai Airways", "TG", ("350", "77W", "333"), ("TH", "DEFAULT")),
    _Airline("Cathay Pacific", "CX", ("350", "77W", "333"), ("HK", "DEFAULT")),
    _Airline("ANA", "NH", ("788", "789", "77W"), ("JP", "DEFAULT")),
    _Airline("JAL", "JL", ("788", "789", "77W"), ("JP", "DEFAULT")),
    # Low cost
    _Airline("AirAsia", "AK", ("320",), ("TH", "SG", "IN")),
    _Airline("Scoot", "TR", ("788", "320"), ("SG", "DEFAULT")),
    _Airline("Jetstar", "JQ", ("320", "787"), ("AU", "SG")),
)

DEPARTURE_SLOTS: tuple[str, ...] = (
    "06:15", "07:30", "08:45", "10:20", "11:55", "13:10",
    "14:25", "15:40", "16:55", "18:10", "19:25", "20:40", "22:00",
)
# Slot poco richiesti → sconto del 10%
OFF_PEAK_SLOTS = frozenset({"06:15", "07:30", "19:25", "20:40", "22:00"})

# Wide-body che spostano il mix di classi verso premium
WIDEBODY_FOR_CLASS_MIX = frozenset({"380", "77W", "789", "359", "350", "333"})

CLASS_MIX: tuple[str, ...] = ("economy", "premium-economy", "business", "first")
CLASS_WEIGHTS_WIDEBODY: tuple[float, ...] = (0.6, 0.2, 0.15, 0.05)
CLASS_WEIGHTS_NARROWBODY: tuple[float, ...] = (0.8, 0.15, 0.05, 0.0)
CLASS_PRICE_MULTIPLIER: dict[str, float] = {
    "economy": 1.0, "premium-economy": 1.5, "business": 3.0, "first": 5.0,
}

_HUBS: dict[str, tuple[str, ...]] = {
    "AMERICAS": ("ORD", "DFW", "ATL", "DEN"),
    "EUROPE": ("FRA", "AMS", "CDG", "LHR"),
    "ASIA": ("SIN", "HKG", "NRT", "ICN"),
    "MIDDLE_EAST": ("DOH", "DXB", "AUH"),
}
_HUB_GROUP: dict[str, str] = {
    **dict.fromkeys(("US", "CA", "MX", "BR", "AR", "CO", "PE", "CL"), "AMERICAS"),
    **dict.fromkeys(
        ("GB", "FR", "DE", "NL", "IT", "ES", "CH", "AT", "BE", "DK", "FI", "NO", "SE",
         "PL", "CZ", "HU", "RO", "BG", "GR", "PT", "TR", "EG", "MA", "TN", "NG",
         "ZA", "ET", "KE"),
        "EUROPE",
    ),
    **dict.fromkeys(
        ("IN", "CN", "JP", "KR", "SG", "TH", "MY", "ID", "PH", "VN", "HK", "TW", "AU", "NZ"),
        "ASIA",
    ),
    **dict.fromkeys(("AE", "QA", "KW", "BH", "OM", "SA", "JO", "IL"), "MIDDLE_EAST"),
}

_LONG_HAUL_FROM_US = frozenset({"IN", "AU", "SG", "JP"})
_LONG_HAUL_FROM_IN = frozenset({"US", "AU"})


# ---------------------------------------------------------------------------
# Funzioni pure
# ---------------------------------------------------------------------------

def country_of(airport: str) -> str:
    return AIRPORT_COUNTRY.get(airport.upper(), "DEFAULT")


def route_price(origin: str, destination: str) -> tuple[float, float]:
    """(base, range) per la rotta: tabella esplicita o stima regionale."""
    explicit = ROUTE_PRICING.get(f"{origin}-{destination}")
    if explicit:
        return explicit

    from_country = country_of(origin)
    to_country = country_of(destination)
    from_base, from_range = REGIONAL_PRICING.get(from_country, REGIONAL_PRICING["DEFAULT"])

    if from_country == to_country:
        return from_base * 0.6, from_range * 0.6

    to_base, to_range = REGIONAL_PRICING.get(to_country, REGIONAL_PRICING["DEFAULT"])
    return round((from_base + to_base) / 2 * 1.8), round((from_range + to_range) / 2 * 1.5)


def airlines_for_route(origin: str, destination: str) -> list[_Airline]:
    from_country = country_of(origin)
    to_country = country_of(destination)
    return [
        a for a in AIRLINES
        if from_country in a.regions or to_country in a.regions or "DEFAULT" in a.regions
    ]


def _is_long_haul(from_country: str, to_country: str) -> bool:
    pair = {from_country, to_country}
    if "US" in pair:
        other = to_country if from_country == "US" else from_country
        if other in _LONG_HAUL_FROM_US:
            return True
    if "IN" in pair:
        other = to_country if from_country == "IN" else from_country
        if other in _LONG_HAUL_FROM_IN:
            return True
    return False


def _format_duration(minutes: int) -> str:
    return f"{minutes // 60}h {minutes % 60}m"


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class SyntheticProvider(FlightProvider):

    name = PROVIDER_NAME

    def __init__(self, rng: random.Random | None = None, seed: int | None = None) -> None:
        self._rng = rng or random.Random(seed)

    async def search(self, params: SearchParams) -> list[FlightOffer]:
        offers = self.generate(params)
        logger.debug(
            "Synthetic %s→%s %s: %d offerte generate",
            params.origin, params.destination, params.depart_date, len(offers),
        )
        return offers

    def generate(self, params: SearchParams) -> list[FlightOffer]:
        rng = self._rng
        origin = params.origin.upper()
        destination = params.destination.upper()
        from_country = country_of(origin)
        to_country = country_of(destination)
        domestic = from_country == to_country

        airlines = airlines_for_route(origin, destination)
        base, spread = route_price(origin, destination)
        count = rng.randint(MIN_OFFERS, MAX_OFFERS)

        # Ogni offerta è una partenza distinta (compagnia + orario)
        used: set[tuple[str, str]] = set()
        offers: list[FlightOffer] = []

        for i in range(count):
            airline = rng.choice(airlines)
            depart = rng.choice(DEPARTURE_SLOTS)
            while (airline.code, depart) in used:
                airline = rng.choice(airlines)
                depart = rng.choice(DEPARTURE_SLOTS)
            used.add((airline.code, depart))

            aircraft = rng.choice(airline.aircraft)
            hours = self._flight_hours(from_country, to_country, domestic)
            extra_minutes = rng.randint(10, 59)
            total_minutes = hours * 60 + extra_minutes

            dep_h, dep_m = (int(x) for x in depart.split(":"))
            arrival = dep_h * 60 + dep_m + total_minutes
            arrive = f"{(arrival // 60) % 24:02d}:{arrival % 60:02d}"

            stops = 0 if rng.random() < 0.7 else (1 if rng.random() < 0.8 else 2)
            travel_class = self._pick_class(aircraft)

            variation = rng.randrange(int(spread)) - spread / 2 if spread >= 1 else 0
            stops_multiplier = {0: 1.0, 1: 0.85}.get(stops, 0.7)
            time_multiplier = 0.9 if depart in OFF_PEAK_SLOTS else 1.0
            fare = round((base + variation) * stops_multiplier * time_multiplier)
            fare = round(fare * CLASS_PRICE_MULTIPLIER[travel_class])
            price = max(fare, PRICE_FLOOR) * params.passengers

            base_fare = round(price * 0.65)
            taxes = round(price * 0.25)
            number = rng.randint(1000, 9999)
            offer_id = f"{airline.code}{number}-{i}"

            offers.append(FlightOffer(
                id=offer_id,
                provider=PROVIDER_NAME,
                origin=origin,
                destination=destination,
                depart_time=depart,
                arrive_time=arrive,
                duration=_format_duration(total_minutes),
                price=price,
                airline=airline.name,
                flight_number=f"{airline.code} {number}",
                aircraft=aircraft,
                stops=stops,
                travel_class=travel_class,
                layovers=self._layovers(stops, origin, destination, from_country),
                price_breakdown=PriceBreakdown(
                    base_fare=base_fare,
                    taxes=taxes,
                    fees=price - base_fare - taxes,
                    total=price,
                ),
                reliability="low",
                booking_url=f"https://demo-booking.com/flight/{offer_id}",
            ))

        offers.sort(key=lambda o: o.price)
        return offers

    def _flight_hours(self, from_country: str, to_country: str, domestic: bool) -> int:
        rng = self._rng
        if domestic:
            if from_country == "US":
                return rng.randint(2, 5)
            return rng.randint(1, 3)
        if _is_long_haul(from_country, to_country):
            return rng.randint(10, 14)
        return rng.randint(3, 8)

    def _pick_class(self, aircraft: str) -> str:
        weights = (
            CLASS_WEIGHTS_WIDEBODY if aircraft in WIDEBODY_FOR_CLASS_MIX
            else CLASS_WEIGHTS_NARROWBODY
        )
        return self._rng.choices(CLASS_MIX, weights=weights, k=1)[0]

    def _layovers(self, stops: int, origin: str, destination: str, from_country: str) -> list[Layover]:
        if stops == 0:
            return []
        hubs = [
            h for h in _HUBS[_HUB_GROUP.get(from_country, "AMERICAS")]
            if h not in (origin, destination)
        ]
        return [
            Layover(
                airport=self._rng.choice(hubs),
                duration=_format_duration(self._rng.randint(60, 239)),
            )
            for _ in range(stops)
        ]

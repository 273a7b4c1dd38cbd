"""
Fixture condivise per la test suite FlightBooker.

Tutte le dipendenze esterne (HTTP, Redis, DB) vengono simulate con
unittest.mock o httpx.MockTransport: nessun servizio reale è necessario.
"""
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from flightbooker.services.providers.base import FlightOffer, SearchParams


# ---------------------------------------------------------------------------
# Date di riferimento
# ---------------------------------------------------------------------------

@pytest.fixture
def tomorrow():
    return date.today() + timedelta(days=1)


@pytest.fixture
def next_week():
    return date.today() + timedelta(days=7)


# ---------------------------------------------------------------------------
# SearchParams
# ---------------------------------------------------------------------------

@pytest.fixture
def params_jfk_lax(tomorrow):
    """New York → Los Angeles, domani, 1 passeggero, solo andata."""
    return SearchParams(origin="JFK", destination="LAX", depart_date=tomorrow)


@pytest.fixture
def params_round_trip(tomorrow, next_week):
    return SearchParams(
        origin="lhr",
        destination="jfk",
        depart_date=tomorrow,
        return_date=next_week,
        passengers=2,
        trip_type="round-trip",
    )


# ---------------------------------------------------------------------------
# FlightOffer fittizi
# ---------------------------------------------------------------------------

def _offer(**overrides) -> FlightOffer:
    fields = dict(
        id="test-1",
        provider="test",
        origin="JFK",
        destination="LAX",
        depart_time="08:45",
        arrive_time="12:05",
        duration="6h 20m",
        price=300.0,
        airline="Delta Air Lines",
        flight_number="DL 123",
        aircraft="739",
    )
    fields.update(overrides)
    return FlightOffer(**fields)


@pytest.fixture
def make_offer():
    """Factory di FlightOffer validi: i kwargs sovrascrivono i default."""
    return _offer


# ---------------------------------------------------------------------------
# AsyncSession mock
# ---------------------------------------------------------------------------

@pytest.fixture
def make_session():
    """AsyncSession il cui execute() restituisce le righe passate (scalars().all())."""

    def _build(rows):
        session = AsyncMock()
        result = MagicMock()
        result.scalars.return_value.all.return_value = rows
        session.execute.return_value = result
        return session

    return _build

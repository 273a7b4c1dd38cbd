"""
Test per il FlightAggregator: merge puro e ricerca end-to-end con provider finti.

Provider finti in-process (FakeProvider) al posto degli adapter HTTP:
  - offers  → restituite ad ogni chiamata (copie, l'inferenza muta in place)
  - error   → eccezione sollevata al posto delle offerte
  - delay   → attesa prima di rispondere (timeout)
Rate limiter e cache sono istanze reali con budget/TTL scelti per il test.
"""
import asyncio
import logging
import time
from dataclasses import replace
from datetime import date, timedelta

import pytest

from flightbooker.config import Settings
from flightbooker.services.cache import MemoryResultCache
from flightbooker.services.providers.base import (
    FlightProvider,
    InvalidSearchParams,
    ProviderConfig,
    ProviderFailure,
    ProviderTransportError,
)
from flightbooker.services.providers.factory import (
    FALLBACK_SOURCE_LABEL,
    ProviderRegistry,
    build_registry,
)
from flightbooker.services.providers.synthetic import MAX_OFFERS, MIN_OFFERS, SyntheticProvider
from flightbooker.services.search_engine import FlightAggregator, build_aggregator, merge_offers
from flightbooker.utils.rate_limiter import RateLimiter


class FakeProvider(FlightProvider):

    def __init__(self, name, offers=(), error=None, delay=0.0, before=None):
        self.name = name
        self.offers = list(offers)
        self.error = error
        self.delay = delay
        self.before = before
        self.calls = 0

    async def search(self, params):
        self.calls += 1
        if self.before is not None:
            await self.before()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [replace(o) for o in self.offers]


def _config(name, priority=1, reliability="high", timeout_ms=1000, per_minute=100, honors=False):
    return ProviderConfig(
        name=name,
        display_name=name.title(),
        source_label=f"{name} label",
        enabled=True,
        priority=priority,
        timeout_ms=timeout_ms,
        reliability=reliability,
        requests_per_minute=per_minute,
        requests_per_hour=per_minute * 10,
        honors_cabin_filter=honors,
    )


def _aggregator(pairs, cache=None, **kwargs) -> FlightAggregator:
    registry = ProviderRegistry(pairs, fallback=SyntheticProvider(seed=1))
    return FlightAggregator(
        registry,
        RateLimiter(registry.configs()),
        cache if cache is not None else MemoryResultCache(),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# merge_offers: funzione pura
# ---------------------------------------------------------------------------

class TestMergeOffers:

    def test_higher_reliability_wins_regardless_of_order(self, make_offer):
        medium = make_offer(id="m", price=320, reliability="medium")
        high = make_offer(id="h", price=310, reliability="high")

        merged = merge_offers([[medium], [high]])

        assert [o.id for o in merged] == ["h"]

    def test_tie_keeps_first_encountered(self, make_offer):
        first = make_offer(id="a", price=305, reliability="medium")
        second = make_offer(id="b", price=301, reliability="medium")

        assert [o.id for o in merge_offers([[first], [second]])] == ["a"]

    def test_different_price_bucket_is_not_a_duplicate(self, make_offer):
        merged = merge_offers([[make_offer(id="a", price=299)], [make_offer(id="b", price=301)]])
        assert [o.id for o in merged] == ["a", "b"]

    def test_different_departure_is_not_a_duplicate(self, make_offer):
        merged = merge_offers([[make_offer(id="a"), make_offer(id="b", depart_time="10:20")]])
        assert len(merged) == 2

    def test_sorted_and_truncated(self, make_offer):
        offers = [make_offer(id=str(i), price=1000 - i * 10, depart_time=f"{i:02d}:00") for i in range(24)]

        merged = merge_offers([offers], max_results=20)

        assert len(merged) == 20
        assert [o.price for o in merged] == sorted(o.price for o in offers)[:20]

    def test_equal_prices_keep_input_order(self, make_offer):
        a = make_offer(id="a", price=200, depart_time="06:15")
        b = make_offer(id="b", price=200, depart_time="07:30")
        assert [o.id for o in merge_offers([[a], [b]])] == ["a", "b"]


# ---------------------------------------------------------------------------
# Validazione
# ---------------------------------------------------------------------------

class TestValidation:

    @pytest.mark.parametrize("bucket", [0, -50])
    def test_price_bucket_must_be_positive(self, bucket):
        with pytest.raises(ValueError):
            _aggregator([], price_bucket=bucket)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"destination": "JFK"},
            {"origin": "NYC1"},
            {"passengers": 0},
            {"passengers": 10},
            {"depart_date": date.today() - timedelta(days=1)},
            {"trip_type": "round-trip"},
            {"trip_type": "round-trip", "return_date": date.today()},
        ],
    )
    async def test_invalid_params_raise_before_any_provider_call(self, params_jfk_lax, make_offer, overrides):
        provider = FakeProvider("fake", [make_offer()])
        aggregator = _aggregator([(_config("fake"), provider)])

        with pytest.raises(InvalidSearchParams):
            await aggregator.search(replace(params_jfk_lax, **overrides))

        assert provider.calls == 0


# ---------------------------------------------------------------------------
# Ricerca
# ---------------------------------------------------------------------------

class TestSearch:

    async def test_merges_all_providers_sorted_by_price(self, params_jfk_lax, make_offer):
        a = FakeProvider("a", [make_offer(id="a1", price=500), make_offer(id="a2", price=200, depart_time="06:15")])
        b = FakeProvider("b", [make_offer(id="b1", price=350, airline="United Airlines", flight_number="UA 1")])
        aggregator = _aggregator([(_config("a"), a), (_config("b", priority=2, reliability="medium"), b)])

        result = await aggregator.search(params_jfk_lax)

        assert [o.id for o in result.flights] == ["a2", "b1", "a1"]
        assert result.sources == ["a label", "b label"]
        assert result.errors == []
        assert result.cached is False

    async def test_reliability_stamped_from_provider_config(self, params_jfk_lax, make_offer):
        provider = FakeProvider("a", [make_offer(reliability="low")])
        aggregator = _aggregator([(_config("a", reliability="medium"), provider)])

        result = await aggregator.search(params_jfk_lax)

        assert result.flights[0].reliability == "medium"

    async def test_duplicate_across_providers_keeps_reliable_one(self, params_jfk_lax, make_offer):
        # il provider meno affidabile ha priorità più alta: vince comunque "high"
        cheap = FakeProvider("cheap", [make_offer(id="cheap-1", price=310)])
        gds = FakeProvider("gds", [make_offer(id="gds-1", price=330)])
        aggregator = _aggregator([
            (_config("cheap", priority=1, reliability="medium"), cheap),
            (_config("gds", priority=2, reliability="high"), gds),
        ])

        result = await aggregator.search(params_jfk_lax)

        assert [o.id for o in result.flights] == ["gds-1"]
        assert result.sources == ["cheap label", "gds label"]

    async def test_inference_fills_amenities_and_class(self, params_jfk_lax, make_offer):
        provider = FakeProvider("a", [make_offer(price=2500, aircraft="77W")])
        aggregator = _aggregator([(_config("a"), provider)])

        flight = (await aggregator.search(params_jfk_lax)).flights[0]

        assert flight.amenities.entertainment is True
        assert flight.travel_class == "business"

    async def test_requested_class_used_for_filtering_providers(self, params_jfk_lax, make_offer):
        filtered = FakeProvider("f", [make_offer(id="f1", price=300)])
        unfiltered = FakeProvider("u", [make_offer(id="u1", price=400, depart_time="10:20")])
        aggregator = _aggregator([
            (_config("f", honors=True), filtered),
            (_config("u", priority=2, reliability="medium"), unfiltered),
        ])

        result = await aggregator.search(replace(params_jfk_lax, travel_class="business"))

        classes = {o.id: o.travel_class for o in result.flights}
        assert classes == {"f1": "business", "u1": "economy"}

    async def test_results_truncated_to_max_results(self, params_jfk_lax, make_offer):
        offers = [make_offer(id=str(i), price=100 + i * 60, depart_time=f"{i:02d}:30") for i in range(24)]
        aggregator = _aggregator([(_config("a"), FakeProvider("a", offers))], max_results=20)

        result = await aggregator.search(params_jfk_lax)

        assert len(result.flights) == 20
        assert result.flights[0].price == 100

    async def test_providers_run_concurrently(self, params_jfk_lax, make_offer):
        # "first" parte per primo ma attende un evento impostato da "second":
        # con esecuzione sequenziale andrebbe in timeout
        started = asyncio.Event()

        async def wait_for_sibling():
            await started.wait()

        async def signal_sibling():
            started.set()

        first = FakeProvider("first", [make_offer(id="x", price=300)], before=wait_for_sibling)
        second = FakeProvider(
            "second", [make_offer(id="y", price=400, depart_time="10:20")], before=signal_sibling
        )
        aggregator = _aggregator([
            (_config("first", timeout_ms=2000), first),
            (_config("second", priority=2), second),
        ])

        result = await aggregator.search(params_jfk_lax)

        assert [o.id for o in result.flights] == ["x", "y"]
        assert result.errors == []


# ---------------------------------------------------------------------------
# Isolamento errori (bulkhead)
# ---------------------------------------------------------------------------

class TestFailureIsolation:

    async def test_failed_provider_becomes_error_entry(self, params_jfk_lax, make_offer, caplog):
        broken = FakeProvider("broken", error=ProviderTransportError("broken", "HTTP 500"))
        healthy = FakeProvider("healthy", [make_offer(id="ok")])
        aggregator = _aggregator([
            (_config("broken"), broken),
            (_config("healthy", priority=2), healthy),
        ])

        with caplog.at_level(logging.WARNING, logger="flightbooker.services.search_engine"):
            result = await aggregator.search(params_jfk_lax)

        assert [o.id for o in result.flights] == ["ok"]
        assert result.sources == ["healthy label"]
        assert result.errors == [ProviderFailure("broken", "HTTP 500", "transport")]
        assert any("broken" in msg and "ProviderTransportError" in msg for msg in caplog.messages)

    async def test_unexpected_exception_is_a_transport_failure(self, params_jfk_lax, make_offer):
        buggy = FakeProvider("buggy", error=RuntimeError("boom"))
        healthy = FakeProvider("healthy", [make_offer(id="ok")])
        aggregator = _aggregator([(_config("buggy"), buggy), (_config("healthy", priority=2), healthy)])

        result = await aggregator.search(params_jfk_lax)

        assert [o.id for o in result.flights] == ["ok"]
        assert result.errors[0].provider == "buggy"
        assert result.errors[0].kind == "transport"
        assert "RuntimeError" in result.errors[0].message

    async def test_slow_provider_times_out(self, params_jfk_lax, make_offer):
        slow = FakeProvider("slow", [make_offer(id="late")], delay=5)
        fast = FakeProvider("fast", [make_offer(id="fast", price=900)])
        aggregator = _aggregator([
            (_config("slow", timeout_ms=50), slow),
            (_config("fast", priority=2), fast),
        ])

        started = time.perf_counter()
        result = await aggregator.search(params_jfk_lax)
        elapsed = time.perf_counter() - started

        assert [o.id for o in result.flights] == ["fast"]
        assert result.errors == [ProviderFailure("slow", "timeout after 50ms", "timeout")]
        assert elapsed < 1.0
        assert result.search_time_ms < 1000
        assert slow.calls == 1

    async def test_malformed_provider_output_is_rejected(self, params_jfk_lax, make_offer):
        class Sloppy(FlightProvider):
            name = "sloppy"

            async def search(self, params):
                return [{"price": 10}]

        healthy = FakeProvider("healthy", [make_offer(id="ok")])
        aggregator = _aggregator([(_config("sloppy"), Sloppy()), (_config("healthy", priority=2), healthy)])

        result = await aggregator.search(params_jfk_lax)

        assert [o.id for o in result.flights] == ["ok"]
        assert result.errors[0].provider == "sloppy"

    async def test_infinite_price_from_adapter_is_a_provider_failure(self, params_jfk_lax, make_offer):
        class Overflowing(FlightProvider):
            name = "overflowing"

            async def search(self, params):
                return [make_offer(id="inf", price=float("inf"))]

        healthy = FakeProvider("healthy", [make_offer(id="ok", price=300)])
        aggregator = _aggregator([
            (_config("overflowing"), Overflowing()),
            (_config("healthy", priority=2), healthy),
        ])

        result = await aggregator.search(params_jfk_lax)

        assert [(o.id, o.price) for o in result.flights] == [("ok", 300)]
        assert [e.provider for e in result.errors] == ["overflowing"]
        assert "ValueError" in result.errors[0].message

    @pytest.mark.parametrize("price", [float("inf"), float("nan"), -1.0])
    async def test_price_mutated_after_construction_is_rejected(self, params_jfk_lax, make_offer, price):
        class Mutating(FlightProvider):
            name = "mutating"

            async def search(self, params):
                offer = make_offer(id="bad")
                offer.price = price
                return [offer]

        healthy = FakeProvider("healthy", [make_offer(id="ok", price=300)])
        aggregator = _aggregator([(_config("mutating"), Mutating()), (_config("healthy", priority=2), healthy)])

        result = await aggregator.search(params_jfk_lax)

        assert [o.id for o in result.flights] == ["ok"]
        assert result.errors == [
            ProviderFailure("mutating", "malformed response: non-finite or non-positive price", "transport")
        ]

    async def test_empty_success_is_not_an_error(self, params_jfk_lax, make_offer):
        empty = FakeProvider("empty", [])
        healthy = FakeProvider("healthy", [make_offer(id="ok")])
        aggregator = _aggregator([(_config("empty"), empty), (_config("healthy", priority=2), healthy)])

        result = await aggregator.search(params_jfk_lax)

        assert result.errors == []
        assert result.sources == ["healthy label"]


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class TestThrottling:

    async def test_throttled_provider_is_skipped(self, params_jfk_lax, make_offer, caplog):
        provider = FakeProvider("limited", [make_offer()])
        aggregator = _aggregator([(_config("limited", per_minute=1), provider)])

        await aggregator.search(params_jfk_lax)
        with caplog.at_level(logging.INFO, logger="flightbooker.services.search_engine"):
            # rotta diversa: nessun cache hit
            result = await aggregator.search(replace(params_jfk_lax, destination="SFO"))

        assert provider.calls == 1
        assert result.errors == [ProviderFailure("limited", "rate limit exceeded", "throttled")]
        throttle_logs = [r for r in caplog.records if "limited" in r.getMessage() and "saltato" in r.getMessage()]
        assert throttle_logs and throttle_logs[0].levelno == logging.INFO

    async def test_all_throttled_falls_back_to_synthetic(self, params_jfk_lax, make_offer):
        provider = FakeProvider("limited", [make_offer()])
        aggregator = _aggregator([(_config("limited", per_minute=1), provider)])
        await aggregator.search(params_jfk_lax)

        result = await aggregator.search(replace(params_jfk_lax, destination="SFO"))

        assert result.flights
        assert all(o.provider == "synthetic" for o in result.flights)
        assert result.sources == [FALLBACK_SOURCE_LABEL]

    async def test_usage_counters_follow_real_calls_only(self, params_jfk_lax, make_offer):
        ok = FakeProvider("ok", [make_offer()])
        down = FakeProvider("down", error=ProviderTransportError("down", "HTTP 500"))
        limited = FakeProvider("limited", [make_offer(id="l", airline="United")])
        aggregator = _aggregator([
            (_config("ok"), ok),
            (_config("down", priority=2), down),
            (_config("limited", priority=3, per_minute=1), limited),
        ])

        await aggregator.search(params_jfk_lax)
        await aggregator.search(replace(params_jfk_lax, destination="SFO"))

        stats = aggregator.rate_limiter.stats()
        assert (stats["ok"]["total_requests"], stats["ok"]["successful_requests"]) == (2, 2)
        assert (stats["down"]["total_requests"], stats["down"]["failed_requests"]) == (2, 2)
        # la seconda chiamata a "limited" è saltata dal rate limiter
        assert stats["limited"]["total_requests"] == 1
        assert stats["ok"]["last_used_at"] is not None


# ---------------------------------------------------------------------------
# Fallback sintetico
# ---------------------------------------------------------------------------

class TestFallback:

    async def test_all_providers_fail(self, params_jfk_lax, caplog):
        a = FakeProvider("a", error=ProviderTransportError("a", "down"))
        b = FakeProvider("b", error=ProviderTransportError("b", "down"))
        aggregator = _aggregator([(_config("a"), a), (_config("b", priority=2), b)])

        with caplog.at_level(logging.WARNING, logger="flightbooker.services.search_engine"):
            result = await aggregator.search(params_jfk_lax)

        assert MIN_OFFERS <= len(result.flights) <= MAX_OFFERS
        assert all(o.reliability == "low" for o in result.flights)
        assert result.sources == [FALLBACK_SOURCE_LABEL]
        assert [e.provider for e in result.errors] == ["a", "b"]
        assert any("fallback" in msg for msg in caplog.messages)

    async def test_no_enabled_providers(self, params_jfk_lax):
        aggregator = _aggregator([])

        result = await aggregator.search(params_jfk_lax)

        assert MIN_OFFERS <= len(result.flights) <= MAX_OFFERS
        assert result.sources == [FALLBACK_SOURCE_LABEL]
        assert result.errors == []

    async def test_all_empty_triggers_fallback(self, params_jfk_lax):
        aggregator = _aggregator([(_config("a"), FakeProvider("a", []))])

        result = await aggregator.search(params_jfk_lax)

        assert result.flights
        assert result.sources == [FALLBACK_SOURCE_LABEL]
        assert result.errors == []


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class TestCaching:

    async def test_second_search_is_served_from_cache(self, params_jfk_lax, make_offer):
        provider = FakeProvider("a", [make_offer()])
        aggregator = _aggregator([(_config("a"), provider)])

        first = await aggregator.search(params_jfk_lax)
        second = await aggregator.search(params_jfk_lax)

        assert provider.calls == 1
        assert second.cached is True
        assert second.flights == first.flights
        assert second.sources == first.sources
        assert second.search_time_ms == first.search_time_ms

    async def test_cache_key_is_case_insensitive(self, params_jfk_lax, make_offer):
        provider = FakeProvider("a", [make_offer()])
        aggregator = _aggregator([(_config("a"), provider)])

        await aggregator.search(params_jfk_lax)
        result = await aggregator.search(replace(params_jfk_lax, origin="jfk", destination="lax"))

        assert result.cached is True
        assert provider.calls == 1

    async def test_expired_entry_triggers_new_search(self, params_jfk_lax, make_offer):
        now = [0.0]
        provider = FakeProvider("a", [make_offer()])
        aggregator = _aggregator(
            [(_config("a"), provider)],
            cache=MemoryResultCache(clock=lambda: now[0]),
            cache_ttl_seconds=300,
        )

        await aggregator.search(params_jfk_lax)
        now[0] = 301
        result = await aggregator.search(params_jfk_lax)

        assert result.cached is False
        assert provider.calls == 2

    async def test_mutating_a_result_does_not_corrupt_later_hits(self, params_jfk_lax, make_offer):
        provider = FakeProvider("a", [make_offer(id="x"), make_offer(id="y", airline="United", price=450)])
        aggregator = _aggregator([(_config("a"), provider)])

        first = await aggregator.search(params_jfk_lax)
        first.flights.clear()
        second = await aggregator.search(params_jfk_lax)
        second.flights[0].price = 1.0
        third = await aggregator.search(params_jfk_lax)

        assert second.cached is True
        assert [o.id for o in third.flights] == ["x", "y"]
        assert third.flights[0].price == 300.0
        assert provider.calls == 1

    async def test_distinct_searches_do_not_accumulate_expired_entries(self, params_jfk_lax, make_offer):
        now = [0.0]
        cache = MemoryResultCache(clock=lambda: now[0])
        aggregator = _aggregator([(_config("a"), FakeProvider("a", [make_offer()]))], cache=cache, cache_ttl_seconds=1)

        for destination in ("LAX", "SFO", "ORD", "MIA", "SEA"):
            await aggregator.search(replace(params_jfk_lax, destination=destination))
            now[0] += 10

        assert len(cache) <= 1


# ---------------------------------------------------------------------------
# Scenario completo: nessuna credenziale configurata
# ---------------------------------------------------------------------------

class TestDemoScenario:

    async def test_jfk_lax_without_credentials(self, params_jfk_lax):
        settings = Settings(amadeus_api_key="", amadeus_api_secret="", serpapi_api_key="", cache_backend="memory")
        aggregator = build_aggregator(settings, build_registry(settings))

        result = await aggregator.search(params_jfk_lax)

        assert MIN_OFFERS <= len(result.flights) <= MAX_OFFERS
        assert all(o.provider == "synthetic" for o in result.flights)
        assert all(o.origin == "JFK" and o.destination == "LAX" for o in result.flights)
        assert all(o.price > 0 for o in result.flights)
        assert result.sources == ["Demo Data"]
        assert result.errors == []
        prices = [o.price for o in result.flights]
        assert prices == sorted(prices)
        assert all(o.amenities is not None and o.travel_class is not None for o in result.flights)

    async def test_round_trip_normalized_search(self, params_round_trip):
        aggregator = _aggregator([])

        result = await aggregator.search(params_round_trip)

        assert all(o.origin == "LHR" and o.destination == "JFK" for o in result.flights)

"""
Core logic per la ricerca multi-provider.

Flusso:
  1. Validazione + normalizzazione dei parametri (InvalidSearchParams prima di
     qualsiasi chiamata esterna).
  2. Cache lookup sulla chiave normalizzata: hit → risultato salvato, cached=True.
  3. Fan-out concorrente su tutti i provider abilitati (ordine di lancio =
     priorità). Ogni chiamata ha il proprio rate-limit check e il proprio
     timeout; un provider lento o in errore non blocca gli altri.
  4. Nessuna offerta da nessun provider → fallback sintetico diretto.
  5. Inferenza amenities/classe, dedup, ordinamento per prezzo, top N.
  6. Salvataggio in cache con TTL breve.

Gli errori dei provider non escono mai da search(): finiscono in
AggregatedResult.errors come dati.
"""
import asyncio
import logging
import math
import time
from collections.abc import Iterable
from dataclasses import replace
from itertools import chain

from flightbooker.config import Settings
from flightbooker.services.amenities import DEFAULT_THRESHOLDS, ClassThresholds, enrich
from flightbooker.services.cache import ResultCache, build_cache
from flightbooker.services.providers.base import (
    RELIABILITY_RANK,
    AggregatedResult,
    FlightOffer,
    FlightProvider,
    NoProvidersAvailable,
    ProviderConfig,
    ProviderError,
    ProviderFailure,
    ProviderThrottled,
    ProviderTimeout,
    ProviderTransportError,
    SearchParams,
)
from flightbooker.services.providers.factory import (
    DEFAULT_PROVIDER_CONFIGS,
    FALLBACK_SOURCE_LABEL,
    ProviderRegistry,
)
from flightbooker.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 20
DEFAULT_PRICE_BUCKET = 50
DEFAULT_CACHE_TTL_SECONDS = 300

_FALLBACK_CONFIG = replace(DEFAULT_PROVIDER_CONFIGS["synthetic"], source_label=FALLBACK_SOURCE_LABEL)


# ---------------------------------------------------------------------------
# Merge: funzione pura
# ---------------------------------------------------------------------------

def dedup_key(offer: FlightOffer, price_bucket: float) -> tuple[str, str, int]:
    """Stessa compagnia, stesso orario, stessa fascia di prezzo → stesso volo."""
    return offer.airline, offer.depart_time, math.floor(offer.price / price_bucket)


def merge_offers(
    groups: Iterable[list[FlightOffer]],
    price_bucket: float = DEFAULT_PRICE_BUCKET,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> list[FlightOffer]:
    """
    Appiattisce, deduplica e ordina per prezzo crescente.

    Tra duplicati vince la reliability più alta; a parità resta il primo
    incontrato. L'ordine dei gruppi (priorità provider) rende il risultato
    indipendente dall'ordine di completamento delle chiamate.
    """
    unique: dict[tuple[str, str, int], FlightOffer] = {}
    for offer in chain.from_iterable(groups):
        key = dedup_key(offer, price_bucket)
        existing = unique.get(key)
        if existing is None:
            unique[key] = offer
        elif RELIABILITY_RANK.get(offer.reliability, 0) > RELIABILITY_RANK.get(existing.reliability, 0):
            unique[key] = offer

    flights = sorted(unique.values(), key=lambda o: o.price)
    return flights[:max_results]


# ---------------------------------------------------------------------------
# Aggregatore
# ---------------------------------------------------------------------------

class FlightAggregator:

    def __init__(
        self,
        registry: ProviderRegistry,
        rate_limiter: RateLimiter,
        cache: ResultCache,
        *,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        max_results: int = DEFAULT_MAX_RESULTS,
        price_bucket: float = DEFAULT_PRICE_BUCKET,
        class_thresholds: ClassThresholds = DEFAULT_THRESHOLDS,
    ) -> None:
        if not price_bucket > 0:
            raise ValueError(f"price_bucket must be > 0 (got {price_bucket})")
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.max_results = max_results
        self.price_bucket = price_bucket
        self.class_thresholds = class_thresholds

    async def search(self, params: SearchParams) -> AggregatedResult:
        """
        Ricerca aggregata su tutti i provider abilitati.

        Raises:
            InvalidSearchParams: unico errore propagato, prima del fan-out.
        """
        started = time.perf_counter()
        params.validate()
        params = params.normalized()
        key = params.cache_key()

        # --- 1. Cache
        cached = await self.cache.get(key)
        if cached is not None:
            logger.info("Cache hit %s→%s %s", params.origin, params.destination, params.depart_date)
            return replace(cached, cached=True)

        # --- 2/3/4. Fan-out con isolamento per provider
        providers = self.registry.enabled()
        outcomes = await self._fan_out(params, providers)

        groups: list[tuple[ProviderConfig, list[FlightOffer]]] = []
        sources: list[str] = []
        errors: list[ProviderFailure] = []
        for config, outcome in outcomes:
            if isinstance(outcome, ProviderFailure):
                errors.append(outcome)
            elif outcome:
                groups.append((config, outcome))
                sources.append(config.source_label)

        # --- 5. Fallback sintetico
        try:
            self._require_offers(groups, providers)
        except NoProvidersAvailable as exc:
            logger.warning("%s → fallback su dati sintetici", exc)
            offers = await self.registry.fallback.search(params)
            groups = [(_FALLBACK_CONFIG, offers)]
            sources.append(FALLBACK_SOURCE_LABEL)

        # --- 6. Inferenza
        for config, offers in groups:
            for offer in offers:
                offer.reliability = config.reliability
                enrich(offer, params.travel_class, config.honors_cabin_filter, self.class_thresholds)

        # --- 7/8. Merge
        flights = merge_offers((offers for _, offers in groups), self.price_bucket, self.max_results)

        result = AggregatedResult(
            flights=flights,
            sources=sources,
            cached=False,
            search_time_ms=round((time.perf_counter() - started) * 1000),
            errors=errors,
        )

        # --- 9. Cache
        if flights:
            await self.cache.set(key, result, self.cache_ttl_seconds)

        logger.info(
            "Ricerca %s→%s %s completata in %dms: %d voli da %s, %d errori",
            params.origin, params.destination, params.depart_date,
            result.search_time_ms, len(flights), sources, len(errors),
        )
        return result

    @staticmethod
    def _require_offers(
        groups: list[tuple[ProviderConfig, list[FlightOffer]]],
        providers: list[tuple[ProviderConfig, FlightProvider]],
    ) -> None:
        if groups:
            return
        if not providers:
            raise NoProvidersAvailable("Nessun provider abilitato")
        raise NoProvidersAvailable(f"Nessuna offerta da {len(providers)} provider")

    async def _fan_out(
        self,
        params: SearchParams,
        providers: list[tuple[ProviderConfig, FlightProvider]],
    ) -> list[tuple[ProviderConfig, list[FlightOffer] | ProviderFailure]]:
        """
        Lancia tutti i provider in un TaskGroup e attende che si assestino.

        _settle() non rilancia mai: un fallimento non cancella i task fratelli.
        I risultati sono indicizzati per posizione (= priorità).
        """
        outcomes: list[list[FlightOffer] | ProviderFailure] = [[] for _ in providers]

        async def _store(index: int, config: ProviderConfig, adapter: FlightProvider) -> None:
            outcomes[index] = await self._settle(config, adapter, params)

        async with asyncio.TaskGroup() as tg:
            for index, (config, adapter) in enumerate(providers):
                tg.create_task(_store(index, config, adapter), name=f"provider:{config.name}")

        return [(config, outcomes[i]) for i, (config, _) in enumerate(providers)]

    async def _settle(
        self,
        config: ProviderConfig,
        adapter: FlightProvider,
        params: SearchParams,
    ) -> list[FlightOffer] | ProviderFailure:
        try:
            offers = await self._call_provider(config, adapter, params)
        except ProviderThrottled as exc:
            logger.info("Provider %s saltato: %s", config.name, exc.message)
            return ProviderFailure(config.name, exc.message, exc.kind)
        except ProviderError as exc:
            self.rate_limiter.record_result(config.name, success=False)
            logger.warning(
                "Provider %s %s→%s fallito: %s: %s",
                config.name, params.origin, params.destination, type(exc).__name__, exc.message,
            )
            return ProviderFailure(config.name, exc.message, exc.kind)
        except Exception as exc:
            self.rate_limiter.record_result(config.name, success=False)
            logger.warning(
                "Provider %s %s→%s errore inatteso: %s: %s",
                config.name, params.origin, params.destination, type(exc).__name__, exc,
            )
            return ProviderFailure(config.name, f"{type(exc).__name__}: {exc}", "transport")

        self.rate_limiter.record_result(config.name, success=True)
        return offers

    async def _call_provider(
        self,
        config: ProviderConfig,
        adapter: FlightProvider,
        params: SearchParams,
    ) -> list[FlightOffer]:
        if self.rate_limiter.should_throttle(config.name):
            raise ProviderThrottled(config.name, "rate limit exceeded")

        try:
            # una risposta tardiva viene cancellata insieme al task: mai nel merge
            async with asyncio.timeout(config.timeout_ms / 1000):
                offers = await adapter.search(params)
        except TimeoutError as exc:
            raise ProviderTimeout(config.name, f"timeout after {config.timeout_ms}ms") from exc

        if not isinstance(offers, list) or not all(isinstance(o, FlightOffer) for o in offers):
            raise ProviderTransportError(config.name, "malformed response: expected a list of FlightOffer")
        if not all(math.isfinite(o.price) and o.price > 0 for o in offers):
            raise ProviderTransportError(config.name, "malformed response: non-finite or non-positive price")
        return offers


def build_aggregator(
    settings: Settings,
    registry: ProviderRegistry,
    cache: ResultCache | None = None,
) -> FlightAggregator:
    """Aggregatore con rate limiter, cache e soglie presi da settings."""
    return FlightAggregator(
        registry,
        RateLimiter(registry.configs()),
        cache if cache is not None else build_cache(settings),
        cache_ttl_seconds=settings.search_cache_ttl_seconds,
        max_results=settings.max_results,
        price_bucket=settings.dedup_price_bucket,
        class_thresholds=ClassThresholds(
            premium_economy=settings.class_threshold_premium_economy,
            business=settings.class_threshold_business,
            first=settings.class_threshold_first,
        ),
    )

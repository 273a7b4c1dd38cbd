"""
Flight Provider Registry: configurazione e istanze dei provider.

Un ProviderRegistry è costruito una volta (lifespan FastAPI o test) e passato
al FlightAggregator: nessuna tabella globale mutabile, ogni test può creare
il proprio registry isolato.

Funzioni esposte:
  DEFAULT_PROVIDER_CONFIGS → policy di default per ogni provider
  build_registry()         → registry da settings (+ override opzionali)
  load_registry()          → registry con override letti da api_providers (DB)

I provider reali sono abilitati solo se le credenziali sono configurate.
Il provider sintetico è sempre disponibile come fallback, anche se disabilitato
come sorgente regolare.
"""
import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from types import MappingProxyType

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flightbooker.config import Settings
from flightbooker.models.api_provider import ApiProvider
from flightbooker.services.providers.amadeus import AmadeusProvider
from flightbooker.services.providers.base import FlightProvider, ProviderConfig, RELIABILITY_RANK
from flightbooker.services.providers.google_flights import GoogleFlightsProvider
from flightbooker.services.providers.synthetic import SyntheticProvider

logger = logging.getLogger(__name__)

# Limiti con margine di sicurezza rispetto ai free tier
DEFAULT_PROVIDER_CONFIGS: dict[str, ProviderConfig] = {
    "amadeus": ProviderConfig(
        name="amadeus",
        display_name="Amadeus",
        source_label="Amadeus (Real-time)",
        enabled=True,
        priority=1,
        timeout_ms=10_000,
        reliability="high",
        requests_per_minute=10,
        requests_per_hour=100,
        honors_cabin_filter=True,
    ),
    "serpapi": ProviderConfig(
        name="serpapi",
        display_name="Google Flights (SerpAPI)",
        source_label="Google Flights (SerpAPI)",
        enabled=True,
        priority=2,
        timeout_ms=10_000,
        reliability="medium",
        requests_per_minute=5,
        requests_per_hour=50,
        honors_cabin_filter=True,
    ),
    "synthetic": ProviderConfig(
        name="synthetic",
        display_name="Mock Provider",
        source_label="Demo Data",
        enabled=True,
        priority=9,
        timeout_ms=1_000,
        reliability="low",
        requests_per_minute=1000,
        requests_per_hour=10000,
    ),
}

FALLBACK_SOURCE_LABEL = "Fallback Demo Data"


class ProviderRegistry:

    def __init__(
        self,
        providers: Iterable[tuple[ProviderConfig, FlightProvider]],
        fallback: FlightProvider | None = None,
    ) -> None:
        pairs = list(providers)
        self._configs: Mapping[str, ProviderConfig] = MappingProxyType({c.name: c for c, _ in pairs})
        self._adapters: Mapping[str, FlightProvider] = MappingProxyType({c.name: a for c, a in pairs})
        self.fallback: FlightProvider = fallback or SyntheticProvider()

    def enabled(self) -> list[tuple[ProviderConfig, FlightProvider]]:
        """Provider abilitati, ordinati per priorità crescente."""
        active = [c for c in self._configs.values() if c.enabled]
        active.sort(key=lambda c: c.priority)
        return [(c, self._adapters[c.name]) for c in active]

    def config(self, name: str) -> ProviderConfig | None:
        return self._configs.get(name)

    def configs(self) -> list[ProviderConfig]:
        return list(self._configs.values())

    def adapter(self, name: str) -> FlightProvider | None:
        return self._adapters.get(name)

    def health(self) -> dict[str, bool]:
        """Abilitato e configurato (credenziali presenti) per ogni provider."""
        status: dict[str, bool] = {}
        for name, config in self._configs.items():
            adapter = self._adapters[name]
            status[name] = config.enabled and getattr(adapter, "configured", True)
        return status


def _build_adapter(name: str, settings: Settings) -> FlightProvider:
    if name == "amadeus":
        return AmadeusProvider(
            settings.amadeus_api_key,
            settings.amadeus_api_secret,
            hostname=settings.amadeus_hostname,
            currency=settings.currency,
        )
    if name == "serpapi":
        return GoogleFlightsProvider(settings.serpapi_api_key, currency=settings.currency)
    if name == "synthetic":
        return SyntheticProvider()
    raise ValueError(f"Provider sconosciuto: {name}")


def build_registry(
    settings: Settings,
    overrides: Mapping[str, ProviderConfig] | None = None,
) -> ProviderRegistry:
    """
    Costruisce il registry dai default, applicando eventuali override.

    Amadeus e SerpAPI vengono disabilitati se mancano le credenziali
    (restano visibili in health() come non configurati).
    """
    configs = dict(DEFAULT_PROVIDER_CONFIGS)
    configs.update(overrides or {})

    pairs: list[tuple[ProviderConfig, FlightProvider]] = []
    fallback: FlightProvider | None = None
    for name, config in configs.items():
        adapter = _build_adapter(name, settings)
        if not getattr(adapter, "configured", True) and config.enabled:
            logger.info("Provider %s: credenziali non configurate, disabilitato", name)
            config = replace(config, enabled=False)
        if isinstance(adapter, SyntheticProvider):
            fallback = adapter
        pairs.append((config, adapter))

    return ProviderRegistry(pairs, fallback=fallback)


def _apply_row(config: ProviderConfig, row: ApiProvider) -> ProviderConfig:
    """Sovrascrive solo i campi valorizzati nella riga."""
    changes: dict = {"enabled": bool(row.is_active)}
    if row.display_name:
        changes["display_name"] = row.display_name
    if row.priority is not None:
        changes["priority"] = row.priority
    if row.timeout_ms is not None and row.timeout_ms > 0:
        changes["timeout_ms"] = row.timeout_ms
    if row.reliability in RELIABILITY_RANK:
        changes["reliability"] = row.reliability
    if row.requests_per_minute is not None:
        changes["requests_per_minute"] = row.requests_per_minute
    if row.requests_per_hour is not None:
        changes["requests_per_hour"] = row.requests_per_hour
    return replace(config, **changes)


async def load_registry(session: AsyncSession, settings: Settings) -> ProviderRegistry:
    """
    Legge la tabella api_providers e costruisce il registry.

    Righe con nome sconosciuto vengono ignorate (loggate): il core supporta
    solo i provider con un adapter.
    """
    result = await session.execute(select(ApiProvider))
    overrides: dict[str, ProviderConfig] = {}
    for row in result.scalars().all():
        default = DEFAULT_PROVIDER_CONFIGS.get(row.name)
        if default is None:
            logger.warning("api_providers: provider sconosciuto '%s' ignorato", row.name)
            continue
        overrides[row.name] = _apply_row(default, row)

    logger.info("Configurazione provider caricata dal DB: %s", sorted(overrides))
    return build_registry(settings, overrides)

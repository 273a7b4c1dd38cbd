"""
Cache layer per i risultati aggregati (TTL breve, chiave = SearchParams normalizzati).

Flusso di utilizzo:
    1. get()  → hit? restituisce l'AggregatedResult senza contattare i provider
    2. set()  → dopo ogni ricerca completata, salva il risultato con TTL
    3. Il TTL è definito da SEARCH_CACHE_TTL_SECONDS nel .env (default 5 min)
    4. invalidate() → amministrazione: una tratta (prefisso) o tutto

Due backend:
  - MemoryResultCache: dict in-process protetto da lock (default)
  - RedisResultCache:  Redis condiviso tra worker, payload JSON con SET EX

Le chiavi iniziano con route_cache_prefix(origin, destination), quindi
invalidare una tratta è un semplice match sul prefisso.
"""
import copy
import json
import logging
import threading
import time
from collections.abc import Callable
from functools import partial
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from flightbooker.config import Settings
from flightbooker.db.redis import get_redis
from flightbooker.services.providers.base import AggregatedResult

logger = logging.getLogger(__name__)


class ResultCache(Protocol):

    async def get(self, key: str) -> AggregatedResult | None:
        ...

    async def set(self, key: str, value: AggregatedResult, ttl_seconds: float) -> None:
        ...

    async def invalidate(self, prefix: str | None = None) -> int:
        ...

    async def stats(self) -> dict[str, Any]:
        ...


########################################################################
#       IN-MEMORY
########################################################################
class MemoryResultCache:
    """
    Ogni set() elimina prima le entry scadute: la dimensione resta
    limitata alle ricerche vive nell'ultimo TTL.

    I valori sono copiati in ingresso e in uscita: chi modifica un
    risultato ricevuto non altera le hit successive.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, AggregatedResult]] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> AggregatedResult | None:
        """Restituisce una copia del valore se presente e non scaduto, altrimenti None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return copy.deepcopy(value)

    async def set(self, key: str, value: AggregatedResult, ttl_seconds: float) -> None:
        snapshot = copy.deepcopy(value)
        with self._lock:
            now = self._clock()
            self._sweep(now)
            self._entries[key] = (now + ttl_seconds, snapshot)

    async def invalidate(self, prefix: str | None = None) -> int:
        """Rimuove le chiavi che iniziano con prefix (tutte se None). Ritorna quante."""
        with self._lock:
            if prefix is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                matching = [k for k in self._entries if k.startswith(prefix)]
                for k in matching:
                    del self._entries[k]
                removed = len(matching)
        if removed:
            logger.info("Cache: invalidate %d ricerche (%s)", removed, prefix or "tutte")
        return removed

    async def stats(self) -> dict[str, Any]:
        with self._lock:
            self._sweep(self._clock())
            return {"backend": "memory", "entries": len(self._entries)}

    def clear_expired(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _sweep(self, now: float) -> int:
        # chiamare con il lock acquisito
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


########################################################################
#       REDIS
########################################################################
class RedisResultCache:
    """
    Backend condiviso. Un errore Redis non deve mai far fallire la ricerca:
    get() degrada a miss, set() viene saltato (entrambi loggati).
    """

    def __init__(self, client_factory: Callable, prefix: str = "flight:search") -> None:
        # client_factory: coroutine function che restituisce un client redis.asyncio
        self._client_factory = client_factory
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> AggregatedResult | None:
        try:
            client: aioredis.Redis = await self._client_factory()
            raw = await client.get(self._key(key))
        except RedisError as exc:
            logger.warning("Cache Redis get fallita (%s): %s", type(exc).__name__, exc)
            return None
        if raw is None:
            return None
        try:
            return AggregatedResult.from_dict(json.loads(raw))
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Cache Redis: payload non valido per %s: %s", key, exc)
            return None

    async def set(self, key: str, value: AggregatedResult, ttl_seconds: float) -> None:
        payload = json.dumps(value.to_dict())
        try:
            client: aioredis.Redis = await self._client_factory()
            await client.set(self._key(key), payload, ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            logger.warning("Cache Redis set fallita (%s): %s", type(exc).__name__, exc)

    async def invalidate(self, prefix: str | None = None) -> int:
        """SCAN + DELETE sulle chiavi del prefisso; 0 (loggato) se Redis non risponde."""
        pattern = self._key(f"{prefix or ''}*")
        removed = 0
        try:
            client: aioredis.Redis = await self._client_factory()
            async for redis_key in client.scan_iter(match=pattern):
                removed += await client.delete(redis_key)
        except RedisError as exc:
            logger.warning("Cache Redis invalidate fallita (%s): %s", type(exc).__name__, exc)
            return removed
        if removed:
            logger.info("Cache Redis: invalidate %d ricerche (%s)", removed, pattern)
        return removed

    async def stats(self) -> dict[str, Any]:
        entries = 0
        try:
            client: aioredis.Redis = await self._client_factory()
            async for _ in client.scan_iter(match=self._key("*")):
                entries += 1
        except RedisError as exc:
            logger.warning("Cache Redis stats fallita (%s): %s", type(exc).__name__, exc)
            return {"backend": "redis", "entries": None}
        return {"backend": "redis", "entries": entries}


def build_cache(settings: Settings) -> ResultCache:
    """Sceglie il backend in base a CACHE_BACKEND."""
    if settings.cache_backend == "redis":
        return RedisResultCache(partial(get_redis, settings.redis_url))
    return MemoryResultCache()

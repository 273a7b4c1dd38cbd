"""
Client Redis asincroni per la cache condivisa dei risultati di ricerca.

Usati solo con CACHE_BACKEND=redis: build_cache() passa a RedisResultCache
una get_redis legata a settings.redis_url. Un client per URL, aperto alla
prima richiesta e chiuso da close_redis() nello shutdown del lifespan.
"""
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from flightbooker.config import settings

logger = logging.getLogger(__name__)

_clients: dict[str, aioredis.Redis] = {}


async def get_redis(url: str | None = None) -> aioredis.Redis:
    """Client per url (default REDIS_URL), creato una volta sola."""
    url = url or settings.redis_url
    client = _clients.get(url)
    if client is None:
        client = aioredis.from_url(url, decode_responses=True)
        _clients[url] = client
    return client


async def ping_redis(url: str | None = None) -> bool:
    """Verifica all'avvio. Redis giù non blocca l'app: la cache degrada a miss."""
    try:
        client = await get_redis(url)
        await client.ping()
    except RedisError as exc:
        logger.warning("Redis non raggiungibile (%s): %s", type(exc).__name__, exc)
        return False
    return True


async def close_redis() -> None:
    """Chiude tutti i client aperti."""
    while _clients:
        _, client = _clients.popitem()
        await client.aclose()

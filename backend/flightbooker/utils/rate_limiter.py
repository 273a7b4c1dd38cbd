"""
Rate limiter in-process a finestra scorrevole per proteggere le API esterne.

Uso tipico:
    limiter = RateLimiter(registry.configs())
    if limiter.should_throttle("amadeus"):
        ...  # provider saltato per questa ricerca

Note:
- Due finestre per provider: ultimo minuto e ultima ora.
- Check-and-record è atomico (threading.Lock): due ricerche concorrenti non
  possono superare insieme il limite.
- Una chiamata rifiutata NON viene registrata nelle finestre.
- record_result() aggiorna i contatori cumulativi per provider dopo ogni
  chiamata effettiva (le chiamate saltate per throttling non contano).
"""
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from flightbooker.services.providers.base import ProviderConfig

MINUTE_WINDOW: float = 60.0
HOUR_WINDOW: float = 3600.0


class _Windows:
    __slots__ = ("minute", "hour")

    def __init__(self) -> None:
        self.minute: deque[float] = deque()
        self.hour: deque[float] = deque()

    def prune(self, now: float) -> None:
        while self.minute and now - self.minute[0] >= MINUTE_WINDOW:
            self.minute.popleft()
        while self.hour and now - self.hour[0] >= HOUR_WINDOW:
            self.hour.popleft()


@dataclass
class _Counters:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_used_at: datetime | None = None


class RateLimiter:

    def __init__(
        self,
        configs: Iterable[ProviderConfig],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limits: dict[str, tuple[int, int]] = {
            c.name: (c.requests_per_minute, c.requests_per_hour) for c in configs
        }
        self._clock = clock
        self._windows: dict[str, _Windows] = {}
        self._counters: dict[str, _Counters] = {}
        self._lock = threading.Lock()

    def should_throttle(self, provider_name: str) -> bool:
        """
        Verifica il budget del provider e, se c'è spazio, registra la chiamata.

        Returns:
            True se il provider va saltato, False se la chiamata è permessa
            (ed è già stata conteggiata).
        """
        limits = self._limits.get(provider_name)
        if limits is None:
            return False
        per_minute, per_hour = limits

        with self._lock:
            now = self._clock()
            windows = self._windows.setdefault(provider_name, _Windows())
            windows.prune(now)

            if len(windows.minute) >= per_minute or len(windows.hour) >= per_hour:
                return True

            windows.minute.append(now)
            windows.hour.append(now)
            return False

    def usage(self, provider_name: str) -> tuple[int, int]:
        """(richieste ultimo minuto, richieste ultima ora)."""
        with self._lock:
            windows = self._windows.get(provider_name)
            if windows is None:
                return 0, 0
            windows.prune(self._clock())
            return len(windows.minute), len(windows.hour)

    def record_result(self, provider_name: str, success: bool) -> None:
        with self._lock:
            counters = self._counters.setdefault(provider_name, _Counters())
            counters.total_requests += 1
            if success:
                counters.successful_requests += 1
            else:
                counters.failed_requests += 1
            counters.last_used_at = datetime.now(timezone.utc)

    def stats(self) -> dict[str, dict]:
        """Uso corrente vs limiti più i contatori, per /flights/providers?action=stats."""
        result: dict[str, dict] = {}
        for name, (per_minute, per_hour) in self._limits.items():
            last_minute, last_hour = self.usage(name)
            with self._lock:
                counters = self._counters.get(name, _Counters())
                result[name] = {
                    "requests_last_minute": last_minute,
                    "requests_last_hour": last_hour,
                    "requests_per_minute": per_minute,
                    "requests_per_hour": per_hour,
                    "total_requests": counters.total_requests,
                    "successful_requests": counters.successful_requests,
                    "failed_requests": counters.failed_requests,
                    "last_used_at": counters.last_used_at,
                }
        return result

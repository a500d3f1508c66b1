# router/rate_limiter.py
import threading
import time
from typing import Callable


class RateLimiter:
    """
    Limitador de intervalo mínimo compartido por todas las llamadas salientes.
    Thread-safe: los hilos del orchestrator reservan turno en orden de llegada
    y duermen fuera del lock.
    """

    def __init__(
        self,
        min_interval_seconds: float = 0.5,
        clock:   Callable[[], float]       = time.monotonic,
        sleeper: Callable[[float], None]   = time.sleep,
    ):
        self._interval = max(0.0, min_interval_seconds)
        self._clock    = clock
        self._sleeper  = sleeper
        self._lock     = threading.Lock()
        self._next_allowed_at = 0.0

    def acquire(self) -> None:
        """Bloquea hasta que la próxima llamada esté permitida."""
        if self._interval <= 0.0:
            return

        with self._lock:
            now  = self._clock()
            slot = max(now, self._next_allowed_at)
            self._next_allowed_at = slot + self._interval

        wait = slot - now
        if wait > 0:
            self._sleeper(wait)

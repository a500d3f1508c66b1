# pipeline/retry.py
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from chapterflow.errors import ExternalAPIError, PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Política de reintentos única para todos los pasos del pipeline.

    Reintenta solo las excepciones de retry_on, y nunca las que declaran
    retryable=False (ej: contenido rechazado por el proveedor).
    Backoff exponencial: backoff_seconds * backoff_factor^(intento-1), con tope.
    """
    max_attempts:        int   = 3
    backoff_seconds:     float = 5.0
    backoff_factor:      float = 3.0
    max_backoff_seconds: float = 60.0
    retry_on:            tuple[type[BaseException], ...] = (ExternalAPIError, PersistenceError)
    sleeper:             Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Pausa antes del intento attempt+1 (attempt empieza en 1)."""
        delay = self.backoff_seconds * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_backoff_seconds)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        if not isinstance(error, self.retry_on):
            return False
        return getattr(error, "retryable", True)

    def execute(
        self,
        fn:       Callable[[], T],
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    ) -> tuple[T, int]:
        """
        Ejecuta fn con reintentos. Devuelve (resultado, intentos usados).
        Si se agotan los intentos relanza la última excepción.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(), attempt
            except Exception as e:
                if not self.should_retry(e, attempt):
                    raise
                delay = self.delay_for(attempt)
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                logger.debug("Reintento %d tras %.1fs: %s", attempt + 1, delay, e)
                if delay > 0:
                    self.sleeper(delay)

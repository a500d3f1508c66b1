# router/router.py
import logging
from typing import Optional

from chapterflow.errors import ExternalAPIError, UnknownModelError
from chapterflow.router.base import BaseModel
from chapterflow.router.models import CompletionResponse, ResponseFormat
from chapterflow.router.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class AllModelsExhaustedError(ExternalAPIError):
    """Se lanza cuando ningún modelo pudo completar la petición."""
    pass


class Router:
    """
    Decide qué modelo usar en cada llamada.
    El Translator y el Extractor llaman a Router.complete() — nunca a un adaptador.

    Responsabilidades:
    - Seleccionar el modelo disponible de mayor prioridad
    - Hacer failover si el modelo falla por error de red o rate limit
    - Propagar errores de contenido (no son de disponibilidad)
    - Espaciar todas las llamadas salientes con un RateLimiter compartido
    """

    def __init__(self, models: list[BaseModel], rate_limiter: Optional[RateLimiter] = None):
        # La lista ya viene ordenada por prioridad desde el config
        if not models:
            raise ValueError("El Router necesita al menos un modelo")
        self._models       = models
        self._rate_limiter = rate_limiter or RateLimiter(min_interval_seconds=0.0)

    def complete(
        self,
        system_prompt:   str,
        user_prompt:     str,
        temperature:     float,
        max_tokens:      int,
        response_format: Optional[ResponseFormat] = None,
        model:           Optional[str] = None,
    ) -> CompletionResponse:
        """
        Intenta completar con el mejor modelo disponible.
        model fija el adaptador (por nombre o id de modelo) — sin failover a otros.
        Si falla por rate limit o red, hace failover automático.
        Lanza AllModelsExhaustedError si ninguno está disponible.
        """
        last_error: Exception | None = None

        for adapter in self._candidates(model):
            if not adapter.is_available():
                logger.info("Modelo %s no disponible (quota), saltando", adapter.name)
                continue

            self._rate_limiter.acquire()

            try:
                logger.debug("Intentando completion con %s", adapter.name)
                response = adapter.complete(
                    system_prompt   = system_prompt,
                    user_prompt     = user_prompt,
                    temperature     = temperature,
                    max_tokens      = max_tokens,
                    response_format = response_format,
                )
                logger.info(
                    "Completion con %s | tokens: %d+%d",
                    adapter.name,
                    response.tokens_input,
                    response.tokens_output,
                )
                return response

            except Exception as e:
                # Distinguimos entre errores retryables (red, quota)
                # y errores de contenido (la petición tiene un problema)
                if _is_content_error(e):
                    logger.error(
                        "Error de contenido en %s — no se hace failover: %s",
                        adapter.name, e,
                    )
                    raise ExternalAPIError(
                        f"{adapter.name} rechazó la petición: {e}",
                        retryable=False,
                    ) from e

                logger.warning(
                    "Modelo %s falló con error retryable: %s. Pasando al siguiente.",
                    adapter.name, e,
                )
                last_error = e
                continue

        raise AllModelsExhaustedError(
            f"Ningún modelo disponible. Último error: {last_error}"
        )

    def available_models(self) -> list[str]:
        """Útil para logging y para el CLI."""
        return [m.name for m in self._models if m.is_available()]

    def _candidates(self, model: Optional[str]) -> list[BaseModel]:
        if not model:
            return self._models
        wanted = model.strip().lower()
        pinned = [
            m for m in self._models
            if m.name.lower() == wanted or m.model_id.lower() == wanted
        ]
        if not pinned:
            configured = ", ".join(m.name for m in self._models)
            raise UnknownModelError(
                f"Modelo '{model}' no configurado. Disponibles: {configured}"
            )
        return pinned


def _is_content_error(e: Exception) -> bool:
    """
    Determina si el error es del contenido de la petición (no de disponibilidad).
    Estos errores no activan failover — son el mismo error en cualquier modelo.
    """
    import anthropic
    import openai
    import google.api_core.exceptions as google_ex

    content_errors = (
        anthropic.BadRequestError,
        openai.BadRequestError,
        google_ex.InvalidArgument,
        ValueError,
    )
    return isinstance(e, content_errors)

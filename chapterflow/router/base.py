# router/base.py
from abc import ABC, abstractmethod
from typing import Optional

from chapterflow.router.models import CompletionResponse, ResponseFormat


class BaseModel(ABC):
    """
    Contrato que deben cumplir todos los adaptadores.
    El Translator, el Extractor y el Router solo hablan con esta interfaz.
    Nunca importan claude.py, gemini.py ni openai_compat.py directamente.
    """

    @abstractmethod
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
        Envía una petición de completion y devuelve el texto generado.
        model sobreescribe el id de modelo configurado para esta llamada.
        SÍ puede lanzar: TimeoutError, RateLimitError, APIError del SDK.
        El Router los captura y hace failover.
        """
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """
        Consulta quota del día en storage antes de hacer cualquier
        llamada de red. Si superó el límite → False sin latencia.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Identificador del adaptador. Debe coincidir con quota_usage.model."""
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Id del modelo del proveedor que usa por defecto (ej: deepseek-chat)."""
        ...

# router/claude.py
import logging
import time
from typing import TYPE_CHECKING, Optional

import anthropic

from chapterflow.router.base import BaseModel
from chapterflow.router.models import CompletionResponse, ModelConfig, ResponseFormat

if TYPE_CHECKING:
    from chapterflow.storage.repository import Repository

logger = logging.getLogger(__name__)

# Errores que activan failover hacia otro modelo
_RETRYABLE_ERRORS = (
    anthropic.RateLimitError,
    anthropic.APITimeoutError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)

# Claude no tiene modo JSON nativo: se refuerza en el system prompt
_JSON_SUFFIX = "\n\nRespond with exactly one valid JSON object and nothing else."


class ClaudeAdapter(BaseModel):

    def __init__(self, config: ModelConfig, repo: "Repository"):
        self._config = config
        self._repo   = repo
        self._client = anthropic.Anthropic(
            api_key = config.api_key,
            timeout = config.timeout_seconds,
        )

    @property
    def name(self) -> str:
        return self._config.name   # "claude", coincide con quota_usage.model

    @property
    def model_id(self) -> str:
        return self._config.model

    def is_available(self) -> bool:
        # Primero: ¿está en cooldown temporal por error de red?
        if self._config._unavailable_until is not None:
            if time.time() < self._config._unavailable_until:
                return False
            self._config._unavailable_until = None  # cooldown expirado

        # Segundo: ¿tiene quota disponible hoy?
        used = self._repo.get_token_usage_today(self.name)
        return used < self._config.daily_token_limit

    def complete(
        self,
        system_prompt:   str,
        user_prompt:     str,
        temperature:     float,
        max_tokens:      int,
        response_format: Optional[ResponseFormat] = None,
        model:           Optional[str] = None,
    ) -> CompletionResponse:
        if response_format == ResponseFormat.JSON_OBJECT:
            system_prompt = system_prompt + _JSON_SUFFIX

        try:
            response = self._client.messages.create(
                model       = model or self._config.model,
                max_tokens  = max_tokens,
                temperature = temperature,
                system      = system_prompt,
                messages    = [{"role": "user", "content": user_prompt}],
            )
        except _RETRYABLE_ERRORS as e:
            logger.warning("Claude error retryable: %s", e)
            self._config._unavailable_until = time.time() + self._config.cooldown_seconds
            raise   # El Router captura esto y hace failover

        except anthropic.BadRequestError as e:
            # Error de contenido, no de disponibilidad
            logger.error("Claude BadRequest: %s", e)
            raise

        raw_text      = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        tokens_input  = response.usage.input_tokens
        tokens_output = response.usage.output_tokens

        self._repo.add_token_usage(self.name, tokens_input + tokens_output)

        return CompletionResponse(
            text          = raw_text.strip(),
            model_used    = self.name,
            tokens_input  = tokens_input,
            tokens_output = tokens_output,
        )

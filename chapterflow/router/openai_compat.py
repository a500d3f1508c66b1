# router/openai_compat.py
import logging
import time
from typing import TYPE_CHECKING, Optional

import openai

from chapterflow.router.base import BaseModel
from chapterflow.router.models import CompletionResponse, ModelConfig, ResponseFormat

if TYPE_CHECKING:
    from chapterflow.storage.repository import Repository

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.deepseek.com"

_RETRYABLE_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


class OpenAICompatibleAdapter(BaseModel):
    """
    Adaptador para APIs compatibles con OpenAI (DeepSeek por defecto).
    base_url en el config permite apuntar a OpenAI, Ollama, etc.
    """

    def __init__(self, config: ModelConfig, repo: "Repository"):
        self._config = config
        self._repo   = repo
        self._client = openai.OpenAI(
            api_key  = config.api_key,
            base_url = config.base_url or _DEFAULT_BASE_URL,
            timeout  = config.timeout_seconds,
        )

    @property
    def name(self) -> str:
        return self._config.name   # "deepseek"

    @property
    def model_id(self) -> str:
        return self._config.model

    def is_available(self) -> bool:
        if self._config._unavailable_until is not None:
            if time.time() < self._config._unavailable_until:
                return False
            self._config._unavailable_until = None

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
        extra = {}
        if response_format == ResponseFormat.JSON_OBJECT:
            extra["response_format"] = {"type": "json_object"}

        try:
            completion = self._client.chat.completions.create(
                model       = model or self._config.model,
                temperature = temperature,
                max_tokens  = max_tokens,
                messages    = [
                    {"role": "system", "content": system_prompt},
                    {"role": "user",   "content": user_prompt},
                ],
                **extra,
            )
        except _RETRYABLE_ERRORS as e:
            logger.warning("%s error retryable: %s", self.name, e)
            self._config._unavailable_until = time.time() + self._config.cooldown_seconds
            raise

        except openai.BadRequestError as e:
            logger.error("%s BadRequest: %s", self.name, e)
            raise

        raw_text = ""
        if completion.choices:
            raw_text = completion.choices[0].message.content or ""

        usage         = completion.usage
        tokens_input  = usage.prompt_tokens if usage else 0
        tokens_output = usage.completion_tokens if usage else 0

        self._repo.add_token_usage(self.name, tokens_input + tokens_output)

        return CompletionResponse(
            text          = raw_text.strip(),
            model_used    = self.name,
            tokens_input  = tokens_input,
            tokens_output = tokens_output,
        )

# router/gemini.py
import logging
import time
from typing import TYPE_CHECKING, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from chapterflow.router.base import BaseModel
from chapterflow.router.models import CompletionResponse, ModelConfig, ResponseFormat

if TYPE_CHECKING:
    from chapterflow.storage.repository import Repository

logger = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (
    google_exceptions.ResourceExhausted,   # 429
    google_exceptions.DeadlineExceeded,    # timeout
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
)


class GeminiAdapter(BaseModel):

    def __init__(self, config: ModelConfig, repo: "Repository"):
        self._config = config
        self._repo   = repo
        genai.configure(api_key=config.api_key)

    @property
    def name(self) -> str:
        return self._config.name   # "gemini"

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
        # Gemini soporta forzar JSON nativo
        mime_type = (
            "application/json"
            if response_format == ResponseFormat.JSON_OBJECT
            else "text/plain"
        )
        generative_model = genai.GenerativeModel(
            model_name         = model or self._config.model,
            system_instruction = system_prompt,
            generation_config  = genai.GenerationConfig(
                temperature        = temperature,
                max_output_tokens  = max_tokens,
                response_mime_type = mime_type,
            ),
        )

        try:
            response = generative_model.generate_content(
                user_prompt,
                request_options={"timeout": self._config.timeout_seconds},
            )
        except _RETRYABLE_ERRORS as e:
            logger.warning("Gemini error retryable: %s", e)
            self._config._unavailable_until = time.time() + self._config.cooldown_seconds
            raise

        # response.text lanza ValueError si la respuesta fue bloqueada
        raw_text      = response.text
        tokens_input  = response.usage_metadata.prompt_token_count
        tokens_output = response.usage_metadata.candidates_token_count

        self._repo.add_token_usage(self.name, tokens_input + tokens_output)

        return CompletionResponse(
            text          = raw_text.strip(),
            model_used    = self.name,
            tokens_input  = tokens_input,
            tokens_output = tokens_output,
        )

# chapterflow/translator.py
import logging
import time
from typing import Callable, Optional

from chapterflow.context.story_context import ExtractedContext
from chapterflow.errors import ExternalAPIError
from chapterflow.processor.chunker import Chunker
from chapterflow.router.prompt_builder import build_translate_prompt, build_translate_user_prompt
from chapterflow.router.router import Router

logger = logging.getLogger(__name__)

_DEFAULT_CHUNK_DELAY_SECONDS = 1.0
_TRANSLATE_TEMPERATURE = 0.7
_TRANSLATE_MAX_TOKENS  = 8000


class Translator:
    """
    Traduce texto usando el Router y el contexto acumulado de la historia.

    Un chunk = una llamada externa. Los chunks de un capítulo se traducen
    en serie, todos contra el mismo snapshot de contexto.
    No recupera errores: cualquier fallo de la llamada se propaga al caller.
    """

    def __init__(
        self,
        router:        Router,
        chunker:       Optional[Chunker] = None,
        source_lang:   str   = "Chinese",
        target_lang:   str   = "Vietnamese",
        chunk_delay_seconds: float = _DEFAULT_CHUNK_DELAY_SECONDS,
        temperature:   float = _TRANSLATE_TEMPERATURE,
        max_tokens:    int   = _TRANSLATE_MAX_TOKENS,
        sleeper:       Callable[[float], None] = time.sleep,
    ):
        self._router      = router
        self._chunker     = chunker or Chunker()
        self._source_lang = source_lang
        self._target_lang = target_lang
        self._chunk_delay = chunk_delay_seconds
        self._temperature = temperature
        self._max_tokens  = max_tokens
        self._sleep       = sleeper

    def translate(
        self,
        chunk:   str,
        context: Optional[ExtractedContext],
        model:   Optional[str] = None,
    ) -> str:
        system_prompt = build_translate_prompt(
            source_lang = self._source_lang,
            target_lang = self._target_lang,
            context     = context,
        )
        response = self._router.complete(
            system_prompt = system_prompt,
            user_prompt   = build_translate_user_prompt(chunk),
            temperature   = self._temperature,
            max_tokens    = self._max_tokens,
            model         = model,
        )

        if not response.text:
            raise ExternalAPIError(f"{response.model_used} no devolvió traducción")

        return response.text

    def translate_long_text(
        self,
        text:    str,
        context: Optional[ExtractedContext],
        model:   Optional[str] = None,
    ) -> str:
        """
        Chunkea el texto y traduce cada chunk en orden, con una pausa fija
        entre llamadas (no después de la última).
        Si un chunk falla, falla todo: los chunks ya traducidos se descartan.
        """
        chunks = self._chunker.split(text)
        translated: list[str] = []

        for i, chunk in enumerate(chunks):
            started = time.monotonic()
            translated.append(self.translate(chunk, context, model=model))
            logger.info(
                "Chunk %d/%d traducido en %.2fs (%d caracteres)",
                i + 1, len(chunks), time.monotonic() - started, len(chunk),
            )

            if i < len(chunks) - 1 and self._chunk_delay > 0:
                self._sleep(self._chunk_delay)

        return "\n\n".join(translated)

# context/extractor.py
import json
import logging
import re
from typing import Optional, Protocol

from chapterflow.context.merger import merge_contexts
from chapterflow.context.story_context import ExtractedContext
from chapterflow.router.models import CompletionResponse, ResponseFormat
from chapterflow.router.prompt_builder import build_extraction_prompt

logger = logging.getLogger(__name__)

# La continuidad incremental no necesita el capítulo entero
_DEFAULT_PREFIX_CHARS = 4000
_EXTRACTION_TEMPERATURE = 0.3
_EXTRACTION_MAX_TOKENS  = 8000

_USER_PROMPT = "Analyze the following chapter and extract its narrative facts:\n\n{text}"

# Captura JSON en bloque markdown. Usa {.*} greedy para soportar JSON anidado.
_MARKDOWN_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)
_BARE_JSON_RE     = re.compile(r"\{.*\}", re.DOTALL)


class CompletionModel(Protocol):
    """
    Interfaz mínima que el Extractor necesita del modelo.
    Desacoplado del Router — solo necesita poder hacer una llamada.
    """
    def complete(
        self,
        system_prompt:   str,
        user_prompt:     str,
        temperature:     float,
        max_tokens:      int,
        response_format: Optional[ResponseFormat] = None,
        model:           Optional[str] = None,
    ) -> CompletionResponse: ...


class ContextExtractor:
    """
    Responsabilidad única: dado un capítulo traducido, devolver un
    ExtractedContext con personajes, términos, escenarios y tramas.

    Best-effort: nunca lanza excepción. Cualquier fallo (API, JSON
    malformado, forma inesperada) devuelve un contexto vacío y se loguea.
    La decisión de mezclarlo con el contexto de la historia la toma el Orchestrator.
    """

    def __init__(self, model: CompletionModel, prefix_chars: int = _DEFAULT_PREFIX_CHARS):
        self._model        = model
        self._prefix_chars = prefix_chars

    def extract(self, translated_text: str, model: Optional[str] = None) -> ExtractedContext:
        excerpt = (translated_text or "")[: self._prefix_chars]
        if not excerpt.strip():
            return ExtractedContext()

        try:
            response = self._model.complete(
                system_prompt   = build_extraction_prompt(),
                user_prompt     = _USER_PROMPT.format(text=excerpt),
                temperature     = _EXTRACTION_TEMPERATURE,
                max_tokens      = _EXTRACTION_MAX_TOKENS,
                response_format = ResponseFormat.JSON_OBJECT,
                model           = model,
            )
        except Exception as e:
            logger.warning("Extractor falló: %s — contexto sin cambios", e)
            return ExtractedContext()

        logger.info(
            "Contexto extraído con %s | tokens: %d+%d",
            response.model_used, response.tokens_input, response.tokens_output,
        )
        return self._parse_context(response.text)

    def _parse_context(self, raw_text: str) -> ExtractedContext:
        data = self._try_parse_json((raw_text or "").strip())

        if not data:
            logger.warning("Extractor: respuesta no parseable — contexto sin cambios")
            return ExtractedContext()

        # Normaliza la salida del modelo: sin duplicados y con la ventana de tramas aplicada
        return merge_contexts(ExtractedContext(), ExtractedContext.from_dict(data))

    @staticmethod
    def _try_parse_json(text: str) -> Optional[dict]:
        # Intento 1: JSON directo
        try:
            result = json.loads(text)
            if isinstance(result, dict):
                return result
        except (json.JSONDecodeError, ValueError):
            pass

        # Intento 2: dentro de bloque markdown
        match = _MARKDOWN_JSON_RE.search(text)
        if match:
            try:
                result = json.loads(match.group(1))
                if isinstance(result, dict):
                    return result
            except (json.JSONDecodeError, ValueError):
                pass

        # Intento 3: primer objeto JSON en el texto
        match = _BARE_JSON_RE.search(text)
        if match:
            try:
                result = json.loads(match.group(0))
                if isinstance(result, dict):
                    return result
            except (json.JSONDecodeError, ValueError):
                pass

        return None

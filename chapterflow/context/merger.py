# context/merger.py
from typing import Callable, Optional, TypeVar

from chapterflow.context.story_context import ExtractedContext

# Ventana deslizante de tramas: solo las más recientes sobreviven
MAX_PLOT_POINTS = 20

T = TypeVar("T")


def merge_contexts(
    existing: Optional[ExtractedContext],
    incoming: ExtractedContext,
) -> ExtractedContext:
    """
    Combina el contexto acumulado de la historia con lo extraído de un capítulo.
    Función pura: no modifica sus argumentos ni hace I/O.

    - Personajes, términos y escenarios se deduplican por su identidad
      normalizada (trim + casefold). En colisión gana la descripción
      estrictamente más larga; en empate se conserva la anterior.
    - Las tramas se concatenan y se recortan a las últimas MAX_PLOT_POINTS.
    """
    if existing is None:
        return incoming

    return ExtractedContext(
        characters = _merge_by_key(
            existing.characters, incoming.characters,
            key  = lambda c: c.name,
            text = lambda c: c.description,
        ),
        terms = _merge_by_key(
            existing.terms, incoming.terms,
            key  = lambda t: t.term,
            text = lambda t: t.meaning,
        ),
        settings = _merge_by_key(
            existing.settings, incoming.settings,
            key  = lambda s: s.location,
            text = lambda s: s.description,
        ),
        plot_points = (list(existing.plot_points) + list(incoming.plot_points))[-MAX_PLOT_POINTS:],
    )


def normalize_key(value: str) -> str:
    return (value or "").strip().casefold()


def _merge_by_key(
    existing: list[T],
    incoming: list[T],
    key:      Callable[[T], str],
    text:     Callable[[T], str],
) -> list[T]:
    merged: dict[str, T] = {}
    for entry in [*existing, *incoming]:
        k = normalize_key(key(entry))
        current = merged.get(k)
        if current is None or len(text(entry) or "") > len(text(current) or ""):
            merged[k] = entry
    return list(merged.values())

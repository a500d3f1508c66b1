# context/story_context.py
import json
from dataclasses import dataclass, field, asdict
from typing import Optional


@dataclass
class Character:
    name:        str
    description: str
    personality: Optional[str] = None


@dataclass
class Term:
    term:    str
    meaning: str


@dataclass
class Setting:
    location:    str
    description: str


@dataclass
class PlotPoint:
    point:       str
    description: str


@dataclass
class ExtractedContext:
    """
    Hechos narrativos derivados de un capítulo traducido.
    También es la forma que devuelve el merge: solo las cuatro listas,
    sin identidad de historia ni versión.
    """
    characters:  list[Character] = field(default_factory=list)
    terms:       list[Term]      = field(default_factory=list)
    settings:    list[Setting]   = field(default_factory=list)
    plot_points: list[PlotPoint] = field(default_factory=list)

    def is_empty(self) -> bool:
        return (
            not self.characters
            and not self.terms
            and not self.settings
            and not self.plot_points
        )

    # ------------------------------------------------------------------
    # Serialización
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "characters":  [_drop_none(asdict(c)) for c in self.characters],
            "terms":       [asdict(t) for t in self.terms],
            "settings":    [asdict(s) for s in self.settings],
            "plot_points": [asdict(p) for p in self.plot_points],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractedContext":
        """
        Construye el contexto desde un dict no confiable (JSON del modelo o de SQLite).
        Descarta entradas sin campo identidad o sin descripción.
        Acepta "plotPoints" (contrato del modelo) y "plot_points" (storage).
        """
        if not isinstance(data, dict):
            return cls()

        plot_raw = data.get("plot_points")
        if plot_raw is None:
            plot_raw = data.get("plotPoints")

        return cls(
            characters = [
                Character(
                    name        = name,
                    description = description,
                    personality = _clean(item.get("personality")) or None,
                )
                for item, name, description in _entries(data.get("characters"), "name", "description")
            ],
            terms = [
                Term(term=term, meaning=meaning)
                for _, term, meaning in _entries(data.get("terms"), "term", "meaning")
            ],
            settings = [
                Setting(location=location, description=description)
                for _, location, description in _entries(data.get("settings"), "location", "description")
            ],
            plot_points = [
                PlotPoint(point=point, description=description)
                for _, point, description in _entries(plot_raw, "point", "description")
            ],
        )


@dataclass
class StoryContext(ExtractedContext):
    """
    Memoria narrativa persistente de una historia.
    Se guarda como JSON versionado: cada escritura crea una versión nueva
    y la versión sirve de control optimista de concurrencia.
    """
    story_id:   str           = ""
    version:    int           = 0
    updated_at: Optional[str] = None

    @classmethod
    def from_json(
        cls,
        raw:        str,
        story_id:   str,
        version:    int,
        updated_at: Optional[str] = None,
    ) -> "StoryContext":
        base = ExtractedContext.from_dict(json.loads(raw))
        return cls(
            characters  = base.characters,
            terms       = base.terms,
            settings    = base.settings,
            plot_points = base.plot_points,
            story_id    = story_id,
            version     = version,
            updated_at  = updated_at,
        )


def _clean(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _entries(items, key_field: str, text_field: str):
    if not isinstance(items, list):
        return
    for item in items:
        if not isinstance(item, dict):
            continue
        key  = _clean(item.get(key_field))
        text = _clean(item.get(text_field))
        if key and text:
            yield item, key, text


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}

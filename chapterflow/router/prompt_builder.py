# router/prompt_builder.py
from typing import Optional

from chapterflow.context.story_context import ExtractedContext

# Solo las tramas más recientes viajan en el prompt
MAX_PLOT_POINTS_IN_PROMPT = 5


_TRANSLATE_SYSTEM = """\
You are a professional literary translator and editor of serialized web fiction \
(eastern fantasy, cultivation, action), translating from {source_lang} into {target_lang}.

Translate and edit the text according to these rules:

1. Content
- Translate the original meaning faithfully; never drop important events.
- Keep the logic of the world intact: cultivation realms, techniques, skills, ranks.

2. Style
- Fluent, natural prose that reads as if originally written in {target_lang}.
- Keep the energy, tension and rhythm of the scene.
- Avoid word-by-word machine translation and stiff calques.

3. Terminology
- Keep established genre terminology consistent.
- Keep proper names in their conventional rendering.
- IMPORTANT: use exactly the character names and terms defined in the context below.

4. Presentation
- Clear paragraphs; each line of dialogue on its own line.
- Do not add translator notes or commentary.
- Output only the translated text.{context_block}"""

_CONTEXT_BLOCK = """

CONTEXT FROM PREVIOUS CHAPTERS:
{sections}

Use this information to keep translation consistent (character names, terms \
and settings must stay the same)."""

_TRANSLATE_USER = "Translate and edit the following passage according to the rules above:\n\n{chunk}"


_EXTRACTION_SYSTEM = """\
You are an expert analyst of serialized fiction. Your job is to extract the \
important information from a chapter to build a knowledge base used to translate \
the following chapters consistently.

Analyze and extract:
1. Characters: name, short description, personality (if known)
2. Terms: special vocabulary, techniques, artifacts, cultivation realms...
3. Settings: locations and places that appear
4. Plot points: the important events of the chapter

Return ONLY a JSON object with this exact format:
{
  "characters": [{"name": "...", "description": "...", "personality": "..."}],
  "terms": [{"term": "...", "meaning": "..."}],
  "settings": [{"location": "...", "description": "..."}],
  "plotPoints": [{"point": "...", "description": "..."}]
}

Use an empty list for any category with nothing new. Do not invent facts that \
are not in the chapter."""


def build_translate_prompt(
    source_lang: str,
    target_lang: str,
    context:     Optional[ExtractedContext] = None,
) -> str:
    """
    Construye el system prompt para traducir un chunk.

    El chunk NO va aquí — viaja como mensaje de usuario (build_translate_user_prompt).
    El bloque de contexto se omite por completo si la historia aún no tiene contexto.
    """
    return _TRANSLATE_SYSTEM.format(
        source_lang   = source_lang,
        target_lang   = target_lang,
        context_block = render_context_block(context),
    )


def build_translate_user_prompt(chunk: str) -> str:
    return _TRANSLATE_USER.format(chunk=chunk)


def build_extraction_prompt() -> str:
    return _EXTRACTION_SYSTEM


def render_context_block(context: Optional[ExtractedContext]) -> str:
    if context is None or context.is_empty():
        return ""

    sections: list[str] = []

    if context.characters:
        sections.append("CHARACTERS:")
        sections.extend(_format_character(c) for c in context.characters)

    if context.terms:
        sections.append("TERMS:")
        sections.extend(f"- {t.term}: {t.meaning}" for t in context.terms)

    if context.settings:
        sections.append("SETTINGS:")
        sections.extend(f"- {s.location}: {s.description}" for s in context.settings)

    if context.plot_points:
        sections.append("RECENT PLOT POINTS:")
        sections.extend(
            f"- {p.point}: {p.description}"
            for p in context.plot_points[-MAX_PLOT_POINTS_IN_PROMPT:]
        )

    return _CONTEXT_BLOCK.format(sections="\n".join(sections))


def _format_character(character) -> str:
    line = f"- {character.name}: {character.description}"
    if character.personality:
        line += f" (Personality: {character.personality})"
    return line

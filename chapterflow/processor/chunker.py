import re

from .models import ChunkConfig

# Uno o mas saltos de linea en blanco (con espacios opcionales) separan parrafos
_PARAGRAPH_RE = re.compile(r"\n\s*\n")


class Chunker:
    """
    Divide el texto de un capitulo en chunks alineados a parrafos.

    Un parrafo nunca se corta: si por si solo supera max_chunk_size
    se emite entero como un chunk propio.
    """

    def __init__(self, config: ChunkConfig | None = None):
        self._config = config or ChunkConfig()

    def split(self, text: str, max_chunk_size: int | None = None) -> list[str]:
        limit = self._config.max_chunk_size if max_chunk_size is None else max_chunk_size
        if limit < 1:
            raise ValueError(f"max_chunk_size debe ser >= 1, recibido {limit}")
        sep   = self._config.separator

        chunks: list[str] = []
        current = ""

        for paragraph in self.paragraphs(text):
            if current and len(current) + len(sep) + len(paragraph) > limit:
                chunks.append(current)
                current = paragraph
            else:
                current = f"{current}{sep}{paragraph}" if current else paragraph

        if current:
            chunks.append(current)

        return chunks

    @staticmethod
    def paragraphs(text: str) -> list[str]:
        """Parrafos recortados y sin vacios, en orden original."""
        if not text or not text.strip():
            return []
        return [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]

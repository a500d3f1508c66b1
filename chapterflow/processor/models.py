from dataclasses import dataclass


@dataclass
class ChunkConfig:
    """Configuracion del chunker. Centralizada y explicita."""
    max_chunk_size: int = 8000      # caracteres por chunk
    separator:      str = "\n\n"    # separador entre parrafos al reconstruir

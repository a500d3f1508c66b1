# router/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ResponseFormat(Enum):
    TEXT        = "text"
    JSON_OBJECT = "json_object"


@dataclass
class CompletionResponse:
    text:          str
    model_used:    str
    tokens_input:  int = 0
    tokens_output: int = 0


@dataclass
class ModelConfig:
    """
    Configuración de un modelo individual.
    Se carga desde ~/.chapterflow/config.yaml.
    """
    name:              str
    priority:          int
    daily_token_limit: int
    model:             str
    api_key:           Optional[str] = None
    base_url:          Optional[str] = None   # solo adaptadores compatibles con OpenAI
    timeout_seconds:   int = 120
    cooldown_seconds:  int = 60      # pausa tras un error de red o rate limit

    # Control de cooldown temporal (no viene del YAML, es runtime)
    _unavailable_until: Optional[float] = field(
        default=None, compare=False, repr=False
    )

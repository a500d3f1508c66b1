# chapterflow/config_loader.py
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from chapterflow.router.models import ModelConfig

_DEFAULT_CONFIG_PATH = Path.home() / ".chapterflow" / "config.yaml"


@dataclass
class PipelineConfig:
    """Parámetros del pipeline. Todos tienen default; el YAML solo sobreescribe."""
    source_lang:                  str   = "Chinese"
    target_lang:                  str   = "Vietnamese"
    max_chunk_size:               int   = 8000
    chunk_delay_seconds:          float = 1.0
    chapter_delay_seconds:        float = 2.0
    max_attempts:                 int   = 3
    backoff_seconds:              float = 5.0
    max_workers:                  int   = 4
    min_request_interval_seconds: float = 0.5
    extraction_prefix_chars:      int   = 4000


def load_model_configs(config_path: Optional[str] = None) -> list[ModelConfig]:
    """
    Carga la configuración de modelos desde YAML.
    Resuelve variables de entorno en los api_key (${VAR}).
    Devuelve la lista ordenada por prioridad ascendente.
    """
    raw = _load_raw(config_path)

    configs = []
    for entry in raw.get("models") or []:
        configs.append(ModelConfig(
            name              = entry["name"],
            priority          = entry.get("priority", 99),
            daily_token_limit = entry.get("daily_token_limit", 500_000),
            model             = entry["model"],
            api_key           = _resolve_env(entry.get("api_key")),
            base_url          = entry.get("base_url"),
            timeout_seconds   = entry.get("timeout_seconds", 120),
            cooldown_seconds  = entry.get("cooldown_seconds", 60),
        ))

    return sorted(configs, key=lambda c: c.priority)


def load_pipeline_config(config_path: Optional[str] = None) -> PipelineConfig:
    """Lee la sección `pipeline`. Claves desconocidas se ignoran."""
    section  = _load_raw(config_path).get("pipeline") or {}
    defaults = PipelineConfig()

    return PipelineConfig(**{
        name: type(getattr(defaults, name))(section[name])
        for name in PipelineConfig.__dataclass_fields__
        if section.get(name) is not None
    })


def _load_raw(config_path: Optional[str]) -> dict:
    path = Path(config_path or os.environ.get("CHAPTERFLOW_CONFIG_PATH") or _DEFAULT_CONFIG_PATH)

    if not path.exists():
        raise FileNotFoundError(
            f"Config no encontrada en {path}. "
            f"Copia config.example.yaml a ~/.chapterflow/config.yaml"
        )

    with path.open(encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_env(value: Optional[str]) -> Optional[str]:
    """Expande ${VAR_NAME} desde el entorno."""
    if not value or not value.startswith("${"):
        return value
    var_name = value.strip("${}").strip()
    return os.environ.get(var_name)

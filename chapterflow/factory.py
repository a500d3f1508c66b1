# chapterflow/factory.py
from typing import Optional

from chapterflow.config_loader import PipelineConfig, load_model_configs, load_pipeline_config
from chapterflow.context.extractor import ContextExtractor
from chapterflow.pipeline.orchestrator import JobOrchestrator
from chapterflow.pipeline.retry import RetryPolicy
from chapterflow.processor.chunker import Chunker
from chapterflow.processor.models import ChunkConfig
from chapterflow.router.claude import ClaudeAdapter
from chapterflow.router.gemini import GeminiAdapter
from chapterflow.router.openai_compat import OpenAICompatibleAdapter
from chapterflow.router.rate_limiter import RateLimiter
from chapterflow.router.router import Router
from chapterflow.storage.repository import Repository
from chapterflow.translator import Translator

_ADAPTERS = {
    "claude":   ClaudeAdapter,
    "gemini":   GeminiAdapter,
    "deepseek": OpenAICompatibleAdapter,
    "openai":   OpenAICompatibleAdapter,
}


def build_orchestrator(
    db_path:     Optional[str] = None,
    config_path: Optional[str] = None,
    repo:        Optional[Repository] = None,
) -> JobOrchestrator:
    """
    Ensambla el JobOrchestrator con todas sus dependencias.
    Punto de entrada único para el CLI y los tests de integración.
    """
    repo     = repo or Repository(db_path=db_path)
    pipeline = load_pipeline_config(config_path)
    router   = Router(
        _build_models(repo, config_path),
        rate_limiter = RateLimiter(min_interval_seconds=pipeline.min_request_interval_seconds),
    )

    return JobOrchestrator(
        repo         = repo,
        translator   = _build_translator(router, pipeline),
        extractor    = ContextExtractor(model=router, prefix_chars=pipeline.extraction_prefix_chars),
        retry_policy = RetryPolicy(
            max_attempts    = pipeline.max_attempts,
            backoff_seconds = pipeline.backoff_seconds,
        ),
        chapter_delay_seconds = pipeline.chapter_delay_seconds,
        max_workers           = pipeline.max_workers,
    )


def _build_translator(router: Router, pipeline: PipelineConfig) -> Translator:
    return Translator(
        router              = router,
        chunker             = Chunker(ChunkConfig(max_chunk_size=pipeline.max_chunk_size)),
        source_lang         = pipeline.source_lang,
        target_lang         = pipeline.target_lang,
        chunk_delay_seconds = pipeline.chunk_delay_seconds,
    )


def _build_models(repo: Repository, config_path: Optional[str]) -> list:
    """
    Carga el config y construye los adaptadores disponibles.
    Si un adaptador no tiene api_key configurada, lo omite con aviso.
    """
    models = []

    for config in load_model_configs(config_path):
        adapter_class = _ADAPTERS.get(config.name)
        if not adapter_class:
            print(f"[chapterflow] ⚠ {config.name}: adaptador desconocido, omitiendo")
            continue
        if not config.api_key:
            print(f"[chapterflow] ⚠ {config.name}: sin api_key, omitiendo")
            continue
        models.append(adapter_class(config, repo))

    if not models:
        raise RuntimeError(
            "Ningún modelo configurado. "
            "Revisa ~/.chapterflow/config.yaml y tus variables de entorno."
        )

    return models

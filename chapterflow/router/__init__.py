from chapterflow.router.router import Router, AllModelsExhaustedError
from chapterflow.router.base import BaseModel
from chapterflow.router.models import CompletionResponse, ModelConfig, ResponseFormat
from chapterflow.router.rate_limiter import RateLimiter
from chapterflow.router.prompt_builder import build_translate_prompt, build_extraction_prompt

__all__ = [
    "Router",
    "AllModelsExhaustedError",
    "BaseModel",
    "CompletionResponse",
    "ModelConfig",
    "ResponseFormat",
    "RateLimiter",
    "build_translate_prompt",
    "build_extraction_prompt",
]

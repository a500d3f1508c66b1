from chapterflow.pipeline.orchestrator import (
    BatchResult,
    ChapterOutcome,
    JobAck,
    JobOrchestrator,
    StepRecord,
)
from chapterflow.pipeline.retry import RetryPolicy

__all__ = [
    "BatchResult",
    "ChapterOutcome",
    "JobAck",
    "JobOrchestrator",
    "RetryPolicy",
    "StepRecord",
]

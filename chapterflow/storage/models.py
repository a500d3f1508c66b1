# storage/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ChapterStatus(Enum):
    PENDING     = "pending"
    TRANSLATING = "translating"
    COMPLETED   = "completed"
    FAILED      = "failed"


class LogLevel(Enum):
    INFO    = "info"
    ERROR   = "error"
    SUCCESS = "success"


@dataclass
class LogEntry:
    timestamp: str
    level:     LogLevel
    message:   str
    data:      Optional[dict] = None


@dataclass
class StoredChapter:
    id:                 str
    story_id:           str
    chapter_number:     int
    title:              str
    original_content:   str
    status:             ChapterStatus
    created_at:         str
    updated_at:         str
    translated_content: Optional[str]  = None
    logs:               list[LogEntry] = field(default_factory=list)

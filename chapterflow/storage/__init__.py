# storage/__init__.py
from chapterflow.storage.repository import Repository
from chapterflow.storage.models import ChapterStatus, LogEntry, LogLevel, StoredChapter
from chapterflow.storage.transitions import ALLOWED_TRANSITIONS, assert_transition, can_transition

__all__ = [
    "Repository",
    "ChapterStatus", "LogEntry", "LogLevel", "StoredChapter",
    "ALLOWED_TRANSITIONS", "assert_transition", "can_transition",
]

# storage/transitions.py
from chapterflow.errors import InvalidTransitionError
from chapterflow.storage.models import ChapterStatus


# Única fuente de verdad del ciclo de vida de un capítulo.
ALLOWED_TRANSITIONS: dict[ChapterStatus, frozenset[ChapterStatus]] = {
    ChapterStatus.PENDING:     frozenset({ChapterStatus.TRANSLATING}),
    ChapterStatus.TRANSLATING: frozenset({ChapterStatus.COMPLETED, ChapterStatus.FAILED}),
    ChapterStatus.COMPLETED:   frozenset(),
    ChapterStatus.FAILED:      frozenset({ChapterStatus.PENDING}),
}


def can_transition(current: ChapterStatus, target: ChapterStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def assert_transition(current: ChapterStatus, target: ChapterStatus) -> None:
    """
    Valida una transición antes de escribirla.
    Reescribir el mismo estado no es una transición: el caller decide
    si lo trata como no-op.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)

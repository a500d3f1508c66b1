# chapterflow/errors.py


class ChapterflowError(Exception):
    """Base de todos los errores propios del pipeline."""
    pass


class ChapterValidationError(ChapterflowError):
    """El capítulo no tiene contenido original utilizable."""
    pass


class ExternalAPIError(ChapterflowError):
    """
    Fallo de la API de completions (red, timeout, quota, respuesta vacía).

    retryable=False indica que reintentar no cambia el resultado
    (ej: contenido rechazado por el proveedor).
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class PersistenceError(ChapterflowError):
    """Fallo de escritura en el storage."""
    pass


class ContextConflictError(PersistenceError):
    """Otro proceso guardó una versión más nueva del contexto de la historia."""
    pass


class InvalidTransitionError(ChapterflowError):
    """Transición de estado de capítulo no permitida."""

    def __init__(self, current, target):
        super().__init__(
            f"Transición no permitida: {getattr(current, 'value', current)} → "
            f"{getattr(target, 'value', target)}"
        )
        self.current = current
        self.target  = target


class UnknownModelError(ValueError):
    """El modelo pedido no coincide con ningún adaptador configurado."""
    pass


class ChapterNotFoundError(ChapterflowError):
    """El id no corresponde a ningún capítulo."""
    pass

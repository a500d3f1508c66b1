# pipeline/orchestrator.py
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional, TypeVar

from chapterflow.context.extractor import ContextExtractor
from chapterflow.context.merger import merge_contexts
from chapterflow.context.story_context import ExtractedContext
from chapterflow.errors import (
    ChapterNotFoundError,
    ChapterValidationError,
    InvalidTransitionError,
    PersistenceError,
)
from chapterflow.pipeline.retry import RetryPolicy
from chapterflow.storage.models import ChapterStatus, LogLevel, StoredChapter
from chapterflow.storage.repository import Repository
from chapterflow.translator import Translator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Pasos con nombre, cada uno se reintenta por separado
STEP_LOAD      = "load-chapter"
STEP_TRANSLATE = "translate"
STEP_PERSIST   = "persist"
STEP_EXTRACT   = "extract-context"
STEP_MERGE     = "merge-context"

# Resultado de un capítulo dentro de un lote
OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED    = "failed"
OUTCOME_SKIPPED   = "skipped"
OUTCOME_NOT_FOUND = "not_found"

_DEFAULT_CHAPTER_DELAY_SECONDS = 2.0
_DEFAULT_MAX_WORKERS = 4


# ------------------------------------------------------------------
# Resultados que consume el CLI
# ------------------------------------------------------------------

@dataclass
class StepRecord:
    chapter_id: str
    step:       str
    attempts:   int
    outcome:    str      # "ok" | "failed"


@dataclass
class ChapterOutcome:
    chapter_id:       str
    status:           str
    story_id:         Optional[str]    = None
    error:            Optional[str]    = None
    context_updated:  bool             = False
    duration_seconds: float            = 0.0
    steps:            list[StepRecord] = field(default_factory=list)


@dataclass
class JobAck:
    """Acuse inmediato del lote: no espera a ningún capítulo."""
    count:       int
    chapter_ids: list[str]


@dataclass
class BatchResult:
    outcomes: list[ChapterOutcome]

    @property
    def completed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OUTCOME_COMPLETED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OUTCOME_FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status in (OUTCOME_SKIPPED, OUTCOME_NOT_FOUND))


# ------------------------------------------------------------------
# JobOrchestrator
# ------------------------------------------------------------------

class JobOrchestrator:
    """
    Dirige capítulos por el pipeline completo:
    load → translating → translate → persist (completed) → extract → merge.

    Responsabilidades:
    - Agrupar los capítulos por historia: una historia se procesa en serie
      (orden por número de capítulo), historias distintas en paralelo
    - Espaciar el inicio de capítulos de una misma historia
    - Reintentar cada paso según la RetryPolicy
    - Aislar fallos: un capítulo fallido nunca detiene el lote
    """

    def __init__(
        self,
        repo:         Repository,
        translator:   Translator,
        extractor:    ContextExtractor,
        retry_policy: Optional[RetryPolicy] = None,
        chapter_delay_seconds: float = _DEFAULT_CHAPTER_DELAY_SECONDS,
        max_workers:  int = _DEFAULT_MAX_WORKERS,
        scheduler:    Optional[Callable[[float, Callable[[], None]], None]] = None,
    ):
        self._repo          = repo
        self._translator    = translator
        self._extractor     = extractor
        self._retry         = retry_policy or RetryPolicy()
        self._chapter_delay = chapter_delay_seconds
        self._schedule      = scheduler or _schedule_after
        self._executor      = ThreadPoolExecutor(
            max_workers        = max(1, max_workers),
            thread_name_prefix = "chapterflow",
        )
        self._futures: list[Future] = []
        self._lock = threading.Lock()

    @property
    def repo(self) -> Repository:
        return self._repo

    # ------------------------------------------------------------------
    # Disparadores del lote
    # ------------------------------------------------------------------

    def submit(self, chapter_ids: list[str], model: Optional[str] = None) -> JobAck:
        """
        Fire-and-continue: agenda el lote y vuelve de inmediato.
        El resultado de cada capítulo se observa consultando su status y logs.
        """
        ids = _dedupe(chapter_ids)
        ack = self._accept(ids)
        futures = [self._start_lane(lane, model) for lane in self._plan_lanes(ids)]
        with self._lock:
            self._futures.extend(futures)
        return ack

    def wait(self) -> list[ChapterOutcome]:
        """Bloquea hasta que termina todo lo enviado con submit()."""
        with self._lock:
            futures, self._futures = self._futures, []
        outcomes: list[ChapterOutcome] = []
        for future in futures:
            outcomes.extend(future.result())
        return outcomes

    def run(self, chapter_ids: list[str], model: Optional[str] = None) -> BatchResult:
        """Procesa el lote y espera: mismo pipeline que submit(), pero bloqueante."""
        ids = _dedupe(chapter_ids)
        self._accept(ids)
        futures = [self._start_lane(lane, model) for lane in self._plan_lanes(ids)]

        by_id: dict[str, ChapterOutcome] = {}
        for future in futures:
            for outcome in future.result():
                by_id[outcome.chapter_id] = outcome

        return BatchResult(outcomes=[by_id[i] for i in ids if i in by_id])

    def run_pending(self, limit: int = 10, model: Optional[str] = None) -> BatchResult:
        pending = self._repo.list_pending(limit)
        return self.run([c.id for c in pending], model=model)

    # ------------------------------------------------------------------
    # Un capítulo
    # ------------------------------------------------------------------

    def process_chapter(self, chapter_id: str, model: Optional[str] = None) -> ChapterOutcome:
        """
        Lleva un capítulo por todos los pasos.
        Cualquier error fatal antes de persistir la traducción lo marca FAILED.
        La extracción de contexto es best-effort: nunca cambia el status.
        """
        started = time.monotonic()
        outcome = ChapterOutcome(chapter_id=chapter_id, status=OUTCOME_FAILED)

        # ── Paso 1: cargar y decidir si se puede tomar ────────────────
        try:
            chapter = self._step(outcome, STEP_LOAD, lambda: self._repo.get_chapter(chapter_id))
        except PersistenceError as e:
            logger.error("No se pudo cargar el capítulo %s: %s", chapter_id, e)
            outcome.error = str(e)
            return self._finish(outcome, started)

        if chapter is None:
            logger.warning("Capítulo %s no encontrado — se ignora", chapter_id)
            outcome.status = OUTCOME_NOT_FOUND
            outcome.error  = "capítulo no encontrado"
            return self._finish(outcome, started)

        outcome.story_id = chapter.story_id

        skip_reason = _skip_reason(chapter)
        if skip_reason:
            return self._skip(outcome, skip_reason, started)

        try:
            claimed = self._repo.claim_chapter(chapter_id)
        except PersistenceError as e:
            logger.error("No se pudo marcar %s como translating: %s", chapter_id, e)
            outcome.error = str(e)
            return self._finish(outcome, started)

        if not claimed:
            # Otro worker lo tomó entre la lectura y la escritura
            return self._skip(outcome, "tomado por otro proceso", started)

        self._safe_log(
            chapter_id, LogLevel.INFO, "Traducción iniciada",
            {"chapter_number": chapter.chapter_number, "chars": len(chapter.original_content or "")},
        )
        self._log(f"Capítulo {chapter.chapter_number} ({chapter.story_id}): traduciendo...")

        # ── Pasos 2-3: traducir y persistir ───────────────────────────
        try:
            if not (chapter.original_content or "").strip():
                raise ChapterValidationError(f"El capítulo {chapter_id} no tiene contenido original")

            # Snapshot fijo: todos los chunks se traducen contra el mismo contexto
            snapshot = self._repo.get_story_context(chapter.story_id)

            translated = self._step(
                outcome, STEP_TRANSLATE,
                lambda: self._translator.translate_long_text(
                    chapter.original_content, snapshot, model=model,
                ),
            )
            self._step(
                outcome, STEP_PERSIST,
                lambda: self._repo.save_translation(chapter_id, translated),
            )

        except Exception as e:
            self._mark_failed(chapter, outcome, e)
            return self._finish(outcome, started)

        outcome.status = OUTCOME_COMPLETED
        self._safe_log(
            chapter_id, LogLevel.SUCCESS, "Traducción completada",
            {"chars": len(translated), "duration_seconds": round(time.monotonic() - started, 2)},
        )

        # ── Pasos 4-5: contexto (best-effort) ─────────────────────────
        self._update_story_context(chapter, translated, outcome, model)

        self._log(
            f"✓ Capítulo {chapter.chapter_number} ({chapter.story_id}) completado"
            f" — contexto {'actualizado' if outcome.context_updated else 'sin cambios'}"
        )
        return self._finish(outcome, started)

    # ------------------------------------------------------------------
    # Operaciones de mantenimiento
    # ------------------------------------------------------------------

    def resubmit(self, chapter_id: str) -> None:
        """Reencola explícitamente un capítulo FAILED (failed → pending)."""
        chapter = self._repo.get_chapter(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(f"Capítulo no encontrado: {chapter_id}")
        if chapter.status != ChapterStatus.FAILED:
            raise InvalidTransitionError(chapter.status, ChapterStatus.PENDING)

        self._repo.update_chapter_status(chapter_id, ChapterStatus.PENDING)
        self._repo.append_log(chapter_id, LogLevel.INFO, "Reenviado para traducir")
        logger.info("Capítulo %s reencolado", chapter_id)

    def sweep_stuck(self, ttl_seconds: float) -> list[str]:
        """
        Reconciliación: capítulos atascados en TRANSLATING más allá del TTL
        (ej: fallo de persistencia tras traducir) pasan a FAILED y se reencolan.
        """
        requeued: list[str] = []
        for chapter in self._repo.list_stuck_translating(timedelta(seconds=ttl_seconds)):
            try:
                self._repo.update_chapter_status(chapter.id, ChapterStatus.FAILED)
                self._repo.append_log(
                    chapter.id, LogLevel.ERROR,
                    f"Sin actividad en translating por más de {ttl_seconds:.0f}s",
                )
                self.resubmit(chapter.id)
            except (InvalidTransitionError, PersistenceError) as e:
                logger.warning("No se pudo reencolar %s: %s", chapter.id, e)
                continue
            requeued.append(chapter.id)

        if requeued:
            self._log(f"{len(requeued)} capítulos atascados reencolados")
        return requeued

    def shutdown(self, wait: bool = True) -> None:
        """
        Con wait=True espera también a los capítulos que aún aguardan su pausa.
        Con wait=False los que no empezaron quedan en PENDING.
        """
        if wait:
            self.wait()
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "JobOrchestrator":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Pasos internos
    # ------------------------------------------------------------------

    def _accept(self, chapter_ids: list[str]) -> JobAck:
        """Acuse del lote antes de procesar nada: cuántos capítulos y cuáles."""
        self._log(f"Lote aceptado: {len(chapter_ids)} capítulos ({', '.join(chapter_ids)})")
        return JobAck(count=len(chapter_ids), chapter_ids=chapter_ids)

    def _plan_lanes(self, chapter_ids: list[str]) -> list[list[str]]:
        """
        Agrupa por historia. Dentro de una historia ordena por número de capítulo
        (a igual número, orden de envío). Ids que no se pueden cargar van solos.
        """
        lanes: dict[str, list[tuple[int, int, str]]] = {}
        for position, chapter_id in enumerate(chapter_ids):
            try:
                chapter = self._repo.get_chapter(chapter_id)
            except PersistenceError as e:
                logger.warning("No se pudo planificar %s: %s", chapter_id, e)
                chapter = None

            if chapter is None:
                lanes[f"__unknown__{position}"] = [(0, position, chapter_id)]
                continue
            lanes.setdefault(chapter.story_id, []).append(
                (chapter.chapter_number, position, chapter_id)
            )

        return [[entry[2] for entry in sorted(lane)] for lane in lanes.values()]

    def _start_lane(self, chapter_ids: list[str], model: Optional[str]) -> Future:
        """
        Una historia avanza capítulo a capítulo. Cada capítulo es una tarea
        propia del pool; la pausa entre capítulos la cumple el scheduler,
        nunca un worker dormido.
        """
        done: Future = Future()
        self._resume_lane(chapter_ids, 0, model, [], done)
        return done

    def _resume_lane(
        self,
        chapter_ids: list[str],
        index:       int,
        model:       Optional[str],
        outcomes:    list[ChapterOutcome],
        done:        Future,
    ) -> None:
        try:
            self._executor.submit(self._run_lane_step, chapter_ids, index, model, outcomes, done)
        except RuntimeError as e:
            # Pool cerrado
            self._abandon_lane(chapter_ids, index, outcomes, done, e)

    def _run_lane_step(
        self,
        chapter_ids: list[str],
        index:       int,
        model:       Optional[str],
        outcomes:    list[ChapterOutcome],
        done:        Future,
    ) -> None:
        chapter_id = chapter_ids[index]
        try:
            outcomes.append(self.process_chapter(chapter_id, model=model))
        except Exception as e:
            logger.exception("Error inesperado en capítulo %s", chapter_id)
            outcomes.append(ChapterOutcome(
                chapter_id = chapter_id,
                status     = OUTCOME_FAILED,
                error      = f"{type(e).__name__}: {e}",
            ))

        next_index = index + 1
        if next_index >= len(chapter_ids):
            done.set_result(outcomes)
            return

        try:
            self._schedule(
                self._chapter_delay,
                lambda: self._resume_lane(chapter_ids, next_index, model, outcomes, done),
            )
        except RuntimeError as e:
            # No se pudo arrancar el timer
            self._abandon_lane(chapter_ids, next_index, outcomes, done, e)

    @staticmethod
    def _abandon_lane(
        chapter_ids: list[str],
        index:       int,
        outcomes:    list[ChapterOutcome],
        done:        Future,
        error:       Exception,
    ) -> None:
        """Cierra la historia sin empezar lo que falta: esos capítulos siguen en PENDING."""
        logger.warning("Historia abandonada con %d capítulos sin empezar: %s",
                       len(chapter_ids) - index, error)
        for chapter_id in chapter_ids[index:]:
            outcomes.append(ChapterOutcome(
                chapter_id = chapter_id,
                status     = OUTCOME_SKIPPED,
                error      = "orquestador cerrado antes de empezar",
            ))
        done.set_result(outcomes)

    def _step(self, outcome: ChapterOutcome, name: str, fn: Callable[[], T]) -> T:
        """Ejecuta un paso con la RetryPolicy y lo registra en el outcome."""
        attempts = 0

        def attempt() -> T:
            nonlocal attempts
            attempts += 1
            return fn()

        def on_retry(attempt_number: int, error: BaseException, delay: float) -> None:
            logger.warning(
                "Paso %s del capítulo %s falló (intento %d): %s — reintento en %.1fs",
                name, outcome.chapter_id, attempt_number, error, delay,
            )
            self._safe_log(
                outcome.chapter_id, LogLevel.ERROR,
                f"Paso {name} falló, reintentando",
                {"attempt": attempt_number, "error": str(error), "delay_seconds": delay},
            )

        try:
            result, _ = self._retry.execute(attempt, on_retry=on_retry)
        except Exception:
            outcome.steps.append(StepRecord(outcome.chapter_id, name, attempts, "failed"))
            raise

        outcome.steps.append(StepRecord(outcome.chapter_id, name, attempts, "ok"))
        return result

    def _update_story_context(
        self,
        chapter:    StoredChapter,
        translated: str,
        outcome:    ChapterOutcome,
        model:      Optional[str],
    ) -> None:
        """Extrae y mezcla. Ningún error de aquí afecta al status del capítulo."""
        try:
            extracted = self._step(
                outcome, STEP_EXTRACT,
                lambda: self._extractor.extract(translated, model=model),
            )
            if extracted.is_empty():
                self._safe_log(chapter.id, LogLevel.INFO, "Extracción sin hechos nuevos — contexto sin cambios")
                return

            version = self._step(
                outcome, STEP_MERGE,
                lambda: self._merge_and_save(chapter.story_id, extracted),
            )
        except Exception as e:
            logger.warning("Contexto de %s sin actualizar: %s", chapter.story_id, e)
            self._safe_log(
                chapter.id, LogLevel.ERROR, "No se pudo actualizar el contexto de la historia",
                {"error": f"{type(e).__name__}: {e}"},
            )
            return

        outcome.context_updated = True
        self._safe_log(
            chapter.id, LogLevel.INFO, "Contexto de la historia actualizado",
            {
                "version":     version,
                "characters":  len(extracted.characters),
                "terms":       len(extracted.terms),
                "settings":    len(extracted.settings),
                "plot_points": len(extracted.plot_points),
            },
        )

    def _merge_and_save(self, story_id: str, extracted: ExtractedContext) -> int:
        """
        Relee el contexto justo antes de escribir. Si otro escritor se adelantó,
        upsert lanza ContextConflictError y el reintento vuelve a leer y mezclar.
        """
        current = self._repo.get_story_context(story_id)
        merged  = merge_contexts(current, extracted)
        return self._repo.upsert_story_context(
            story_id,
            merged,
            expected_version = current.version if current else 0,
        )

    def _mark_failed(self, chapter: StoredChapter, outcome: ChapterOutcome, error: Exception) -> None:
        outcome.status = OUTCOME_FAILED
        outcome.error  = f"{type(error).__name__}: {error}"
        logger.warning("Capítulo %s falló: %s", chapter.id, outcome.error)

        try:
            self._repo.update_chapter_status(chapter.id, ChapterStatus.FAILED)
        except Exception as e:
            # Queda en TRANSLATING hasta que sweep_stuck lo reconcilie
            logger.error("No se pudo marcar %s como failed: %s", chapter.id, e)

        self._safe_log(chapter.id, LogLevel.ERROR, "Traducción fallida", {"error": outcome.error})
        self._log(
            f"⚠ Capítulo {chapter.chapter_number} ({chapter.story_id}) falló"
            f" ({type(error).__name__}) — continuando"
        )

    def _skip(self, outcome: ChapterOutcome, reason: str, started: float) -> ChapterOutcome:
        outcome.status = OUTCOME_SKIPPED
        outcome.error  = reason
        logger.info("Capítulo %s omitido: %s", outcome.chapter_id, reason)
        self._safe_log(outcome.chapter_id, LogLevel.INFO, f"Solicitud ignorada: {reason}")
        return self._finish(outcome, started)

    def _safe_log(self, chapter_id: str, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        """El historial es auditoría: si no se puede escribir, no tumba el pipeline."""
        try:
            self._repo.append_log(chapter_id, level, message, data)
        except PersistenceError as e:
            logger.warning("No se pudo registrar log de %s: %s", chapter_id, e)

    @staticmethod
    def _finish(outcome: ChapterOutcome, started: float) -> ChapterOutcome:
        outcome.duration_seconds = round(time.monotonic() - started, 2)
        return outcome

    @staticmethod
    def _log(message: str) -> None:
        print(f"[chapterflow] {message}")


# ------------------------------------------------------------------
# Funciones de módulo (helpers privados)
# ------------------------------------------------------------------

def _schedule_after(delay: float, fn: Callable[[], None]) -> None:
    """Ejecuta fn tras delay segundos en un timer, sin ocupar un worker del pool."""
    if delay <= 0:
        fn()
        return
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()


def _skip_reason(chapter: StoredChapter) -> Optional[str]:
    """Solo PENDING se puede tomar. El resto se ignora con motivo."""
    if chapter.status == ChapterStatus.TRANSLATING:
        return "ya se está traduciendo"
    if chapter.status == ChapterStatus.COMPLETED:
        return "ya está traducido"
    if chapter.status == ChapterStatus.FAILED:
        return "falló antes — reenvíalo con resubmit"
    return None


def _dedupe(chapter_ids: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for chapter_id in chapter_ids:
        chapter_id = (chapter_id or "").strip()
        if chapter_id and chapter_id not in seen:
            seen.add(chapter_id)
            unique.append(chapter_id)
    return unique

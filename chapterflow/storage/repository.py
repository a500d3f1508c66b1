# storage/repository.py
import json
import logging
import sqlite3
import threading
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from chapterflow.context.story_context import ExtractedContext, StoryContext
from chapterflow.errors import ContextConflictError, PersistenceError
from chapterflow.storage.db import get_connection, init_schema
from chapterflow.storage.models import ChapterStatus, LogEntry, LogLevel, StoredChapter
from chapterflow.storage.transitions import assert_transition

logger = logging.getLogger(__name__)

# Campos que update_chapter acepta. El status pasa siempre por la máquina de estados.
_UPDATABLE_FIELDS = {"title", "original_content", "translated_content", "status"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Repository:
    """
    Única interfaz entre el pipeline y SQLite.
    Cubre los dos colaboradores del pipeline: ChapterStore y ContextStore.
    Recibe un db_path para facilitar el testing con :memory:.

    La conexión se comparte entre los hilos del orchestrator;
    todas las operaciones se serializan con un RLock.
    """

    def __init__(self, db_path: str | None = None):
        self._conn = get_connection(db_path)
        self._lock = threading.RLock()
        init_schema(self._conn)

    # ------------------------------------------------------------------
    # Chapters
    # ------------------------------------------------------------------

    def create_chapter(
        self,
        story_id:         str,
        chapter_number:   int,
        original_content: str,
        title:            str = "",
        chapter_id:       str | None = None,
    ) -> str:
        """
        Inserta un capítulo nuevo en PENDING y devuelve su id.
        Si (story_id, chapter_number) ya existe lanza IntegrityError — el caller decide.
        """
        chapter_id = chapter_id or uuid.uuid4().hex
        now = _now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO chapters
                    (id, story_id, chapter_number, title, original_content,
                     status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (chapter_id, story_id, chapter_number, title, original_content,
                 ChapterStatus.PENDING.value, now, now),
            )
        return chapter_id

    def get_chapter(self, chapter_id: str, with_logs: bool = False) -> StoredChapter | None:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM chapters WHERE id = ?", (chapter_id,)
                ).fetchone()
                if not row:
                    return None
                chapter = self._row_to_chapter(row)
                if with_logs:
                    chapter.logs = self.get_chapter_logs(chapter_id)
        except sqlite3.Error as e:
            raise PersistenceError(f"No se pudo leer el capítulo {chapter_id}: {e}") from e
        return chapter

    def update_chapter(self, chapter_id: str, **fields) -> None:
        """
        Actualiza campos del capítulo en una sola transacción.
        Si incluye status, valida la transición contra el estado actual.
        Reescribir el mismo status es idempotente (last-write-wins).
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Campos no actualizables: {sorted(unknown)}")
        if not fields:
            return

        status = fields.get("status")
        if status is not None:
            fields["status"] = ChapterStatus(status).value

        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = list(fields.values()) + [_now(), chapter_id]

        try:
            with self._lock, self._conn:
                if status is not None:
                    self._check_transition(chapter_id, ChapterStatus(status))
                cursor = self._conn.execute(
                    f"UPDATE chapters SET {assignments}, updated_at = ? WHERE id = ?",
                    values,
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"No se pudo actualizar el capítulo {chapter_id}: {e}") from e

        if cursor.rowcount == 0:
            raise PersistenceError(f"Capítulo inexistente: {chapter_id}")

    def update_chapter_status(self, chapter_id: str, status: ChapterStatus) -> None:
        self.update_chapter(chapter_id, status=status)

    def claim_chapter(self, chapter_id: str) -> bool:
        """
        Pasa el capítulo de PENDING a TRANSLATING con compare-and-set.
        Retorna False si ya no estaba en PENDING: otro worker lo tomó primero.
        A diferencia de update_chapter, aquí el mismo status NO es idempotente.
        """
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    "UPDATE chapters SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                    (ChapterStatus.TRANSLATING.value, _now(), chapter_id,
                     ChapterStatus.PENDING.value),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"No se pudo tomar el capítulo {chapter_id}: {e}") from e
        return cursor.rowcount == 1

    def save_translation(self, chapter_id: str, translated_content: str) -> None:
        """
        Guarda la traducción y pasa a COMPLETED en la misma transacción.
        Atómico: o queda traducido y completado, o no cambia nada.
        """
        self.update_chapter(
            chapter_id,
            translated_content = translated_content,
            status             = ChapterStatus.COMPLETED,
        )

    def append_log(
        self,
        chapter_id: str,
        level:      LogLevel,
        message:    str,
        data:       Optional[dict] = None,
    ) -> None:
        """Agrega una entrada al historial del capítulo. Nunca sobreescribe."""
        now = _now()
        data_json = json.dumps(data, ensure_ascii=False, default=str) if data else None
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT INTO chapter_logs (chapter_id, timestamp, level, message, data_json)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (chapter_id, now, LogLevel(level).value, message, data_json),
                )
                self._conn.execute(
                    "UPDATE chapters SET updated_at = ? WHERE id = ?",
                    (now, chapter_id),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"No se pudo registrar log de {chapter_id}: {e}") from e

    def get_chapter_logs(self, chapter_id: str) -> list[LogEntry]:
        rows = self._fetch_all(
            "SELECT * FROM chapter_logs WHERE chapter_id = ? ORDER BY id ASC",
            (chapter_id,),
            f"los logs de {chapter_id}",
        )
        return [self._row_to_log(r) for r in rows]

    def list_pending(self, limit: int = 10) -> list[StoredChapter]:
        rows = self._fetch_all(
            """
            SELECT * FROM chapters
            WHERE status = ?
            ORDER BY created_at ASC, chapter_number ASC
            LIMIT ?
            """,
            (ChapterStatus.PENDING.value, limit),
            "los capítulos pending",
        )
        return [self._row_to_chapter(r) for r in rows]

    def get_chapters_by_range(
        self,
        story_id:    str,
        from_number: int,
        to_number:   int,
        status:      ChapterStatus | None = None,
    ) -> list[StoredChapter]:
        query  = """
            SELECT * FROM chapters
            WHERE story_id = ? AND chapter_number BETWEEN ? AND ?
        """
        params: list = [story_id, from_number, to_number]
        if status is not None:
            query += " AND status = ?"
            params.append(ChapterStatus(status).value)
        query += " ORDER BY chapter_number ASC"

        rows = self._fetch_all(query, params, f"los capítulos de {story_id}")
        return [self._row_to_chapter(r) for r in rows]

    def list_stuck_translating(self, older_than: timedelta) -> list[StoredChapter]:
        """Capítulos en TRANSLATING sin actividad desde hace más de older_than."""
        cutoff = (datetime.now(timezone.utc) - older_than).isoformat()
        rows = self._fetch_all(
            """
            SELECT * FROM chapters
            WHERE status = ? AND updated_at < ?
            ORDER BY updated_at ASC
            """,
            (ChapterStatus.TRANSLATING.value, cutoff),
            "los capítulos atascados",
        )
        return [self._row_to_chapter(r) for r in rows]

    # ------------------------------------------------------------------
    # Story context
    # ------------------------------------------------------------------

    def get_story_context(self, story_id: str) -> StoryContext | None:
        """
        Carga la versión más reciente del contexto de una historia.
        Devuelve None si todavía no existe (ninguna extracción exitosa).
        """
        rows = self._fetch_all(
            """
            SELECT version, content_json, updated_at FROM story_contexts
            WHERE story_id = ?
            ORDER BY version DESC
            LIMIT 1
            """,
            (story_id,),
            f"el contexto de {story_id}",
        )

        if not rows:
            return None
        row = rows[0]

        try:
            return StoryContext.from_json(
                row["content_json"],
                story_id   = story_id,
                version    = row["version"],
                updated_at = row["updated_at"],
            )
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Error deserializando contexto de la historia %s: %s", story_id, e)
            return None

    def upsert_story_context(
        self,
        story_id:         str,
        context:          ExtractedContext,
        expected_version: int | None = None,
    ) -> int:
        """
        Guarda una nueva versión del contexto (versionado inmutable).

        expected_version es la versión leída antes del merge (0 si no existía).
        Si otro escritor guardó antes, lanza ContextConflictError y el caller
        debe releer y volver a mezclar. None desactiva el control.
        Retorna el número de versión asignado.
        """
        updated_at = _now()
        try:
            with self._lock, self._conn:
                row = self._conn.execute(
                    "SELECT MAX(version) AS max_v FROM story_contexts WHERE story_id = ?",
                    (story_id,),
                ).fetchone()
                current_version = row["max_v"] or 0

                if expected_version is not None and expected_version != current_version:
                    raise ContextConflictError(
                        f"Contexto de {story_id} cambió: esperado v{expected_version}, "
                        f"actual v{current_version}"
                    )

                next_version = current_version + 1
                self._conn.execute(
                    """
                    INSERT INTO story_contexts (story_id, version, content_json, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (story_id, next_version, context.to_json(), updated_at),
                )
        except sqlite3.IntegrityError as e:
            raise ContextConflictError(f"Versión duplicada para {story_id}: {e}") from e
        except sqlite3.Error as e:
            raise PersistenceError(f"No se pudo guardar el contexto de {story_id}: {e}") from e

        return next_version

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    def add_token_usage(self, model: str, tokens: int) -> None:
        """
        Upsert: si ya existe el registro de hoy lo incrementa,
        si no existe lo crea.
        """
        today = date.today().isoformat()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO quota_usage (model, date, tokens_used)
                VALUES (?, ?, ?)
                ON CONFLICT (model, date)
                DO UPDATE SET tokens_used = tokens_used + excluded.tokens_used
                """,
                (model, today, tokens),
            )

    def get_token_usage_today(self, model: str) -> int:
        today = date.today().isoformat()
        rows = self._fetch_all(
            "SELECT tokens_used FROM quota_usage WHERE model = ? AND date = ?",
            (model, today),
            f"el consumo de {model}",
        )
        return rows[0]["tokens_used"] if rows else 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fetch_all(self, query: str, params, what: str) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"No se pudo leer {what}: {e}") from e

    def _check_transition(self, chapter_id: str, target: ChapterStatus) -> None:
        row = self._conn.execute(
            "SELECT status FROM chapters WHERE id = ?", (chapter_id,)
        ).fetchone()
        if not row:
            return  # el UPDATE posterior detecta el capítulo inexistente
        current = ChapterStatus(row["status"])
        if current == target:
            return
        assert_transition(current, target)

    # ------------------------------------------------------------------
    # Mapeo de rows a dataclasses
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_chapter(row: sqlite3.Row) -> StoredChapter:
        return StoredChapter(
            id                 = row["id"],
            story_id           = row["story_id"],
            chapter_number     = row["chapter_number"],
            title              = row["title"],
            original_content   = row["original_content"],
            translated_content = row["translated_content"],
            status             = ChapterStatus(row["status"]),
            created_at         = row["created_at"],
            updated_at         = row["updated_at"],
        )

    @staticmethod
    def _row_to_log(row: sqlite3.Row) -> LogEntry:
        return LogEntry(
            timestamp = row["timestamp"],
            level     = LogLevel(row["level"]),
            message   = row["message"],
            data      = json.loads(row["data_json"]) if row["data_json"] else None,
        )

    # ------------------------------------------------------------------
    # Cleanup (para tests)
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._conn.close()

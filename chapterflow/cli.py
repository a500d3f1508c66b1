# chapterflow/cli.py
import logging
import sqlite3
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from chapterflow.errors import ChapterNotFoundError, InvalidTransitionError, PersistenceError
from chapterflow.factory import build_orchestrator
from chapterflow.storage.models import ChapterStatus, LogLevel
from chapterflow.storage.repository import Repository


# Carga .env una sola vez, antes que cualquier otra cosa
load_dotenv()

_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_LEVEL_COLORS = {
    LogLevel.INFO:    None,
    LogLevel.ERROR:   "red",
    LogLevel.SUCCESS: "green",
}


# ------------------------------------------------------------------
# Grupo raíz
# ------------------------------------------------------------------

@click.group()
@click.version_option(package_name="chapterflow")
@click.option("--verbose", "-v", is_flag=True, help="Logs de depuración (DEBUG).")
def main(verbose: bool):
    """
    chapterflow — traducción de novelas por capítulos con IA.

    Traduce capítulos en segundo plano, manteniendo un contexto de la
    historia (personajes, términos, escenarios) que se enriquece
    con cada capítulo traducido.
    """
    logging.basicConfig(
        level  = logging.DEBUG if verbose else logging.WARNING,
        format = _LOG_FORMAT,
    )


# ------------------------------------------------------------------
# chapterflow add-chapter
# ------------------------------------------------------------------

@main.command("add-chapter")
@click.option("--story", "-s", "story_id", required=True, help="Id de la historia")
@click.option("--number", "-n", "chapter_number", required=True, type=int, help="Número de capítulo")
@click.option(
    "--file", "-f", "file_path",
    required = True,
    type     = click.Path(exists=False),   # validamos nosotros para mejor mensaje
    help     = "Archivo .txt con el texto original del capítulo",
)
@click.option("--title", "-t", default="", help="Título del capítulo")
def add_chapter(story_id: str, chapter_number: int, file_path: str, title: str):
    """Registra un capítulo nuevo en estado pending."""
    if chapter_number < 1:
        _abort("--number debe ser mayor que 0.")

    content = _read_chapter_file(file_path)

    repo = _open_repo()
    try:
        chapter_id = repo.create_chapter(
            story_id         = story_id.strip(),
            chapter_number   = chapter_number,
            original_content = content,
            title            = title.strip(),
        )
    except sqlite3.IntegrityError:
        _abort(f"La historia '{story_id}' ya tiene un capítulo {chapter_number}.")
    finally:
        repo.close()

    click.echo(f"[chapterflow] ✓ Capítulo {chapter_number} registrado: {chapter_id}")


# ------------------------------------------------------------------
# chapterflow translate
# ------------------------------------------------------------------

@main.command()
@click.option("--chapter", "-c", "chapter_ids", multiple=True, help="Id de capítulo (repetible)")
@click.option("--story", "-s", "story_id", help="Traduce un rango de capítulos de esta historia")
@click.option("--from", "from_number", type=int, default=1, show_default=True, help="Primer capítulo del rango")
@click.option("--to", "to_number", type=int, help="Último capítulo del rango (por defecto: sin límite)")
@click.option("--pending", "pending_limit", type=int, help="Traduce los N capítulos pending más antiguos")
@click.option("--model", "-m", help="Fuerza un modelo concreto (nombre o id del modelo)")
def translate(
    chapter_ids:   tuple[str, ...],
    story_id:      str | None,
    from_number:   int,
    to_number:     int | None,
    pending_limit: int | None,
    model:         str | None,
):
    """Traduce un lote de capítulos y muestra el resumen."""

    # ── Validaciones de entrada ───────────────────────────────────
    selectors = sum(bool(s) for s in (chapter_ids, story_id, pending_limit))
    if selectors != 1:
        _abort("Indica exactamente uno de: --chapter, --story o --pending.")

    if pending_limit is not None and pending_limit < 1:
        _abort("--pending debe ser mayor que 0.")

    if to_number is not None and to_number < from_number:
        _abort("--to no puede ser menor que --from.")

    # ── Ensamblar pipeline ────────────────────────────────────────
    try:
        orchestrator = build_orchestrator()
    except (FileNotFoundError, RuntimeError) as e:
        _abort(str(e))

    # ── Ejecutar ──────────────────────────────────────────────────
    try:
        with orchestrator:
            if pending_limit:
                result = orchestrator.run_pending(limit=pending_limit, model=model)
            else:
                ids = list(chapter_ids) or _story_range_ids(
                    orchestrator, story_id, from_number, to_number,
                )
                if not ids:
                    click.echo("[chapterflow] No hay capítulos pending en ese rango.")
                    return
                result = orchestrator.run(ids, model=model)

    except KeyboardInterrupt:
        click.echo(
            "\n[chapterflow] Proceso interrumpido. "
            "Los capítulos que quedaron en translating se recuperan con 'chapterflow sweep'."
        )
        sys.exit(0)

    except Exception as e:
        _error(f"Error inesperado: {type(e).__name__}: {e}")
        sys.exit(1)

    # ── Resumen final ─────────────────────────────────────────────
    _print_summary(result)


# ------------------------------------------------------------------
# Mantenimiento
# ------------------------------------------------------------------

@main.command()
@click.argument("chapter_id")
def resubmit(chapter_id: str):
    """Reencola un capítulo failed para volver a traducirlo."""
    try:
        orchestrator = build_orchestrator()
    except (FileNotFoundError, RuntimeError) as e:
        _abort(str(e))

    with orchestrator:
        try:
            orchestrator.resubmit(chapter_id)
        except ChapterNotFoundError:
            _abort(f"Capítulo no encontrado: {chapter_id}")
        except InvalidTransitionError as e:
            _abort(f"Solo los capítulos failed se pueden reenviar ({e.current.value}).")
        except PersistenceError as e:
            _error(str(e))
            sys.exit(1)

    click.echo(f"[chapterflow] ✓ {chapter_id} vuelve a pending")


@main.command()
@click.option(
    "--ttl",
    default      = 1800,
    show_default = True,
    type         = click.IntRange(min=1),
    help         = "Segundos sin actividad en translating para considerar un capítulo atascado",
)
def sweep(ttl: int):
    """Reencola capítulos atascados en translating."""
    try:
        orchestrator = build_orchestrator()
    except (FileNotFoundError, RuntimeError) as e:
        _abort(str(e))

    with orchestrator:
        requeued = orchestrator.sweep_stuck(ttl_seconds=ttl)

    if not requeued:
        click.echo("[chapterflow] Ningún capítulo atascado.")
        return
    for chapter_id in requeued:
        click.echo(f"[chapterflow]   ↺ {chapter_id}")


# ------------------------------------------------------------------
# Consultas
# ------------------------------------------------------------------

@main.command()
@click.option("--limit", "-l", default=20, show_default=True, type=click.IntRange(min=1))
def pending(limit: int):
    """Lista los capítulos pending más antiguos."""
    repo = _open_repo()
    try:
        chapters = repo.list_pending(limit)
    finally:
        repo.close()

    if not chapters:
        click.echo("[chapterflow] No hay capítulos pending.")
        return

    for chapter in chapters:
        click.echo(f"{chapter.id}  {chapter.story_id}  #{chapter.chapter_number}  {chapter.title}")


@main.command()
@click.argument("chapter_id")
def logs(chapter_id: str):
    """Muestra el status y el historial de un capítulo."""
    repo = _open_repo()
    try:
        chapter = repo.get_chapter(chapter_id, with_logs=True)
    finally:
        repo.close()

    if chapter is None:
        _abort(f"Capítulo no encontrado: {chapter_id}")

    click.echo(f"[chapterflow] {chapter.story_id} #{chapter.chapter_number} — {chapter.status.value}")
    for entry in chapter.logs:
        line = f"  {entry.timestamp}  {entry.level.value:<7}  {entry.message}"
        if entry.data:
            line += f"  {entry.data}"
        click.echo(click.style(line, fg=_LEVEL_COLORS.get(entry.level)))


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _open_repo() -> Repository:
    try:
        return Repository()
    except sqlite3.Error as e:
        _error(f"No se pudo abrir la base de datos: {e}")
        sys.exit(1)


def _read_chapter_file(path: str) -> str:
    p = Path(path)

    if not p.exists():
        _abort(f"Archivo no encontrado: {path}")

    if not p.is_file():
        _abort(f"La ruta no es un archivo: {path}")

    content = p.read_text(encoding="utf-8")
    if not content.strip():
        _abort(f"El archivo está vacío: {path}")

    return content


def _story_range_ids(orchestrator, story_id: str, from_number: int, to_number: int | None) -> list[str]:
    chapters = orchestrator.repo.get_chapters_by_range(
        story_id,
        from_number,
        to_number if to_number is not None else sys.maxsize,
        status = ChapterStatus.PENDING,
    )
    return [c.id for c in chapters]


# ------------------------------------------------------------------
# Helpers de output
# ------------------------------------------------------------------

def _print_summary(result) -> None:
    """Imprime el resumen final del lote."""
    click.echo("")
    click.echo("─" * 50)
    if result.failed:
        click.echo("[chapterflow] ⚠ Lote terminado con errores")
    else:
        click.echo("[chapterflow] ✓ Lote completado")
    click.echo(f"[chapterflow]   Capítulos   : {len(result.outcomes)}")
    click.echo(f"[chapterflow]   Traducidos  : {result.completed}")

    if result.skipped:
        click.echo(f"[chapterflow]   Omitidos    : {result.skipped}")

    if result.failed:
        click.echo(
            click.style(f"[chapterflow]   Fallidos    : {result.failed}", fg="yellow")
        )
        for outcome in result.outcomes:
            if outcome.status == "failed":
                click.echo(click.style(f"[chapterflow]     ✗ {outcome.chapter_id}: {outcome.error}", fg="yellow"))

    click.echo("─" * 50)


def _abort(message: str) -> None:
    """Error de validación — culpa del usuario."""
    click.echo(click.style(f"[chapterflow] Error: {message}", fg="red"), err=True)
    sys.exit(1)


def _error(message: str) -> None:
    """Error de sistema — no es culpa del usuario."""
    click.echo(click.style(f"[chapterflow] {message}", fg="red"), err=True)

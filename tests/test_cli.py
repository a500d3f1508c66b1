# tests/test_cli.py
import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch
from click.testing import CliRunner

from chapterflow.cli import main
from chapterflow.context.story_context import ExtractedContext
from chapterflow.errors import ChapterNotFoundError, InvalidTransitionError
from chapterflow.pipeline.orchestrator import BatchResult, ChapterOutcome, JobOrchestrator
from chapterflow.pipeline.retry import RetryPolicy
from chapterflow.storage.models import ChapterStatus, LogLevel
from chapterflow.storage.repository import Repository


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------

@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_path(tmp_path, monkeypatch) -> Path:
    """Cada test usa su propia DB en disco vía CHAPTERFLOW_DB_PATH."""
    path = tmp_path / "chapterflow.db"
    monkeypatch.setenv("CHAPTERFLOW_DB_PATH", str(path))
    return path


@pytest.fixture
def chapter_file(tmp_path) -> Path:
    f = tmp_path / "cap1.txt"
    f.write_text("第一章\n\n内容", encoding="utf-8")
    return f


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    with patch("chapterflow.cli.build_orchestrator", return_value=mock):
        yield mock


def make_batch(*statuses: str) -> BatchResult:
    return BatchResult(outcomes=[
        ChapterOutcome(
            chapter_id = f"ch{i}",
            status     = status,
            error      = "ExternalAPIError: timeout" if status == "failed" else None,
        )
        for i, status in enumerate(statuses)
    ])


# ------------------------------------------------------------------
# add-chapter
# ------------------------------------------------------------------

class TestAddChapter:

    def test_registra_capitulo_pending(self, runner, db_path, chapter_file):
        result = runner.invoke(main, [
            "add-chapter", "--story", "s1", "--number", "1",
            "--title", "Inicio", "--file", str(chapter_file),
        ])

        assert result.exit_code == 0, result.output
        repo     = Repository(str(db_path))
        chapters = repo.list_pending()
        repo.close()
        assert len(chapters) == 1
        assert chapters[0].title == "Inicio"
        assert chapters[0].original_content == "第一章\n\n内容"
        assert chapters[0].id in result.output

    def test_archivo_inexistente(self, runner, db_path, tmp_path):
        result = runner.invoke(main, [
            "add-chapter", "--story", "s1", "--number", "1", "--file", str(tmp_path / "no.txt"),
        ])
        assert result.exit_code == 1
        assert "no encontrado" in result.output.lower()

    def test_archivo_vacio(self, runner, db_path, tmp_path):
        empty = tmp_path / "vacio.txt"
        empty.write_text("  \n", encoding="utf-8")

        result = runner.invoke(main, [
            "add-chapter", "--story", "s1", "--number", "1", "--file", str(empty),
        ])

        assert result.exit_code == 1
        assert "vacío" in result.output

    def test_numero_duplicado(self, runner, db_path, chapter_file):
        args = ["add-chapter", "--story", "s1", "--number", "1", "--file", str(chapter_file)]
        runner.invoke(main, args)

        result = runner.invoke(main, args)

        assert result.exit_code == 1
        assert "ya tiene un capítulo 1" in result.output

    def test_numero_invalido(self, runner, db_path, chapter_file):
        result = runner.invoke(main, [
            "add-chapter", "--story", "s1", "--number", "0", "--file", str(chapter_file),
        ])
        assert result.exit_code == 1


# ------------------------------------------------------------------
# translate
# ------------------------------------------------------------------

class TestTranslate:

    def test_sin_selector_aborta(self, runner, orchestrator):
        result = runner.invoke(main, ["translate"])
        assert result.exit_code == 1
        assert "exactamente uno" in result.output

    def test_dos_selectores_aborta(self, runner, orchestrator):
        result = runner.invoke(main, ["translate", "--chapter", "a", "--pending", "3"])
        assert result.exit_code == 1

    def test_rango_invertido_aborta(self, runner, orchestrator):
        result = runner.invoke(main, ["translate", "--story", "s1", "--from", "5", "--to", "2"])
        assert result.exit_code == 1

    def test_por_ids(self, runner, orchestrator):
        orchestrator.run.return_value = make_batch("completed", "completed")

        result = runner.invoke(main, ["translate", "-c", "a", "-c", "b", "--model", "claude"])

        assert result.exit_code == 0, result.output
        orchestrator.run.assert_called_once_with(["a", "b"], model="claude")
        assert "Lote completado" in result.output
        assert "Traducidos  : 2" in result.output

    def test_acuse_antes_de_traducir(self, runner, db_path):
        repo = Repository(str(db_path))
        ids  = [repo.create_chapter("s1", n, f"cap {n}") for n in (1, 2)]
        translator = MagicMock()
        translator.translate_long_text.side_effect = lambda text, context, model=None: text
        extractor = MagicMock()
        extractor.extract.return_value = ExtractedContext()
        real = JobOrchestrator(
            repo                  = repo,
            translator            = translator,
            extractor             = extractor,
            retry_policy          = RetryPolicy(sleeper=MagicMock()),
            chapter_delay_seconds = 0,
        )

        with patch("chapterflow.cli.build_orchestrator", return_value=real):
            result = runner.invoke(main, ["translate", "-c", ids[0], "-c", ids[1]])
        repo.close()

        assert result.exit_code == 0, result.output
        assert f"Lote aceptado: 2 capítulos ({ids[0]}, {ids[1]})" in result.output
        assert result.output.index("Lote aceptado") < result.output.index("Lote completado")

    def test_por_rango_de_historia(self, runner, orchestrator):
        chapter = MagicMock()
        chapter.id = "ch-3"
        orchestrator.repo.get_chapters_by_range.return_value = [chapter]
        orchestrator.run.return_value = make_batch("completed")

        result = runner.invoke(main, ["translate", "--story", "s1", "--from", "3", "--to", "3"])

        assert result.exit_code == 0, result.output
        args = orchestrator.repo.get_chapters_by_range.call_args
        assert args.args[:3] == ("s1", 3, 3)
        assert args.kwargs["status"] == ChapterStatus.PENDING
        orchestrator.run.assert_called_once_with(["ch-3"], model=None)

    def test_rango_sin_pendientes(self, runner, orchestrator):
        orchestrator.repo.get_chapters_by_range.return_value = []

        result = runner.invoke(main, ["translate", "--story", "s1"])

        assert result.exit_code == 0
        assert "No hay capítulos pending" in result.output
        orchestrator.run.assert_not_called()

    def test_pendientes(self, runner, orchestrator):
        orchestrator.run_pending.return_value = make_batch("completed")

        result = runner.invoke(main, ["translate", "--pending", "5"])

        assert result.exit_code == 0, result.output
        orchestrator.run_pending.assert_called_once_with(limit=5, model=None)

    def test_resumen_muestra_fallidos(self, runner, orchestrator):
        orchestrator.run.return_value = make_batch("completed", "failed", "skipped")

        result = runner.invoke(main, ["translate", "-c", "a", "-c", "b", "-c", "c"])

        assert result.exit_code == 0
        assert "con errores" in result.output
        assert "Fallidos    : 1" in result.output
        assert "Omitidos    : 1" in result.output
        assert "ch1: ExternalAPIError: timeout" in result.output

    def test_config_no_encontrada(self, runner):
        with patch("chapterflow.cli.build_orchestrator", side_effect=FileNotFoundError("Config no encontrada")):
            result = runner.invoke(main, ["translate", "-c", "a"])

        assert result.exit_code == 1
        assert "Config no encontrada" in result.output

    def test_sin_modelos(self, runner):
        with patch("chapterflow.cli.build_orchestrator", side_effect=RuntimeError("Ningún modelo configurado")):
            result = runner.invoke(main, ["translate", "-c", "a"])

        assert result.exit_code == 1

    def test_error_inesperado(self, runner, orchestrator):
        orchestrator.run.side_effect = OSError("disco lleno")

        result = runner.invoke(main, ["translate", "-c", "a"])

        assert result.exit_code == 1
        assert "Error inesperado" in result.output


# ------------------------------------------------------------------
# Mantenimiento
# ------------------------------------------------------------------

class TestMaintenance:

    def test_resubmit(self, runner, orchestrator):
        result = runner.invoke(main, ["resubmit", "ch-1"])

        assert result.exit_code == 0, result.output
        orchestrator.resubmit.assert_called_once_with("ch-1")

    def test_resubmit_inexistente(self, runner, orchestrator):
        orchestrator.resubmit.side_effect = ChapterNotFoundError("x")

        result = runner.invoke(main, ["resubmit", "ch-1"])

        assert result.exit_code == 1
        assert "no encontrado" in result.output

    def test_resubmit_de_no_failed(self, runner, orchestrator):
        orchestrator.resubmit.side_effect = InvalidTransitionError(
            ChapterStatus.COMPLETED, ChapterStatus.PENDING,
        )

        result = runner.invoke(main, ["resubmit", "ch-1"])

        assert result.exit_code == 1
        assert "completed" in result.output

    def test_sweep(self, runner, orchestrator):
        orchestrator.sweep_stuck.return_value = ["ch-1", "ch-2"]

        result = runner.invoke(main, ["sweep", "--ttl", "600"])

        assert result.exit_code == 0
        orchestrator.sweep_stuck.assert_called_once_with(ttl_seconds=600)
        assert "ch-1" in result.output
        assert "ch-2" in result.output

    def test_sweep_sin_atascados(self, runner, orchestrator):
        orchestrator.sweep_stuck.return_value = []

        result = runner.invoke(main, ["sweep"])

        assert "Ningún capítulo atascado" in result.output


# ------------------------------------------------------------------
# Consultas
# ------------------------------------------------------------------

class TestQueries:

    def test_pending_vacio(self, runner, db_path):
        result = runner.invoke(main, ["pending"])
        assert result.exit_code == 0
        assert "No hay capítulos pending" in result.output

    def test_pending_lista_capitulos(self, runner, db_path):
        repo = Repository(str(db_path))
        chapter_id = repo.create_chapter("s1", 7, "texto", title="Séptimo")
        repo.close()

        result = runner.invoke(main, ["pending"])

        assert chapter_id in result.output
        assert "#7" in result.output

    def test_logs(self, runner, db_path):
        repo = Repository(str(db_path))
        chapter_id = repo.create_chapter("s1", 1, "texto")
        repo.append_log(chapter_id, LogLevel.INFO, "Traducción iniciada")
        repo.append_log(chapter_id, LogLevel.ERROR, "Traducción fallida", {"error": "timeout"})
        repo.close()

        result = runner.invoke(main, ["logs", chapter_id])

        assert result.exit_code == 0
        assert "pending" in result.output
        assert "Traducción iniciada" in result.output
        assert "timeout" in result.output

    def test_logs_capitulo_inexistente(self, runner, db_path):
        result = runner.invoke(main, ["logs", "no-existe"])
        assert result.exit_code == 1

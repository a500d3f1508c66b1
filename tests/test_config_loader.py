# tests/test_config_loader.py
import pytest
from chapterflow.config_loader import PipelineConfig, load_model_configs, load_pipeline_config


CONFIG_YAML = """
models:
  - name: claude
    priority: 2
    model: claude-3-5-sonnet-latest
    api_key: ${TEST_CLAUDE_KEY}
  - name: deepseek
    priority: 1
    model: deepseek-chat
    api_key: literal-key
    base_url: https://api.deepseek.com
    cooldown_seconds: 5

pipeline:
  target_lang: English
  max_chunk_size: 4000
  chapter_delay_seconds: 0
  max_workers: "2"
  unknown_key: ignored
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    return path


class TestLoadModelConfigs:

    def test_ordena_por_prioridad(self, config_file):
        configs = load_model_configs(str(config_file))
        assert [c.name for c in configs] == ["deepseek", "claude"]

    def test_resuelve_variables_de_entorno(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_CLAUDE_KEY", "sk-desde-env")

        claude = next(c for c in load_model_configs(str(config_file)) if c.name == "claude")

        assert claude.api_key == "sk-desde-env"

    def test_variable_inexistente_queda_en_none(self, config_file, monkeypatch):
        monkeypatch.delenv("TEST_CLAUDE_KEY", raising=False)

        claude = next(c for c in load_model_configs(str(config_file)) if c.name == "claude")

        assert claude.api_key is None

    def test_valores_literales_y_defaults(self, config_file):
        deepseek = load_model_configs(str(config_file))[0]

        assert deepseek.api_key == "literal-key"
        assert deepseek.base_url == "https://api.deepseek.com"
        assert deepseek.cooldown_seconds == 5
        assert deepseek.timeout_seconds == 120

    def test_archivo_inexistente_lanza_error(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_model_configs(str(tmp_path / "no_existe.yaml"))

    def test_usa_variable_de_entorno_para_la_ruta(self, config_file, monkeypatch):
        monkeypatch.setenv("CHAPTERFLOW_CONFIG_PATH", str(config_file))
        assert len(load_model_configs()) == 2


class TestLoadPipelineConfig:

    def test_sobreescribe_solo_lo_indicado(self, config_file):
        pipeline = load_pipeline_config(str(config_file))

        assert pipeline.target_lang == "English"
        assert pipeline.max_chunk_size == 4000
        assert pipeline.chapter_delay_seconds == 0
        assert pipeline.source_lang == PipelineConfig().source_lang

    def test_convierte_tipos(self, config_file):
        assert load_pipeline_config(str(config_file)).max_workers == 2

    def test_sin_seccion_pipeline_usa_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("models: []\n", encoding="utf-8")

        assert load_pipeline_config(str(path)) == PipelineConfig()

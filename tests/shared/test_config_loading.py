"""
Tests for YAML configuration loading and environment overrides.
"""

import pytest
from pydantic import ValidationError

from src.shared.config import Config, Settings, load_config


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "CONFIG_PATH",
        "RERANKER_ENABLED",
        "RERANKER_SERVICE_URL",
        "ANSWERABILITY_THRESHOLD",
        "VECTOR_SEARCH_TIMEOUT_MS",
        "OVERALL_TIMEOUT_MS",
        "CONTEXT_TOKEN_BUDGET",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ENV", "test")
    return monkeypatch


class TestLoadConfig:
    def test_loads_environment_yaml(self, clean_env):
        config, settings = load_config()

        assert settings.env == "test"
        assert config.app.environment == "test"
        assert config.search.rrf_k == 60
        assert config.timeouts.overall == 45000
        assert config.guardrail.answerability_threshold == 0.6
        assert config.context.budget.token_budget == 8000
        assert set(config.search.intent.profiles) == {
            "definition_measurement_procedure",
            "entity_lookup",
            "exploratory",
        }
        # rules omitted from YAML fall back to the built-in set
        assert len(config.context.answerability.direct_answer_rules) == 3

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("RERANKER_ENABLED", "true")
        clean_env.setenv("RERANKER_SERVICE_URL", "http://rerank.internal:9000")
        clean_env.setenv("ANSWERABILITY_THRESHOLD", "0.75")
        clean_env.setenv("VECTOR_SEARCH_TIMEOUT_MS", "1500")
        clean_env.setenv("CONTEXT_TOKEN_BUDGET", "4000")

        config, _ = load_config()

        assert config.search.reranker.enabled is True
        assert config.search.reranker.base_url == "http://rerank.internal:9000"
        assert config.guardrail.answerability_threshold == 0.75
        assert config.timeouts.vector_search == 1500
        # untouched values keep their YAML setting
        assert config.timeouts.keyword_search == 3000
        assert config.context.budget.token_budget == 4000

    def test_explicit_config_path(self, clean_env, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("search:\n  limit: 5\ntimeouts:\n  overall: 9000\n")
        clean_env.setenv("CONFIG_PATH", str(path))

        config, _ = load_config()

        assert config.search.limit == 5
        assert config.timeouts.overall == 9000
        assert config.timeouts.vector_search == 5000

    def test_missing_file(self, clean_env, tmp_path):
        clean_env.setenv("CONFIG_PATH", str(tmp_path / "absent.yaml"))

        with pytest.raises(FileNotFoundError):
            load_config()

    def test_settings_passed_explicitly(self, clean_env, tmp_path):
        path = tmp_path / "explicit.yaml"
        path.write_text("guardrail:\n  enabled: false\n")

        config, settings = load_config(Settings(CONFIG_PATH=str(path)))

        assert settings.config_path == str(path)
        assert config.guardrail.enabled is False


class TestConfigValidation:
    def test_invalid_normalization(self):
        with pytest.raises(ValidationError):
            Config(search={"normalization": "softmax"})

    def test_invalid_direct_answer_pattern(self):
        with pytest.raises(ValidationError):
            Config(
                context={
                    "answerability": {
                        "direct_answer_rules": [
                            {"name": "broken", "query_pattern": "(", "content_pattern": "x"}
                        ]
                    }
                }
            )

    def test_threshold_out_of_range(self):
        with pytest.raises(ValidationError):
            Config(guardrail={"answerability_threshold": 1.5})

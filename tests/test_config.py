"""Tests for configuration loading and logging setup."""

import pytest
from loguru import logger
from pydantic import ValidationError

from agentscript.config import (
    AgentScriptConfig,
    HotReloadConfig,
    LoggingConfig,
    OrchestratorConfig,
    load_config,
)
from agentscript.logging_config import setup_logging


class TestAgentScriptConfig:
    """Test settings defaults, environment overrides and YAML files."""

    def test_defaults(self):
        config = AgentScriptConfig()
        assert config.orchestrator.backoff_base_seconds == 1.0
        assert config.orchestrator.strict_secrets is True
        assert config.hot_reload.cache_size == 100
        assert config.hot_reload.pattern == "*.agent"
        assert config.corrector.default_provider == "openai"
        assert config.corrector.default_timeout_ms == 60000
        assert config.secrets.use_keyring is False

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("AGENTSCRIPT_ORCHESTRATOR__STRICT_SECRETS", "false")
        monkeypatch.setenv("AGENTSCRIPT_HOT_RELOAD__DEBOUNCE_MS", "250")
        config = AgentScriptConfig()
        assert config.orchestrator.strict_secrets is False
        assert config.hot_reload.debounce_ms == 250

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "agentscript.yaml"
        path.write_text(
            "environment: test\n"
            "hot_reload:\n"
            "  cache_size: 5\n"
            "linter:\n"
            "  disabled_rules: [retry-defaults]\n"
            "unrelated:\n"
            "  key: value\n"
        )
        config = AgentScriptConfig.load_from_yaml(path)
        assert config.environment == "test"
        assert config.hot_reload.cache_size == 5
        assert config.linter.disabled_rules == ["retry-defaults"]

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            AgentScriptConfig.load_from_yaml(tmp_path / "nope.yaml")

    def test_load_config_falls_back_to_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "nope.yaml"))
        assert config.llm.model == "gpt-4o-mini"

    def test_validators(self):
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            HotReloadConfig(cache_size=0)
        assert OrchestratorConfig().max_backoff_seconds is None
        assert OrchestratorConfig(max_backoff_seconds=5).max_backoff_seconds == 5.0


class TestSetupLogging:
    """Test loguru sink configuration."""

    def teardown_method(self):
        setup_logging()

    def test_file_sink(self, tmp_path):
        log_file = tmp_path / "logs" / "agentscript.log"
        setup_logging(LoggingConfig(level="debug", file_enabled=True, file_path=str(log_file), colorize=False))

        logger.info("hello from the test")
        logger.complete()

        assert log_file.exists()
        assert "hello from the test" in log_file.read_text()

    def test_level_filters(self, tmp_path):
        log_file = tmp_path / "agentscript.log"
        setup_logging(LoggingConfig(level="WARNING", file_enabled=True, file_path=str(log_file), colorize=False))

        logger.info("quiet")
        logger.warning("loud")

        text = log_file.read_text()
        assert "loud" in text
        assert "quiet" not in text

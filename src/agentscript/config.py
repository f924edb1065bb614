"""Configuration system for AgentScript."""

from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    colorize: bool = True
    file_enabled: bool = False
    file_path: str = "logs/agentscript.log"
    file_rotation: str = "10 MB"
    file_retention: str = "1 week"
    json_logs: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        return v.upper()


class OrchestratorConfig(BaseModel):
    """Step execution settings."""

    backoff_base_seconds: float = 1.0
    max_backoff_seconds: float | None = None
    strict_secrets: bool = True
    validate_before_execute: bool = True
    http_timeout_seconds: float = 60.0


class HotReloadConfig(BaseModel):
    """Parse cache and file watching settings."""

    enable_caching: bool = True
    cache_size: int = 100
    debounce_ms: int = 100
    batch_concurrency: int = 5
    pattern: str = "*.agent"
    queue_size: int = 16

    @field_validator("cache_size", "batch_concurrency", "queue_size")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class CorrectorConfig(BaseModel):
    """Defaults the corrector fills into missing step fields."""

    default_provider: str = "openai"
    default_retries: int = 3
    default_timeout_ms: int = 60000
    default_http_method: str = "POST"
    default_http_headers: dict[str, str] = Field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )


class LinterConfig(BaseModel):
    disabled_rules: list[str] = Field(default_factory=list)


class SecretsConfig(BaseModel):
    """Where env-kind secrets are looked up."""

    use_keyring: bool = False
    keyring_service: str = "agentscript"


class LLMConfig(BaseModel):
    """Reference OpenAI provider configuration."""

    model: str = "gpt-4o-mini"
    api_key: str | None = None
    api_key_env: str = "OPENAI_API_KEY"
    base_url: str | None = None
    temperature: float = 0.7
    max_tokens: int = 4000
    timeout: float = 60.0


CONFIG_SECTIONS = ("logging", "orchestrator", "hot_reload", "corrector", "linter", "secrets", "llm")


class AgentScriptConfig(BaseSettings):
    """Main AgentScript configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AGENTSCRIPT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    debug: bool = False

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    hot_reload: HotReloadConfig = Field(default_factory=HotReloadConfig)
    corrector: CorrectorConfig = Field(default_factory=CorrectorConfig)
    linter: LinterConfig = Field(default_factory=LinterConfig)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    @classmethod
    def load_from_yaml(cls, yaml_path: str | Path) -> "AgentScriptConfig":
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)

        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path, encoding="utf-8") as f:
                yaml_data: dict[str, Any] = yaml.safe_load(f) or {}

            config_dict = {key: yaml_data[key] for key in CONFIG_SECTIONS if key in yaml_data}
            for key in ("environment", "debug"):
                if key in yaml_data:
                    config_dict[key] = yaml_data[key]

            return cls(**config_dict)
        except Exception as e:
            logger.error(f"Error loading YAML configuration: {e}")
            raise


def load_config(config_file: str | None = None) -> AgentScriptConfig:
    """Load configuration from file or environment."""
    if config_file and Path(config_file).exists():
        logger.info(f"Loading configuration from: {config_file}")
        return AgentScriptConfig.load_from_yaml(config_file)
    logger.info("Using default configuration with environment overrides")
    return AgentScriptConfig()

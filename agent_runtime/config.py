"""Configuration management for the agent runtime."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.agent-runtime/config.yaml").expanduser()
DEFAULT_DB_PATH = Path("~/.agent-runtime/sessions.db").expanduser()
LOCAL_CONFIG_FILENAME = "agent_runtime.yaml"


class ModelConfig(BaseModel):
    """Model configuration."""

    provider: str = "ollama"
    model: str = "llama3.2"
    temperature: float = 0.7
    max_tokens: int = 4096
    api_key: str = ""
    base_url: str = ""
    timeout: float = 120.0


class RunSettings(BaseModel):
    """Defaults for a single invocation."""

    max_llm_calls: int = 500
    streaming_mode: Literal["none", "sse", "bidi"] = "none"
    progressive_sse: bool = False


class LiveConfig(BaseModel):
    """Bidirectional streaming configuration."""

    # Seconds stop_streaming waits for a cancelled tool task.
    stop_streaming_timeout: float = 1.0


class CodeExecutionConfig(BaseModel):
    """Code executor defaults."""

    error_retry_attempts: int = 2
    optimize_data_file: bool = False
    timeout: float = 30.0


class SessionConfig(BaseModel):
    """Session configuration."""

    storage: Literal["memory", "sqlite"] = "memory"
    path: str = str(DEFAULT_DB_PATH)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for the agent runtime."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    run: RunSettings = Field(default_factory=RunSettings)
    live: LiveConfig = Field(default_factory=LiveConfig)
    code_execution: CodeExecutionConfig = Field(default_factory=CodeExecutionConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="AGENT_RUNTIME_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from YAML; env vars are applied by BaseSettings."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config

"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from pathlib import Path

import pydantic
import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from hookfeed.errors import ConfigError
from hookfeed.utils.platform import get_config_dir, get_data_dir


class ServerConfig(BaseModel):
    bind: str = "0.0.0.0"
    port: int = 8420
    max_body_size: int = 1024 * 1024


class TransformConfig(BaseModel):
    middleware_dir: str = ""
    max_instructions: int = 10_000_000


class RetentionConfig(BaseModel):
    enabled: bool = True
    sweep_interval: int = 3600  # seconds


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HOOKFEED_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    transform: TransformConfig = Field(default_factory=TransformConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    feeds_file: str = ""
    data_dir: str = ""
    log_level: str = "INFO"
    log_json: bool = False

    def get_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir)
        return get_data_dir()

    def get_feeds_file(self) -> Path:
        if self.feeds_file:
            return Path(self.feeds_file)
        return get_config_dir() / "feeds.yaml"

    def get_middleware_dir(self) -> Path:
        if self.transform.middleware_dir:
            return Path(self.transform.middleware_dir)
        return get_config_dir() / "middleware"


def _config_path(config_path: str | Path | None) -> Path | None:
    if config_path is not None:
        return Path(config_path)
    env = os.environ.get("HOOKFEED_CONFIG")
    if env:
        return Path(env)
    default = get_config_dir() / "config.yaml"
    return default if default.exists() else None


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config.

    An explicitly named file that is missing, unparsable or not a mapping
    raises ConfigError.
    """
    path = _config_path(config_path)
    if path is None:
        return Settings()

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to load config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be a mapping")

    # Keyword init values (the YAML) rank above env vars in pydantic-settings
    try:
        return Settings(**data)
    except pydantic.ValidationError as exc:
        raise ConfigError(f"invalid config {path}: {exc}") from exc

"""Configuration loading with pydantic-settings.

Supports loading configuration from multiple sources with precedence:
1. Direct kwargs (highest priority)
2. Environment variables (CODESIFT__SECTION__KEY)
3. Global config (~/.config/codesift/config.yaml, or $CODESIFT_CONFIG)
4. Built-in defaults (lowest priority)

Configuration is per user, not per workspace: the index store lives outside
the indexed tree, so nothing is ever written into a repository.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from codesift.config.models import (
    CodeSiftConfig,
    EmbeddingConfig,
    IndexerConfig,
    LoggingConfig,
    SearchConfig,
    StorageConfig,
)
from codesift.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/codesift/config.yaml").expanduser()
CONFIG_PATH_ENV_VAR = "CODESIFT_CONFIG"


def global_config_path() -> Path:
    override = os.environ.get(CONFIG_PATH_ENV_VAR)
    return Path(override).expanduser() if override else GLOBAL_CONFIG_PATH


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError.parse_error(str(path), "top level must be a mapping")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class _YamlSource(PydanticBaseSettingsSource):
    """Settings source that reads from pre-loaded YAML config."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_config: dict[str, Any]) -> None:
        super().__init__(settings_cls)
        self._yaml_config = yaml_config

    def get_field_value(
        self,
        field: Any,  # noqa: ARG002
        field_name: str,
    ) -> tuple[Any, str, bool]:
        val = self._yaml_config.get(field_name)
        return val, field_name, val is not None

    def __call__(self) -> dict[str, Any]:
        return self._yaml_config


def _make_settings_class(yaml_config: dict[str, Any]) -> type[BaseSettings]:
    """Create a Settings class with instance-based YAML source (thread-safe)."""

    class CodeSiftSettings(BaseSettings):
        """Root config. Env vars: CODESIFT__LOGGING__LEVEL, CODESIFT__SEARCH__TEXT_WEIGHT, etc."""

        model_config = SettingsConfigDict(
            env_prefix="CODESIFT__",
            env_nested_delimiter="__",
            case_sensitive=False,
        )

        logging: LoggingConfig = Field(default_factory=LoggingConfig)
        storage: StorageConfig = Field(default_factory=StorageConfig)
        indexer: IndexerConfig = Field(default_factory=IndexerConfig)
        embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
        search: SearchConfig = Field(default_factory=SearchConfig)

        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
            file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        ) -> tuple[PydanticBaseSettingsSource, ...]:
            # Precedence (first wins): init kwargs > env vars > yaml file
            return (init_settings, env_settings, _YamlSource(settings_cls, yaml_config))

    return CodeSiftSettings


def load_config(config_path: Path | None = None, **kwargs: Any) -> CodeSiftConfig:
    """Load config: defaults < global YAML < env vars < kwargs.

    Args:
        config_path: YAML file to read instead of the global config file.
        **kwargs: Override values (highest precedence), keyed by section.

    Returns:
        Fully resolved configuration object.

    Raises:
        ConfigError: On invalid YAML syntax or validation errors.
    """
    yaml_config = _load_yaml(config_path or global_config_path())

    settings_cls = _make_settings_class(yaml_config)
    try:
        settings = settings_cls(**kwargs)
        return CodeSiftConfig.model_validate(settings.model_dump())
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError.invalid_value(field, err.get("input"), err["msg"]) from e


def merge_overrides(config: CodeSiftConfig, overrides: dict[str, Any]) -> CodeSiftConfig:
    """Return a copy of ``config`` with nested ``overrides`` applied and validated."""
    merged = _deep_merge(config.model_dump(), overrides)
    try:
        return CodeSiftConfig.model_validate(merged)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError.invalid_value(field, err.get("input"), err["msg"]) from e

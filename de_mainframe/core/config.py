"""
Configuration management for the detection analysis engine.
"""

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    SettingsConfigDict,
    SettingsError,
)

from de_mainframe.core.exceptions import ConfigurationError
from de_mainframe.core.logging import get_logger
from de_mainframe.schemas.detection import DetectionRecord
from de_mainframe.schemas.spl import ParsingRule


logger = get_logger(__name__)


TTL_DAYS = 365
TUNE_WINDOW_DAYS = 30
WARNING_WINDOW_DAYS = 90
MANDATORY_FIELDS = ["name", "objective", "severity", "search_string"]

DEFAULT_PARSING_RULES = [
    ParsingRule(field="index", value="azure_cloud|O365", category="datasource", tag="Microsoft Defender"),
    ParsingRule(field="index", value="netskope", category="datasource", tag="Netskope"),
    ParsingRule(field="index", value="windows", category="datasource", tag="Windows Events"),
    ParsingRule(field="index", value="rsa", category="datasource", tag="RSA SecurID"),
    ParsingRule(field="sourcetype", value="XmlWinEventLog.*Sysmon", category="datasource", tag="Sysmon"),
    ParsingRule(field="sourcetype", value="rsa:securid", category="datasource", tag="RSA SecurID"),
    ParsingRule(field="EventCode", value="1|3|7|10|11|22", category="technology", tag="Sysmon Events"),
]


class EngineConfig(BaseSettings):
    """Settings consumed by the classifier, parser and CLI."""

    model_config = SettingsConfigDict(
        env_prefix="DE_MAINFRAME_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="forbid",
    )

    # Lifecycle
    ttl_days: int = TTL_DAYS
    tune_window_days: int = TUNE_WINDOW_DAYS
    warning_window_days: int = WARNING_WINDOW_DAYS
    mandatory_fields: list[str] = MANDATORY_FIELDS

    # SPL parsing
    parsing_rules: list[ParsingRule] = DEFAULT_PARSING_RULES

    # Environment
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"

    @field_validator("ttl_days", "tune_window_days", "warning_window_days")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("day counts must be positive")
        return v

    @field_validator("mandatory_fields")
    @classmethod
    def validate_mandatory_fields(cls, v: list[str]) -> list[str]:
        unknown = [field for field in v if field not in DetectionRecord.COMPLETENESS_FIELDS]
        if unknown:
            raise ValueError(
                f"Unknown mandatory fields: {unknown}. "
                f"Valid: {list(DetectionRecord.COMPLETENESS_FIELDS)}"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        valid_formats = ["console", "json"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of {valid_formats}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of {valid_envs}")
        return v.lower()

    @model_validator(mode="after")
    def validate_windows(self) -> "EngineConfig":
        if self.tune_window_days >= self.ttl_days:
            raise ValueError("tune_window_days must be smaller than ttl_days")
        if self.warning_window_days < self.tune_window_days:
            raise ValueError("warning_window_days must not be smaller than tune_window_days")
        return self


class ConfigManager:
    """Loads and validates engine configuration from files, environment and overrides."""

    def __init__(self, config_schema: type[EngineConfig] = EngineConfig):
        """
        Initialize config manager.

        Args:
            config_schema: Settings class used for validation
        """
        self.config_schema = config_schema
        self._config: EngineConfig | None = None

    def load_config(
        self,
        config_file: str | Path | None = None,
        **override_kwargs: Any,
    ) -> EngineConfig:
        """
        Load and validate configuration from multiple sources with priority order:
        1. Keyword arguments (highest priority)
        2. Environment variables (DE_MAINFRAME_*)
        3. Configuration file
        4. Default values (lowest priority)

        Args:
            config_file: Path to a JSON or YAML configuration file
            **override_kwargs: Direct configuration overrides

        Returns:
            Validated configuration object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        file_data: dict[str, Any] = {}
        if config_file:
            file_data = self._load_from_file(config_file)

        try:
            # pydantic-settings gives init kwargs priority over the environment,
            # so file values are only applied where no variable is set.
            from_environment = self._environment_fields()
            merged = {
                **{key: value for key, value in file_data.items() if key not in from_environment},
                **override_kwargs,
            }
            self._config = self.config_schema(**merged)
        except (ValidationError, SettingsError) as e:
            error_msg = f"Configuration validation failed: {e}"
            logger.error("config_invalid", error=str(e))
            raise ConfigurationError(error_msg) from e

        logger.debug(
            "config_loaded",
            ttl_days=self._config.ttl_days,
            mandatory_fields=self._config.mandatory_fields,
            parsing_rules=len(self._config.parsing_rules),
        )
        return self._config

    def _environment_fields(self) -> set[str]:
        """Field names set through DE_MAINFRAME_* variables or the .env file."""
        fields: set[str] = set()
        for source in (
            EnvSettingsSource(self.config_schema),
            DotEnvSettingsSource(self.config_schema),
        ):
            fields.update(source())
        return fields

    def _load_from_file(self, config_file: str | Path) -> dict[str, Any]:
        """
        Load configuration from a JSON or YAML file.

        Args:
            config_file: Path to configuration file

        Returns:
            Configuration dictionary

        Raises:
            ConfigurationError: If file cannot be loaded or parsed
        """
        config_path = Path(config_file)

        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        if not config_path.is_file():
            raise ConfigurationError(f"Configuration path is not a file: {config_path}")

        if not os.access(config_path, os.R_OK):
            raise ConfigurationError(f"Cannot read configuration file: {config_path}")

        try:
            with open(config_path, encoding="utf-8") as f:
                if config_path.suffix.lower() in (".yml", ".yaml"):
                    config_data = yaml.safe_load(f)
                else:
                    config_data = json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Invalid configuration file {config_path}: {e}"
            ) from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Configuration file must contain an object")

        logger.info("config_file_loaded", path=str(config_path))
        return config_data

    @property
    def config(self) -> EngineConfig | None:
        """Get the loaded configuration."""
        return self._config

    def get_config_dict(self) -> dict[str, Any]:
        """Get configuration as dictionary."""
        if self._config is None:
            raise ConfigurationError("No configuration loaded")
        return self._config.model_dump()

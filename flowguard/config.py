"""Configuration system for FlowGuard."""

import logging
from pathlib import Path
from typing import Optional, Dict
import yaml
from pydantic import BaseModel, Field, field_validator, ConfigDict

from .exceptions import ConfigError

logger = logging.getLogger(__name__)


class LLMConfig(BaseModel):
    """LLM provider settings."""
    host: str = "http://localhost:11434"
    model: str = "qwen2.5-coder:7b"
    temperature: float = 0.2
    max_tokens: int = 4000
    timeout: int = 300
    max_retries: int = 3
    retry_delay: float = 2.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 60

    model_config = ConfigDict(from_attributes=True)

    @field_validator('max_retries', 'timeout', 'circuit_breaker_threshold')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator('temperature')
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError("temperature must be between 0 and 2")
        return v


class VerificationSettings(BaseModel):
    """Default verification options, used when a run does not pass its own."""
    skip_low_severity: bool = False
    auto_approve: bool = False
    include_code_examples: bool = True
    max_issues: Optional[int] = None
    rating_concurrency: int = 1

    model_config = ConfigDict(from_attributes=True)

    @field_validator('max_issues')
    @classmethod
    def validate_max_issues(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("max_issues must be non-negative")
        return v

    @field_validator('rating_concurrency')
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("rating_concurrency must be at least 1")
        return v


class StorageConfig(BaseModel):
    """Artifact storage settings."""
    db_path: str = "data/flowguard.db"
    reports_path: str = "data/reports"

    model_config = ConfigDict(from_attributes=True)


class PluginsConfig(BaseModel):
    """Verification rule settings."""
    builtin_rules_enabled: bool = True
    # rule id -> enabled; rules not listed fall back to their own default
    verification_rules: Dict[str, bool] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)

    def is_rule_enabled(self, rule_id: str, default: bool) -> bool:
        return self.verification_rules.get(rule_id, default)


class IntegrationsConfig(BaseModel):
    """Hosted git provider settings."""
    github_token: Optional[str] = None
    gitlab_token: Optional[str] = None
    gitlab_url: str = "https://gitlab.com"

    model_config = ConfigDict(from_attributes=True)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file_path: str = "data/flowguard.log"
    console_enabled: bool = True
    max_file_size_mb: int = 50
    backup_count: int = 5

    model_config = ConfigDict(from_attributes=True)

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v_upper


class FlowGuardConfig(BaseModel):
    """Main FlowGuard configuration."""
    llm: LLMConfig = Field(default_factory=LLMConfig)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    integrations: IntegrationsConfig = Field(default_factory=IntegrationsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    workspace_root: str = "."

    model_config = ConfigDict(from_attributes=True)


class ConfigLoader:
    """Load and validate configuration from YAML files."""

    @staticmethod
    def load_config(
        config_path: str,
        local_override_path: Optional[str] = None
    ) -> FlowGuardConfig:
        """Load configuration with optional local overrides.

        Args:
            config_path: Path to main config file
            local_override_path: Optional path to local override file

        Returns:
            Validated FlowGuardConfig

        Raises:
            ConfigError: If config loading or validation fails
        """
        try:
            config_dict = ConfigLoader._load_yaml(config_path)

            if local_override_path and Path(local_override_path).exists():
                logger.info(f"Loading local config overrides from {local_override_path}")
                override_dict = ConfigLoader._load_yaml(local_override_path)
                config_dict = ConfigLoader.merge_configs(config_dict, override_dict)

            config = FlowGuardConfig(**config_dict)
            ConfigLoader.validate_paths(config)

            logger.info("Configuration loaded successfully")
            return config

        except ConfigError:
            raise
        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigError(f"Failed to load configuration: {e}")

    @staticmethod
    def _load_yaml(path: str) -> dict:
        """Load YAML file."""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
                return data if data else {}
        except FileNotFoundError:
            raise ConfigError(f"Config file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")

    @staticmethod
    def merge_configs(base: dict, override: dict) -> dict:
        """Deep merge two configuration dictionaries.

        Args:
            base: Base configuration
            override: Override configuration

        Returns:
            Merged configuration
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigLoader.merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    @staticmethod
    def validate_paths(config: FlowGuardConfig):
        """Create the directories the configuration points at."""
        Path(config.storage.db_path).parent.mkdir(parents=True, exist_ok=True)
        Path(config.storage.reports_path).mkdir(parents=True, exist_ok=True)
        Path(config.logging.file_path).parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def save_config(config: FlowGuardConfig, output_path: str):
        """Save configuration to YAML file.

        Args:
            config: Configuration to save
            output_path: Output file path
        """
        try:
            config_dict = config.model_dump()

            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'w') as f:
                yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

            logger.info(f"Configuration saved to {output_path}")
        except Exception as e:
            logger.error(f"Failed to save configuration: {e}")
            raise ConfigError(f"Failed to save configuration: {e}")


def get_default_config() -> FlowGuardConfig:
    """Get default configuration.

    Returns:
        Default FlowGuardConfig
    """
    return FlowGuardConfig()

"""
settings_loader.py

Configuration management for the cluster playground engine.
Loads and validates settings from YAML configuration with environment variable substitution.

Features:
- YAML configuration loading with validation
- Environment variable substitution (${VAR_NAME} syntax)
- Singleton pattern for global settings access
- Type-safe configuration with Pydantic models
- Default values when no configuration file exists
"""

import os
import re
import logging
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from cluster_playground.schemas.data_models import (
    DBSCANParameters,
    HierarchicalParameters,
    KMeansParameters,
)
from cluster_playground.utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models (Pydantic)
# =============================================================================

class ServiceSettings(BaseModel):
    """General service settings."""
    name: str = Field(default="cluster-playground", description="Service name")
    version: str = Field(default="1.0.0", description="Service version")
    environment: str = Field(default="development", description="Environment (development, test, production)")


class ClusteringAlgorithmsSettings(BaseModel):
    """Default parameters per algorithm (same models the jobs validate against)."""
    kmeans: KMeansParameters = Field(default_factory=KMeansParameters)
    dbscan: DBSCANParameters = Field(default_factory=DBSCANParameters)
    hierarchical: HierarchicalParameters = Field(default_factory=HierarchicalParameters)


class ProgressSettings(BaseModel):
    """Progress cadence per algorithm."""
    kmeans: int = Field(default=10, ge=1, description="Report every N iterations")
    dbscan: int = Field(default=100, ge=1, description="Report every N processed points")
    hierarchical: int = Field(default=10, ge=1, description="Report when remaining clusters is a multiple of N")


class ClusteringSettings(BaseModel):
    """Main clustering configuration."""
    default_algorithm: str = Field(default="kmeans", description="Algorithm selected on startup")
    algorithms: ClusteringAlgorithmsSettings = Field(default_factory=ClusteringAlgorithmsSettings)
    progress_intervals: ProgressSettings = Field(default_factory=ProgressSettings)

    @field_validator("default_algorithm")
    @classmethod
    def _known_algorithm(cls, value: str) -> str:
        value = value.lower()
        if value not in ("kmeans", "dbscan", "hierarchical"):
            raise ValueError(f"Unsupported algorithm '{value}'")
        return value


class ExecutorSettings(BaseModel):
    """Background executor configuration."""
    transport: Literal["process", "thread"] = Field(default="process", description="Isolation transport")
    start_method: str = Field(default="spawn", description="multiprocessing start method")
    cancel_poll_interval_ms: float = Field(default=20.0, ge=0.0, description="Minimum gap between cancel-request polls")
    shutdown_timeout_seconds: float = Field(default=5.0, gt=0.0, description="Wait for the worker on shutdown")
    log_resource_usage: bool = Field(default=True, description="Log worker CPU/memory after each job")


class CoordinatorSettings(BaseModel):
    """Job lifecycle configuration."""
    debounce_seconds: float = Field(default=0.5, ge=0.0, description="Quiescence window for parameter-driven re-runs")
    history_capacity: int = Field(default=10, ge=1, description="Undo/redo entries kept")
    realtime_parameter_updates: bool = Field(default=True, description="Re-run on parameter edits once a result exists")
    auto_quality_assessment: bool = Field(default=True, description="Evaluate quality on every completed job")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="console", description="Log format (json or console)")
    file: Optional[str] = Field(default=None, description="Optional log file path")

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{value}'")
        return value


class Settings(BaseModel):
    """Root configuration model."""
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    clustering: ClusteringSettings = Field(default_factory=ClusteringSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    coordinator: CoordinatorSettings = Field(default_factory=CoordinatorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def default_parameters(self, algorithm: str) -> BaseModel:
        """Configured default parameters for an algorithm."""
        return getattr(self.clustering.algorithms, algorithm)

    def progress_intervals(self) -> Dict[str, int]:
        return self.clustering.progress_intervals.model_dump()


# =============================================================================
# Configuration Manager (Singleton)
# =============================================================================

class ConfigManager:
    """
    Singleton configuration manager that loads and caches settings.

    Features:
    - Loads YAML configuration from file
    - Substitutes environment variables using ${VAR_NAME} syntax
    - Validates configuration using Pydantic models
    - Provides global access to settings
    """

    _instance: Optional['ConfigManager'] = None
    _settings: Optional[Settings] = None

    def __new__(cls):
        """Ensure singleton pattern."""
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    @classmethod
    def load_config(cls, config_path: Optional[str] = None) -> Settings:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to configuration file. If None, searches the
                default locations and falls back to built-in defaults.

        Returns:
            Settings object with validated configuration

        Raises:
            ConfigurationError: If an explicit file is missing or the
                configuration is invalid
        """
        if cls._settings is not None:
            return cls._settings

        if config_path is None:
            possible_paths = [
                Path(os.getenv("CLUSTER_PLAYGROUND_CONFIG", "config/settings.yaml")),
                Path("config/settings.yaml"),
                Path(__file__).resolve().parents[2] / "config" / "settings.yaml",
            ]

            config_path_obj = next((p for p in possible_paths if p.exists()), None)

            if config_path_obj is None:
                logger.warning(
                    f"Configuration file not found in any of: {[str(p) for p in possible_paths]}. "
                    "Using defaults."
                )
                cls._settings = Settings()
                return cls._settings
        else:
            config_path_obj = Path(config_path)
            if not config_path_obj.exists():
                raise ConfigurationError(f"Configuration file not found: {config_path}")

        logger.info(f"Loading configuration from: {config_path_obj}")

        try:
            with open(config_path_obj, 'r') as f:
                raw_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load YAML configuration: {e}")
            raise ConfigurationError(f"Invalid YAML configuration: {e}")

        cls._settings = cls.from_dict(raw_config)
        logger.info("Configuration loaded and validated successfully")
        return cls._settings

    @classmethod
    def from_dict(cls, raw_config: Dict[str, Any]) -> Settings:
        """
        Validate a raw configuration mapping (after env substitution).

        Raises:
            ConfigurationError: If validation fails
        """
        config_dict = cls._substitute_env_vars(raw_config)
        try:
            return Settings(**config_dict)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def get_settings(cls) -> Settings:
        """
        Get cached settings. Loads from default path if not already loaded.

        Returns:
            Settings object
        """
        if cls._settings is None:
            cls.load_config()
        return cls._settings

    @classmethod
    def _substitute_env_vars(cls, config: Any) -> Any:
        """
        Recursively substitute environment variables in configuration.

        Supports ${VAR_NAME} and ${VAR_NAME:default_value} syntax.

        Args:
            config: Configuration dictionary or value

        Returns:
            Configuration with substituted values
        """
        if isinstance(config, dict):
            return {k: cls._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [cls._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            # Match ${VAR_NAME} or ${VAR_NAME:default}
            pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

            def replace_var(match):
                var_name = match.group(1)
                default_value = match.group(2) if match.group(2) is not None else ""
                return os.getenv(var_name, default_value)

            return re.sub(pattern, replace_var, config)
        else:
            return config

    @classmethod
    def reload_config(cls, config_path: Optional[str] = None) -> Settings:
        """
        Reload configuration from file.

        Args:
            config_path: Path to configuration file

        Returns:
            Reloaded Settings object
        """
        cls._settings = None
        return cls.load_config(config_path)

    @classmethod
    def reset(cls) -> None:
        """Drop cached settings (tests)."""
        cls._settings = None


# =============================================================================
# Convenience Functions
# =============================================================================

def get_settings() -> Settings:
    """
    Get application settings (convenience function).

    Returns:
        Settings object
    """
    return ConfigManager.get_settings()

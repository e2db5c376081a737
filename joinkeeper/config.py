"""Controller configuration management.

Configuration is loaded from multiple sources with the following precedence:
1. Environment variables (JOINKEEPER_<SECTION>__<FIELD>)
2. Configuration file
3. Default values
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger("joinkeeper.config")

# Load environment variables from .env file if it exists
load_dotenv()

DEFAULT_CONFIG_PATHS = [
    Path("/etc/joinkeeper/config.yaml"),
    Path("~/.config/joinkeeper/config.yaml"),
    Path("joinkeeper.yaml"),
]


class KubeSettings(BaseModel):
    """Management cluster connection settings."""
    model_config = ConfigDict(extra="ignore")

    kubeconfig: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig (in-cluster config when unset)"
    )
    context: Optional[str] = Field(
        default=None,
        description="Kubeconfig context to use"
    )

    @field_validator('kubeconfig')
    @classmethod
    def expand_kubeconfig(cls, v: Optional[str]) -> Optional[str]:
        """Expand the user home directory in the kubeconfig path."""
        return os.path.expanduser(v) if v else v


class OperatorConfig(BaseModel):
    """Reconciliation and dispatch settings."""
    model_config = ConfigDict(extra="ignore")

    namespace: Optional[str] = Field(
        default=None,
        description="Namespace to watch (all namespaces when unset)"
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        description="Threads running the synchronous handlers"
    )
    retry_delay: float = Field(
        default=60.0,
        gt=0,
        description="Seconds before retrying a soft reconcile failure, and the status refresh interval"
    )
    probe_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds allowed for the workload cluster readiness probe"
    )
    resync_period: int = Field(
        default=600,
        ge=1,
        description="Seconds before a watch request is re-established"
    )
    field_manager: str = Field(default="joinkeeper")
    probe_bind_address: str = Field(default="0.0.0.0")
    probe_port: int = Field(default=8081, ge=0, le=65535)


class LoggingSettings(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(extra="ignore")

    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    file: Optional[str] = Field(
        default=None,
        description="Path to log file (if None, logs to stderr)"
    )
    max_size_mb: int = Field(default=100, ge=1)
    backup_count: int = Field(default=5, ge=0)

    @field_validator('level')
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {v}")
        return level


class ControllerConfig(BaseSettings):
    """Top level controller configuration."""
    model_config = SettingsConfigDict(
        env_prefix="JOINKEEPER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    kube: KubeSettings = Field(default_factory=KubeSettings)
    operator: OperatorConfig = Field(default_factory=OperatorConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # File values arrive as init kwargs; the environment overrides them
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> 'ControllerConfig':
        """Load configuration from file and environment variables."""
        config_data: Dict[str, Any] = {}

        if config_path:
            path = Path(config_path).expanduser().absolute()
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {path}")
            config_data = cls._load_config_file(path)
        else:
            for path in DEFAULT_CONFIG_PATHS:
                path = path.expanduser().absolute()
                if path.exists():
                    config_data = cls._load_config_file(path)
                    logger.debug(f"Loaded configuration from {path}")
                    break

        return cls(**config_data)

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return {}

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration to a file."""
        path = Path(path).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.safe_dump(self.model_dump(exclude_none=True), f,
                           default_flow_style=False, sort_keys=False)


# Global configuration instance
_config: Optional[ControllerConfig] = None


def get_config(config_path: Optional[Union[str, Path]] = None) -> ControllerConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = ControllerConfig.load(config_path)
    return _config


def set_config(config: Optional[ControllerConfig]) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config

"""
Configuration management for l4scan.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Load environment variables from .env file if it exists
load_dotenv()


class ScanningConfig(BaseModel):
    """Scanning-related configuration."""

    model_config = ConfigDict(extra="ignore")

    default_timeout: int = 5000  # milliseconds
    retry_window: int = 500  # milliseconds, capped below the timeout
    max_concurrent: int = 100
    syn_method: str = "connect"  # connect, raw
    default_interface: Optional[str] = None

    @field_validator("default_timeout", "retry_window", "max_concurrent")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("syn_method")
    @classmethod
    def _known_method(cls, value: str) -> str:
        if value not in ("connect", "raw"):
            raise ValueError("syn_method must be 'connect' or 'raw'")
        return value


class OutputConfig(BaseModel):
    """Output-related configuration."""

    model_config = ConfigDict(extra="ignore")

    default_format: str = "text"  # text, table, json


class LoggingConfig(BaseModel):
    """Logging-related configuration."""

    model_config = ConfigDict(extra="ignore")

    level: str = "WARNING"
    log_file: Optional[str] = None


class Config(BaseModel):
    """Main configuration model."""

    scanning: ScanningConfig = Field(default_factory=ScanningConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "Config":
        """Create a Config instance from a dictionary."""
        return cls(**config_dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the config to a dictionary."""
        return self.model_dump()

    def save(self, path: Optional[Path] = None) -> bool:
        """Save the configuration to a file."""
        if path is None:
            path = self._get_default_config_path()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False)
            return True
        except OSError:
            return False

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """Load configuration from a file; missing or unreadable files yield defaults."""
        if path is None:
            path = cls._get_default_config_path()

        if not path.exists():
            return cls()

        try:
            with open(path, "r") as f:
                config_dict = yaml.safe_load(f) or {}
            return cls.from_dict(config_dict)
        except (OSError, yaml.YAMLError, ValueError):
            return cls()

    @classmethod
    def _get_default_config_path(cls) -> Path:
        """Get the default configuration file path."""
        config_dir = Path.home() / ".l4scan"
        return config_dir / "config.yaml"


# Global settings instance
settings = Config.load()

# Environment overrides
if not settings.scanning.default_interface:
    settings.scanning.default_interface = os.getenv("L4SCAN_INTERFACE")

if os.getenv("L4SCAN_LOG_LEVEL"):
    settings.logging.level = os.getenv("L4SCAN_LOG_LEVEL")

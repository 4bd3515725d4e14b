"""Configuration management for bundlecache."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

logger = structlog.get_logger()


class ExtractorConfig(BaseModel):
    """Resource extraction configuration."""

    token_prefix: str = Field(
        default="res_timestamp-",
        description="File name prefix of freshness tokens"
    )
    buffer_size: int = Field(
        default=16 * 1024,
        description="Copy buffer size in bytes"
    )
    patch_filename: str = Field(
        default="patch.zip",
        description="File name of the installed override archive"
    )
    download_suffix: str = Field(
        default=".download",
        description="Suffix appended to the installed name for a downloaded archive"
    )
    manifest_entry: str = Field(
        default="manifest.json",
        description="Archive entry holding the patch manifest"
    )
    baseline_checksum_files: list[str] = Field(
        default_factory=list,
        description="Baseline entries covered by the manifest baselineChecksum"
    )
    max_workers: int = Field(
        default=2,
        description="Worker threads in the shared extraction pool"
    )

    @field_validator("token_prefix")
    @classmethod
    def validate_token_prefix(cls, v: str) -> str:
        """Validate token prefix."""
        if not v:
            raise ValueError("Token prefix cannot be empty")
        if "/" in v or "\\" in v:
            raise ValueError(f"Token prefix must be a plain file name: {v}")
        return v

    @field_validator("buffer_size")
    @classmethod
    def validate_buffer_size(cls, v: int) -> int:
        """Validate buffer size value."""
        if v <= 0:
            raise ValueError("Buffer size must be positive")
        return v

    @field_validator("patch_filename", "manifest_entry")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate required names."""
        if not v:
            raise ValueError("Name cannot be empty")
        return v

    @field_validator("download_suffix")
    @classmethod
    def validate_download_suffix(cls, v: str) -> str:
        """Downloaded and installed archives must not share a path."""
        if not v:
            raise ValueError("Download suffix cannot be empty")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        """Validate worker count."""
        if v <= 0:
            raise ValueError("Max workers must be positive")
        return v


class AppConfig(BaseModel):
    """Application configuration."""

    config_dir: Path = Field(
        default=Path.home() / ".config" / "bundlecache",
        description="Configuration directory"
    )

    extractor: ExtractorConfig = Field(
        default_factory=ExtractorConfig,
        description="Extraction settings"
    )

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = Path.home() / ".config" / "bundlecache" / "config.json"

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        # Return defaults
        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = self.config_dir / "config.json"

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v

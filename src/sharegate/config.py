"""
Centralized configuration for ShareGate.

Uses Pydantic BaseSettings for environment variable integration
and validation. The decision engine receives a ShareGateConfig
explicitly; get_config() only supplies the process-wide default.

Configuration sources (in order of precedence):
1. Explicit constructor arguments
2. Environment variables (SHAREGATE_*)
3. .env file
4. Default values

Example:
    from sharegate.config import get_config

    config = get_config()
    print(config.timezone)  # From SHAREGATE_TIMEZONE or default

    # Override at runtime
    config = get_config(require_business_hours=True)
"""

from __future__ import annotations

import ipaddress
import os
from datetime import time
from pathlib import Path
from typing import List, Literal, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

DEFAULT_ALLOWED_IP_RANGES = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.1/32"


def _split_ranges(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class ShareGateConfig(BaseSettings):
    """
    Central configuration for ShareGate.

    All settings can be overridden via environment variables
    prefixed with SHAREGATE_.

    Example:
        export SHAREGATE_REQUIRE_BUSINESS_HOURS=true
        export SHAREGATE_ALLOWED_IP_RANGES=10.0.0.0/8,192.168.0.0/16
    """

    model_config = SettingsConfigDict(
        env_prefix="SHAREGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Context-based access
    business_hours_start: str = Field(
        default="08:00",
        description="Start of the business-hours window (HH:MM[:SS], inclusive)",
    )
    business_hours_end: str = Field(
        default="18:00",
        description="End of the business-hours window (HH:MM[:SS], exclusive)",
    )
    timezone: str = Field(
        default="America/New_York",
        description="IANA timezone the business-hours window is expressed in",
    )
    require_business_hours: bool = Field(
        default=False,
        description="Deny requests outside business hours",
    )
    require_allowed_ip: bool = Field(
        default=False,
        description="Deny requests from outside the allowed IP ranges",
    )
    allowed_ip_ranges: str = Field(
        default=DEFAULT_ALLOWED_IP_RANGES,
        description="Comma-separated CIDR networks for IP allow-listing",
    )

    # Kill-switches
    row_level_enabled: bool = Field(
        default=True,
        description="Evaluate per-record rule overrides",
    )
    column_level_enabled: bool = Field(
        default=True,
        description="Apply clearance and rule-based column redaction",
    )

    # File-backed collaborators
    rules_dir: str = Field(
        default="~/.sharegate/rules",
        description="Directory of access rule YAML files",
    )
    directory_file: str = Field(
        default="~/.sharegate/directory.yaml",
        description="YAML map of user ID to manager ID",
    )
    rule_cache_ttl_seconds: int = Field(
        default=0,
        ge=0,
        description="Rule cache lifetime; 0 reads the store on every decision",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for ShareGate",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format (json for log pipelines, text for console)",
    )

    @field_validator("rules_dir", "directory_file")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ and environment variables in paths."""
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("business_hours_start", "business_hours_end")
    @classmethod
    def validate_time(cls, v: str) -> str:
        """Validate HH:MM[:SS] format."""
        try:
            time.fromisoformat(v.strip())
        except ValueError:
            raise ValueError(f"invalid time of day '{v}', expected HH:MM or HH:MM:SS")
        return v.strip()

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the IANA zone name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone '{v}'")
        return v

    @field_validator("allowed_ip_ranges")
    @classmethod
    def validate_ranges(cls, v: str) -> str:
        """Validate every entry as a CIDR network."""
        for part in _split_ranges(v):
            try:
                ipaddress.ip_network(part, strict=False)
            except ValueError:
                raise ValueError(f"invalid CIDR network '{part}'")
        return v

    @model_validator(mode="after")
    def check_window(self) -> "ShareGateConfig":
        start, end = self.business_hours
        if start >= end:
            raise ValueError(
                f"business_hours_start ({self.business_hours_start}) must precede "
                f"business_hours_end ({self.business_hours_end})"
            )
        return self

    @property
    def business_hours(self) -> Tuple[time, time]:
        """The [start, end) business-hours window."""
        return (
            time.fromisoformat(self.business_hours_start),
            time.fromisoformat(self.business_hours_end),
        )

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def allowed_networks(self) -> List[IPNetwork]:
        return [ipaddress.ip_network(part, strict=False) for part in _split_ranges(self.allowed_ip_ranges)]

    def get_rules_path(self) -> Path:
        return Path(self.rules_dir)

    def get_directory_path(self) -> Path:
        return Path(self.directory_file)


# Global singleton
_config: Optional[ShareGateConfig] = None


def get_config(**overrides) -> ShareGateConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        ShareGateConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = ShareGateConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None

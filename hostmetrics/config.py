"""Configuration models using Pydantic for validation."""
from typing import Any, Dict, Optional, Union
import os
import re

from pydantic import BaseModel, Field, ValidationError, field_validator

from hostmetrics.errors import ConfigError

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Numbers are taken as seconds. Strings use Go duration syntax, e.g.
    ``"250ms"``, ``"5s"`` or ``"1m30s"``; a bare numeric string is seconds.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        raise ValueError("Duration must not be empty")

    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        number, unit = match.groups()
        total += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level


class ServerConfig(BaseModel):
    """HTTP exposition endpoint configuration."""
    port: int = Field(default=8080, ge=0, le=65535)
    bind_address: str = "0.0.0.0"
    metrics_path: str = "/metrics"
    shutdown_grace_period: float = Field(default=5.0, gt=0)

    @field_validator("metrics_path")
    @classmethod
    def validate_metrics_path(cls, v):
        if not v.startswith("/"):
            raise ValueError("metrics_path must start with '/'")
        if v == "/":
            raise ValueError("metrics_path must not be '/', it serves the landing page")
        return v

    @field_validator("shutdown_grace_period", mode="before")
    @classmethod
    def parse_grace_period(cls, v):
        return parse_duration(v)


class SamplerConfig(BaseModel):
    """Sampling loop configuration."""
    scrape_interval: float = Field(default=5.0, gt=0)
    self_metrics: bool = True
    process_metrics: bool = True

    @field_validator("scrape_interval", mode="before")
    @classmethod
    def parse_scrape_interval(cls, v):
        return parse_duration(v)


class Config(BaseModel):
    """Root configuration model."""
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    server: ServerConfig = Field(default_factory=ServerConfig)
    sampler: SamplerConfig = Field(default_factory=SamplerConfig)

    class Config:
        populate_by_name = True


def _apply_override(raw_config: Dict[str, Any], dotted_key: str, value: Any):
    """Set ``section.key`` in the raw config dict."""
    section, _, key = dotted_key.partition(".")
    if not key:
        raise ConfigError(f"Override key must look like 'section.key': {dotted_key}")
    raw_config.setdefault(section, {})
    if not isinstance(raw_config[section], dict):
        raise ConfigError(f"Section '{section}' must be a mapping")
    raw_config[section][key] = value


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> Config:
    """
    Load and validate configuration.

    Values come from the optional YAML file, then the ``LOG_LEVEL``
    environment variable, then ``overrides`` (dotted keys such as
    ``"server.port"``; ``None`` values are ignored).
    """
    import yaml

    raw_config: Dict[str, Any] = {}
    if config_path is not None:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        if not isinstance(raw_config, dict):
            raise ConfigError(f"Configuration file must contain a mapping: {config_path}")

    if env_log_level := os.getenv('LOG_LEVEL'):
        _apply_override(raw_config, "global.log_level", env_log_level)

    for dotted_key, value in (overrides or {}).items():
        if value is not None:
            _apply_override(raw_config, dotted_key, value)

    try:
        return Config(**raw_config)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e

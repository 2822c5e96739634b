"""Configuration loading: TOML file, environment variables and explicit overrides."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError, field_validator

from tracekeeper.errors import ConfigError
from tracekeeper.processors.sampler import PrioritySampler, RulesSampler, Sampler, SamplingRule

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "tracekeeper.toml"

# Environment variable -> config field
ENV_VARS = {
    "TRACEKEEPER_SERVICE": "service",
    "TRACEKEEPER_ENV": "env",
    "TRACEKEEPER_VERSION": "version",
    "TRACEKEEPER_SAMPLE_RATE": "sample_rate",
    "TRACEKEEPER_RATE_LIMIT": "rate_limit",
    "TRACEKEEPER_DEBUG": "debug",
}


def _check_rate(value: Optional[float]) -> Optional[float]:
    if value is not None and not 0.0 <= value <= 1.0:
        raise ValueError("sample rate must be between 0.0 and 1.0")
    return value


class SamplingRuleConfig(BaseModel):
    sample_rate: float
    service: Optional[str] = None
    name: Optional[str] = None

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, value: float) -> float:
        return _check_rate(value)


class TracerConfig(BaseModel):
    service: str = "unnamed-service"
    env: str = ""
    version: str = ""
    sample_rate: Optional[float] = None
    sampling_rules: List[SamplingRuleConfig] = []
    rate_limit: float = 100.0
    debug: bool = False
    enable_console_exporter: bool = False
    flush_interval_ms: int = 1000

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, value: Optional[float]) -> Optional[float]:
        return _check_rate(value)

    @field_validator("flush_interval_ms")
    @classmethod
    def validate_flush_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("flush_interval_ms must be positive")
        return value


def load_toml_config(path: str) -> Dict[str, Any]:
    """
    Load a TOML config file.

    Returns:
        Parsed tables, or an empty dict if the file does not exist

    Raises:
        ConfigError: if the file is not valid TOML
    """
    config_path = Path(path)
    if not config_path.is_file():
        return {}
    try:
        with config_path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError("invalid TOML config file", details={"path": str(path), "error": str(e)}) from e


def find_config_file() -> Optional[str]:
    """Look for tracekeeper.toml in the current directory, then ~/.tracekeeper.toml."""
    candidates = [Path.cwd() / CONFIG_FILE_NAME, Path.home() / f".{CONFIG_FILE_NAME}"]
    for candidate in candidates:
        if candidate.is_file():
            return str(candidate)
    return None


def _flatten_file_config(loaded: Dict[str, Any]) -> Dict[str, Any]:
    """Merge the [tracing] and [sampling] tables into config fields."""
    values: Dict[str, Any] = {}
    values.update(loaded.get("tracing", {}))
    sampling = loaded.get("sampling", {})
    if "sample_rate" in sampling:
        values["sample_rate"] = sampling["sample_rate"]
    if "rate_limit" in sampling:
        values["rate_limit"] = sampling["rate_limit"]
    if "rules" in sampling:
        values["sampling_rules"] = sampling["rules"]
    return values


def _env_config() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for env_var, field in ENV_VARS.items():
        raw = os.environ.get(env_var)
        if raw is not None and raw != "":
            values[field] = raw
    return values


def load_config_with_priority(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> TracerConfig:
    """
    Build the tracer configuration.

    Priority, lowest to highest: config file, environment variables,
    explicit overrides (None values are ignored).

    Raises:
        ConfigError: if the merged configuration is invalid
    """
    path = config_file or find_config_file()
    values: Dict[str, Any] = {}
    if path:
        values.update(_flatten_file_config(load_toml_config(path)))
    values.update(_env_config())
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        return TracerConfig(**values)
    except ValidationError as e:
        raise ConfigError("invalid tracer configuration", details={"errors": e.error_count()}) from e


def build_sampler(config: TracerConfig) -> Sampler:
    """Rules sampler when rules or a global sample rate are configured, else priority sampling."""
    rules = [
        SamplingRule(sample_rate=rule.sample_rate, service=rule.service, name=rule.name)
        for rule in config.sampling_rules
    ]
    if config.sample_rate is not None:
        # Global rate acts as a catch-all rule after the explicit ones.
        rules.append(SamplingRule(sample_rate=config.sample_rate))
    if not rules:
        return PrioritySampler()
    logger.debug(f"Using rules sampler with {len(rules)} rules, rate limit {config.rate_limit}/s")
    return RulesSampler(rules, rate_limit=config.rate_limit)

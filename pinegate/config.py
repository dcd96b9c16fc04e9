"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag / PINEGATE_CONFIG_PATH
2. ./pinegate.yaml (working directory)
3. ~/.pinegate/config.yaml (user home)

Environment variables override YAML: PINEGATE_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
With no config file at all, defaults (plus env overrides) apply.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class PlatformConfig(BaseModel):
    """TradingView endpoint and HTTP client settings."""

    base_url: str = "https://www.tradingview.com"
    timeout_seconds: float = Field(default=15.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT


class ProberConfig(BaseModel):
    """Session health prober pacing."""

    revalidate_after_hours: float = Field(default=6.0, ge=0)
    delay_seconds: float = Field(default=2.0, ge=0)
    interval_hours: float = Field(default=6.0, gt=0)


class GrantConfig(BaseModel):
    """Grant orchestrator behavior."""

    default_trial_days: int = Field(default=7, gt=0)
    accept_ambiguous_response: bool = True
    claim_timeout_seconds: int = Field(default=300, gt=0)
    trial_cleanup_interval_minutes: int = Field(default=60, gt=0)


class DaemonConfig(BaseModel):
    """Configuration for the API server process."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"


class SchedulerConfig(BaseModel):
    """Background job scheduling inside the API process."""

    enabled: bool = False


class PineGateConfig(BaseModel):
    """Top-level PineGate configuration."""

    platform: PlatformConfig = PlatformConfig()
    prober: ProberConfig = ProberConfig()
    grants: GrantConfig = GrantConfig()
    daemon: DaemonConfig = DaemonConfig()
    scheduler: SchedulerConfig = SchedulerConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations."""
    candidates = [
        Path.cwd() / "pinegate.yaml",
        Path.cwd() / "pinegate.yml",
        Path.home() / ".pinegate" / "config.yaml",
        Path.home() / ".pinegate" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply PINEGATE_<SECTION>_<KEY> env var overrides to config data.

    Section names are matched longest-first, so PINEGATE_PROBER_DELAY_SECONDS
    maps to section ``prober``, field ``delay_seconds``. Values are coerced
    to int, float or bool where they parse as such.
    """
    prefix = "PINEGATE_"
    known_sections = sorted(
        PineGateConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if matched_section not in data or data[matched_section] is None:
            data[matched_section] = {}
        if isinstance(data[matched_section], dict):
            data[matched_section][matched_field] = _coerce(value)
    return data


def _coerce(value: str) -> Any:
    """Coerce an env var string to int, float, bool, or leave as string."""
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def load_config(config_path: str | None = None) -> PineGateConfig:
    """Load PineGate configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, uses
            PINEGATE_CONFIG_PATH, then searches standard locations.

    Returns:
        Parsed and validated PineGateConfig. Defaults when no file exists.

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
    """
    config_path = config_path or os.environ.get("PINEGATE_CONFIG_PATH") or None
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return PineGateConfig(**data)

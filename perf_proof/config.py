"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      committed static defaults
  2. ``config/local.toml``        optional local overrides (gitignored)
  3. ``.env``                     local secrets and env overrides (gitignored)
  4. Environment variables        ``PERF_PROOF_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The evaluator, aggregator, service facade and CLI commands all receive an
``AppConfig`` instance. Horizons, the hold threshold and the grace window
live here rather than as module globals so tests can build alternate
configurations directly.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

VALID_PRICE_SOURCES: frozenset[str] = frozenset({"mock", "synthetic", "yahoo"})

_TRUE_VALUES = ("1", "true", "yes", "on")

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/perf_proof.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/perf_proof.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class PerformanceConfig(BaseModel):
    """Evaluation and aggregation parameters.

    ``grace_hours`` is how long past a horizon's target date a price may
    still arrive before the horizon is marked ``missing``. ``hold_win_threshold_pct``
    is the absolute move within which a ``hold`` call counts as a win.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    horizons_days: list[int] = [1, 7, 30]
    calibration_horizon_days: int = 7
    hold_win_threshold_pct: float = 2.0
    grace_hours: int = 72
    history_lookback_days: int = 180
    default_currency: str = "EUR"
    default_page_size: int = 20
    max_page_size: int = 100

    @field_validator("horizons_days")
    @classmethod
    def validate_horizons(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("horizons_days must not be empty.")
        if any(h <= 0 for h in v):
            raise ValueError(f"horizons_days must be positive, got {v}.")
        if len(set(v)) != len(v):
            raise ValueError(f"horizons_days must be unique, got {v}.")
        return sorted(v)

    @field_validator("hold_win_threshold_pct")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"hold_win_threshold_pct must be >= 0, got {v}.")
        return v

    @model_validator(mode="after")
    def validate_calibration_horizon(self) -> "PerformanceConfig":
        if self.calibration_horizon_days not in self.horizons_days:
            raise ValueError(
                f"calibration_horizon_days ({self.calibration_horizon_days}) "
                f"must be one of horizons_days {self.horizons_days}."
            )
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError(
                f"default_page_size must be in [1, {self.max_page_size}], "
                f"got {self.default_page_size}."
            )
        return self


class PriceConfig(BaseModel):
    """Price provider selection and HTTP settings."""

    model_config = ConfigDict(frozen=True)

    source: str = "mock"
    timeout_seconds: float = 10.0
    base_url: str = "https://query1.finance.yahoo.com"
    user_agent: str = "perf-proof/0.1"

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        v = v.lower()
        if v not in VALID_PRICE_SOURCES:
            raise ValueError(
                f"Price source must be one of {sorted(VALID_PRICE_SOURCES)}, got '{v}'."
            )
        return v


class DemoConfig(BaseModel):
    """Synthetic demo-history seeding targets."""

    model_config = ConfigDict(frozen=True)

    min_snapshots: int = 25
    reseed_min_snapshots: int = 40


class AppConfig(BaseModel):
    """Complete application configuration, the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + env vars.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    performance: PerformanceConfig = PerformanceConfig()
    prices: PriceConfig = PriceConfig()
    demo: DemoConfig = DemoConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply PERF_PROOF_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply PERF_PROOF_* env vars to the raw config dict.

    Supported overrides:
      PERF_PROOF_DB_PATH       → raw["database"]["db_path"]
      PERF_PROOF_LOG_LEVEL     → raw["logging"]["level"]
      PERF_PROOF_DEBUG         → raw["debug"]
      PERF_PROOF_ENABLED       → raw["performance"]["enabled"] (only "false" disables)
      PERF_PROOF_PRICE_SOURCE  → raw["prices"]["source"]
    """
    if db_path := os.environ.get("PERF_PROOF_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("PERF_PROOF_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("PERF_PROOF_DEBUG"):
        raw["debug"] = debug.lower() in _TRUE_VALUES

    if enabled := os.environ.get("PERF_PROOF_ENABLED"):
        raw.setdefault("performance", {})["enabled"] = enabled.strip().lower() != "false"

    if source := os.environ.get("PERF_PROOF_PRICE_SOURCE"):
        raw.setdefault("prices", {})["source"] = source

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        performance=PerformanceConfig(**raw.get("performance", {})),
        prices=PriceConfig(**raw.get("prices", {})),
        demo=DemoConfig(**raw.get("demo", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )

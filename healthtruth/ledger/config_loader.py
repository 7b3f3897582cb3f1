"""Load, validate and reload the derived-ledger scoring configuration.

The config lives in ``scoring.yaml`` alongside this module. It is loaded once
and cached; ``reload_scoring_config()`` re-reads it from disk and keeps the
previous config if the new file fails validation.

Usage::

    from healthtruth.ledger.config_loader import get_scoring_config

    config = get_scoring_config()
    config.health_score.domain_weight("sleep")   # 0.25
    config.insights.low_steps                    # 8000
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("healthtruth.ledger.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "scoring.yaml"

DOMAINS: tuple[str, ...] = ("recovery", "activity", "sleep", "body")

_REQUIRED_BANDS: tuple[str, ...] = (
    "hrv_rmssd_ms",
    "steps",
    "training_load",
    "move_minutes",
    "sleep_minutes",
    "sleep_efficiency",
)


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class DomainConfig:
    name: str
    weight: float
    description: str = ""


@dataclass
class BaselineConfig:
    window_days: int
    min_days: int


@dataclass
class HealthScoreConfig:
    """Health score model settings.

    Attributes:
        model_version: Stamped on every HealthScoreDoc.
        domains:       Weighted domains; weights are re-normalized over the
                       domains that have data.
        tiers:         Lower bound per tier, descending.
        bands:         ``(low, high)`` linear scaling band per metric.
    """

    model_version: str
    domains: list[DomainConfig]
    tiers: dict[str, int]
    bands: dict[str, tuple[float, float]]

    def domain_weight(self, name: str) -> float:
        for domain in self.domains:
            if domain.name == name:
                return domain.weight
        return 0.0

    def tier_for(self, score: float) -> str:
        for tier, floor in sorted(self.tiers.items(), key=lambda t: t[1], reverse=True):
            if score >= floor:
                return tier
        return "poor"


@dataclass
class InsightConfig:
    rule_version: str
    low_sleep_duration_minutes: float
    low_steps: float
    high_training_load: float
    low_hrv_rmssd_ms: float


@dataclass
class ScoringConfig:
    """Complete, validated scoring configuration.

    Attributes:
        version:      Config schema version string.
        baseline:     History window used for averages and baselines.
        health_score: Health score model settings.
        insights:     Insight rule thresholds.
    """

    version: str
    baseline: BaselineConfig
    health_score: HealthScoreConfig
    insights: InsightConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when scoring.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Scoring config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> ScoringConfig:
    """Validate the raw YAML dict and construct a ScoringConfig.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, path: str, default: Any = None) -> float:
        value = section.get(key, default)
        if value is None:
            errors.append(f"Missing required key '{path}.{key}'")
            return 0.0
        try:
            return float(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be a number, got {value!r}")
            return 0.0

    version = str(raw.get("version", "1.0"))

    # ── Baseline ──
    bl_raw = raw.get("baseline") or {}
    baseline = BaselineConfig(
        window_days=int(_number(bl_raw, "window_days", "baseline", 7)),
        min_days=int(_number(bl_raw, "min_days", "baseline", 3)),
    )
    if baseline.window_days < 1:
        errors.append("baseline.window_days must be >= 1")
    if baseline.min_days > baseline.window_days:
        errors.append("baseline.min_days must not exceed baseline.window_days")

    # ── Health score ──
    hs_raw = raw.get("health_score") or {}
    domains_raw = hs_raw.get("domains") or {}
    domains: list[DomainConfig] = []
    for name in DOMAINS:
        cfg = domains_raw.get(name)
        if not isinstance(cfg, dict):
            errors.append(f"health_score.domains.{name} must be a mapping")
            continue
        weight = _number(cfg, "weight", f"health_score.domains.{name}")
        if not (0.0 <= weight <= 1.0):
            errors.append(
                f"health_score.domains.{name}.weight = {weight} is out of range [0.0, 1.0]"
            )
        domains.append(
            DomainConfig(name=name, weight=weight, description=cfg.get("description", ""))
        )
    for name in domains_raw:
        if name not in DOMAINS:
            errors.append(f"health_score.domains.{name} is not a known domain")

    total_w = sum(d.weight for d in domains)
    if domains and not (0.95 <= total_w <= 1.05):
        logger.warning(
            "Health score domain weights sum to %.3f (expected ~1.0). "
            "Score will be normalized at runtime.",
            total_w,
        )

    tiers_raw = hs_raw.get("tiers") or {}
    tiers = {
        "excellent": int(_number(tiers_raw, "excellent", "health_score.tiers", 80)),
        "good": int(_number(tiers_raw, "good", "health_score.tiers", 60)),
        "fair": int(_number(tiers_raw, "fair", "health_score.tiers", 40)),
    }
    if not tiers["excellent"] > tiers["good"] > tiers["fair"]:
        errors.append("health_score.tiers must be strictly descending excellent > good > fair")

    bands_raw = hs_raw.get("bands") or {}
    bands: dict[str, tuple[float, float]] = {}
    for key in _REQUIRED_BANDS:
        band = bands_raw.get(key)
        if not isinstance(band, (list, tuple)) or len(band) != 2:
            errors.append(f"health_score.bands.{key} must be a [low, high] pair")
            continue
        try:
            low, high = float(band[0]), float(band[1])
        except (TypeError, ValueError):
            errors.append(f"health_score.bands.{key} must contain numbers, got {band!r}")
            continue
        if high <= low:
            errors.append(f"health_score.bands.{key} high must be greater than low")
        bands[key] = (low, high)

    health_score = HealthScoreConfig(
        model_version=str(hs_raw.get("model_version", "1.0")),
        domains=domains,
        tiers=tiers,
        bands=bands,
    )

    # ── Insights ──
    in_raw = raw.get("insights") or {}
    insights = InsightConfig(
        rule_version=str(in_raw.get("rule_version", "baseline-insights-v1.0.0")),
        low_sleep_duration_minutes=_number(in_raw, "low_sleep_duration_minutes", "insights"),
        low_steps=_number(in_raw, "low_steps", "insights"),
        high_training_load=_number(in_raw, "high_training_load", "insights"),
        low_hrv_rmssd_ms=_number(in_raw, "low_hrv_rmssd_ms", "insights"),
    )

    if errors:
        raise ConfigValidationError(
            f"scoring.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    return ScoringConfig(
        version=version,
        baseline=baseline,
        health_score=health_score,
        insights=insights,
        _raw=raw,
    )


def load_scoring_config(path: Path | None = None) -> ScoringConfig:
    """Load and validate the scoring config from disk.

    Args:
        path: Override path to YAML. Uses the bundled scoring.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded scoring config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with reload support
# ---------------------------------------------------------------------------

_config: ScoringConfig | None = None
_config_lock = threading.Lock()


def get_scoring_config() -> ScoringConfig:
    """Return the global ScoringConfig singleton, loading it on first call.

    Thread-safe.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_scoring_config()
    return _config


def reload_scoring_config(path: Path | None = None) -> ScoringConfig:
    """Reload the scoring config from disk and replace the global singleton.

    If validation fails the old config is retained and the error re-raised.
    """
    global _config
    new_config = load_scoring_config(path)
    with _config_lock:
        _config = new_config
    logger.info("Scoring config reloaded (v%s)", new_config.version)
    return new_config

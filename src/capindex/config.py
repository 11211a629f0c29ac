"""Configuration management for the relationship index."""

import copy
import hashlib
import json
import logging
import math
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigValidationError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: dict[str, Any] = {
    "entropy_bands": {"low": 3.0, "moderate": 4.5, "high": 6.0},
    "jaccard_thresholds": {"low": 0.2, "moderate": 0.4, "high": 0.6},
    "performance": {
        "max_elements_for_full_matrix": 100,
        "max_similarity_comparisons": 10000,
        "similarity_threshold": 0.5,
        "similarity_batch_size": 50,
    },
    "sampling": {"base_sample_size": 10, "sample_ratio": 0.1, "cluster_sample_limit": 20},
    "index": {"ttl_minutes": 5, "lock_timeout_ms": 5000, "stale_lock_ms": 30000},
    "nlp": {"min_token_length": 2, "keywords_per_element": 10},
}

CONFIG_DIR_NAME = ".config"
CONFIG_FILENAMES = ("index-config.yaml", "index-config.yml", "index-config.json")
DEFAULT_PORTFOLIO = "~/.capindex/portfolio"


@dataclass(frozen=True)
class ConfigViolation:
    """A single rule broken by a configuration value."""
    field: str
    reason: str


@dataclass
class ValidationResult:
    violations: list[ConfigViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def add(self, field_name: str, reason: str) -> None:
        self.violations.append(ConfigViolation(field_name, reason))


@dataclass(frozen=True)
class Thresholds:
    low: float
    moderate: float
    high: float


@dataclass(frozen=True)
class PerformanceSettings:
    max_elements_for_full_matrix: int
    max_similarity_comparisons: int
    similarity_threshold: float
    similarity_batch_size: int


@dataclass(frozen=True)
class SamplingSettings:
    base_sample_size: int
    sample_ratio: float
    cluster_sample_limit: int


@dataclass(frozen=True)
class IndexSettings:
    ttl_minutes: float
    lock_timeout_ms: float
    stale_lock_ms: float


@dataclass(frozen=True)
class NlpSettings:
    min_token_length: int
    keywords_per_element: int


@dataclass(frozen=True)
class IndexConfig:
    """Validated, immutable index settings."""
    entropy_bands: Thresholds
    jaccard_thresholds: Thresholds
    performance: PerformanceSettings
    sampling: SamplingSettings
    index: IndexSettings
    nlp: NlpSettings

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None = None) -> "IndexConfig":
        """Merge ``data`` over the defaults, validate and build a config.

        Raises ConfigValidationError listing every violation.
        """
        merged = copy.deepcopy(DEFAULT_CONFIG)
        if data:
            _deep_merge(merged, data)
        result = validate_config(merged)
        if not result.ok:
            raise ConfigValidationError(result.violations)
        return cls(
            entropy_bands=Thresholds(**_known(merged, "entropy_bands")),
            jaccard_thresholds=Thresholds(**_known(merged, "jaccard_thresholds")),
            performance=PerformanceSettings(**_known(merged, "performance")),
            sampling=SamplingSettings(**_known(merged, "sampling")),
            index=IndexSettings(**_known(merged, "index")),
            nlp=NlpSettings(**_known(merged, "nlp")),
        )

    @classmethod
    def defaults(cls) -> "IndexConfig":
        return cls.from_dict()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def version(self) -> str:
        """Short hash of the settings; snapshots built under another version are stale."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    @property
    def ttl_seconds(self) -> float:
        return self.index.ttl_minutes * 60.0


def portfolio_path(portfolio: str | Path | None = None) -> Path:
    """Resolve the portfolio root from an argument, CAPINDEX_PORTFOLIO or the default."""
    raw = portfolio or os.environ.get("CAPINDEX_PORTFOLIO") or DEFAULT_PORTFOLIO
    return Path(raw).expanduser().resolve()


def find_config_file(portfolio: str | Path | None = None) -> Path | None:
    """Look for index-config.{yaml,yml,json} under the portfolio config directory."""
    config_dir = portfolio_path(portfolio) / CONFIG_DIR_NAME
    for name in CONFIG_FILENAMES:
        candidate = config_dir / name
        if candidate.exists():
            return candidate
    return None


def load_config(
    config_path: str | Path | None = None,
    portfolio: str | Path | None = None,
) -> IndexConfig:
    """Load the index configuration, merging the file over the defaults.

    A missing file yields the defaults. YAML and JSON files are both accepted.
    """
    path = Path(config_path).expanduser() if config_path else find_config_file(portfolio)
    if path is None or not path.exists():
        if config_path:
            logger.info("Config file %s not found, using defaults", path)
        return IndexConfig.defaults()

    with open(path, encoding="utf-8") as f:
        try:
            file_cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                [ConfigViolation("<file>", f"not valid YAML/JSON: {e}")], source=str(path)
            ) from e

    if not isinstance(file_cfg, dict):
        raise ConfigValidationError(
            [ConfigViolation("<file>", "top level must be a mapping")], source=str(path)
        )

    try:
        config = IndexConfig.from_dict(file_cfg)
    except ConfigValidationError as e:
        raise ConfigValidationError(e.violations, source=str(path)) from None

    logger.info("Index configuration loaded from %s (version %s)", path, config.version)
    return config


def save_config(config: IndexConfig, path: str | Path) -> Path:
    """Write a configuration as YAML."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False))
    return path


def validate_config(raw: dict[str, Any]) -> ValidationResult:
    """Check ranges and ordering of every setting.

    Returns all violations instead of stopping at the first one. Values are
    never clamped.
    """
    result = ValidationResult()

    for section, defaults in DEFAULT_CONFIG.items():
        value = raw.get(section)
        if not isinstance(value, dict):
            result.add(section, "must be a mapping")
            continue
        for key in value:
            if key not in defaults:
                logger.warning("Ignoring unknown index config key %s.%s", section, key)
    for section in raw:
        if section not in DEFAULT_CONFIG:
            logger.warning("Ignoring unknown index config section %s", section)
    if not result.ok:
        return result

    bands = raw["entropy_bands"]
    for key in ("low", "moderate", "high"):
        _check_number(result, bands, "entropy_bands", key, minimum=0.0)
    _check_increasing(result, bands, "entropy_bands")

    jaccard = raw["jaccard_thresholds"]
    for key in ("low", "moderate", "high"):
        _check_number(result, jaccard, "jaccard_thresholds", key, minimum=0.0, maximum=1.0)
    _check_increasing(result, jaccard, "jaccard_thresholds")

    perf = raw["performance"]
    _check_number(result, perf, "performance", "max_elements_for_full_matrix", minimum=1, integer=True)
    _check_number(result, perf, "performance", "max_similarity_comparisons", minimum=1, integer=True)
    _check_number(result, perf, "performance", "similarity_threshold", minimum=0.0, maximum=1.0)
    _check_number(result, perf, "performance", "similarity_batch_size", minimum=1, integer=True)

    sampling = raw["sampling"]
    _check_number(result, sampling, "sampling", "base_sample_size", minimum=1, integer=True)
    _check_number(result, sampling, "sampling", "sample_ratio", minimum=0.0, maximum=1.0, exclusive_min=True)
    _check_number(result, sampling, "sampling", "cluster_sample_limit", minimum=2, integer=True)

    index = raw["index"]
    for key in ("ttl_minutes", "lock_timeout_ms", "stale_lock_ms"):
        _check_number(result, index, "index", key, minimum=0.0, exclusive_min=True)

    nlp = raw["nlp"]
    _check_number(result, nlp, "nlp", "min_token_length", minimum=1, integer=True)
    _check_number(result, nlp, "nlp", "keywords_per_element", minimum=1, integer=True)

    return result


def _check_number(
    result: ValidationResult,
    section: dict[str, Any],
    section_name: str,
    key: str,
    minimum: float | None = None,
    maximum: float | None = None,
    exclusive_min: bool = False,
    integer: bool = False,
) -> None:
    name = f"{section_name}.{key}"
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        result.add(name, f"must be a number, got {value!r}")
        return
    if not math.isfinite(value):
        result.add(name, f"must be finite, got {value!r}")
        return
    if integer and int(value) != value:
        result.add(name, f"must be an integer, got {value!r}")
        return
    if minimum is not None:
        if exclusive_min and value <= minimum:
            result.add(name, f"must be greater than {minimum}, got {value!r}")
        elif not exclusive_min and value < minimum:
            result.add(name, f"must be at least {minimum}, got {value!r}")
    if maximum is not None and value > maximum:
        result.add(name, f"must be at most {maximum}, got {value!r}")


def _check_increasing(result: ValidationResult, section: dict[str, Any], section_name: str) -> None:
    values = [section.get(k) for k in ("low", "moderate", "high")]
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        return
    low, moderate, high = values
    if low >= moderate:
        result.add(f"{section_name}.low", f"must be below moderate ({low!r} >= {moderate!r})")
    if moderate >= high:
        result.add(f"{section_name}.moderate", f"must be below high ({moderate!r} >= {high!r})")


def _known(merged: dict[str, Any], section: str) -> dict[str, Any]:
    """Section values restricted to the keys the defaults define."""
    defaults = DEFAULT_CONFIG[section]
    values = {k: merged[section][k] for k in defaults}
    for k, default in defaults.items():
        value = values[k]
        if isinstance(default, int) and float(value).is_integer():
            values[k] = int(value)
        else:
            values[k] = float(value)
    return values


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v

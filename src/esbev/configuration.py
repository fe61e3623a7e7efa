from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Sequence

import yaml
from pydantic import BaseModel, Field

from .models import SCOPES, WeightedFormula
from .stats import FormulaRegistry, window_name

ENVIRONMENT_VARIABLE = "ESBEV_ENV"
EXTRA_CONFIG_VARIABLE = "ESBEV_PIPELINE_CONFIG"
ENV_OVERRIDE_PREFIX = "ESBEV_PIPELINE__"
DEFAULT_CONFIG_PATH = Path("config/pipeline.yaml")

WEIGHT_TOLERANCE = 1e-6


def _default_formulas() -> Dict[str, Dict[str, float]]:
    return {
        "raz_optimal": {"last20": 0.3, "last50": 0.7},
        "form_agressive": {"last8": 0.5, "last20": 0.3, "last50": 0.2},
        "equal_weighted": {"last20": 1 / 3, "last50": 1 / 3, "last100": 1 / 3},
    }


class StatsConfig(BaseModel):
    """Recency windows and the formulas blending them."""

    window_sizes: List[int] = Field(default_factory=lambda: [8, 20, 50, 100])
    formulas: Dict[str, Dict[str, float]] = Field(default_factory=_default_formulas)


class MarketsConfig(BaseModel):
    """Labels identifying total-goals over/under offers."""

    criteria: List[str] = Field(default_factory=lambda: ["Total Goals", "Totala mål"])
    offer_types: List[str] = Field(default_factory=lambda: ["Over/Under", "Över/Under"])
    term_key: str | None = None
    allowed_groups: List[str] = Field(default_factory=list)


class EvConfig(BaseModel):
    upcoming_window_minutes: float = 10.0
    notify_formula: str = "raz_optimal"
    threshold: float = 0.0


class SettlementConfig(BaseModel):
    tolerance_minutes: float = 120.0
    accept_out_of_tolerance: bool = True
    max_events: int | None = None


class UnitRuleConfig(BaseModel):
    """Stake size applied when a play's odds and EV fall inside the bounds."""

    unit: float
    min_odds: float | None = None
    max_odds: float | None = None
    min_ev: float | None = None
    max_ev: float | None = None


class AlertsConfig(BaseModel):
    enabled: bool = False
    scope_whitelist: List[str] = Field(default_factory=lambda: ["total"])
    max_lines: int = 5
    max_plays: int = 3
    unit_rules: List[UnitRuleConfig] = Field(default_factory=list)


class PipelineConfig(BaseModel):
    """Aggregate configuration for every batch pass."""

    environment: str = "default"
    source_tag: str = "esportsbattle"
    stats: StatsConfig = Field(default_factory=StatsConfig)
    markets: MarketsConfig = Field(default_factory=MarketsConfig)
    ev: EvConfig = Field(default_factory=EvConfig)
    settlement: SettlementConfig = Field(default_factory=SettlementConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)


class ConfigurationError(ValueError):
    """Raised when pipeline configuration validation fails."""


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise TypeError(f"Configuration at {path} must be a mapping")
    return dict(data)


def _merge_layers(base: Dict[str, Any], layer: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in layer.items():
        if (
            key in merged
            and isinstance(merged[key], Mapping)
            and isinstance(value, Mapping)
        ):
            merged[key] = _merge_layers(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _resolve_env_tokens(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda match: os.getenv(match.group(1), ""), value)
    if isinstance(value, Mapping):
        return {k: _resolve_env_tokens(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_resolve_env_tokens(item) for item in value]
    return value


def _coerce_env_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        lowered = raw.lower()
        if lowered in {"true", "false"}:
            return lowered == "true"
        return raw


def _set_nested(mapping: MutableMapping[str, Any], path: Iterable[str], value: Any) -> None:
    segments = list(path)
    if not segments:
        return
    head, *tail = segments
    key = head.lower().replace("-", "_")
    if not tail:
        mapping[key] = value
        return
    child = mapping.get(key)
    if not isinstance(child, MutableMapping):
        child = {}
    else:
        child = dict(child)
    mapping[key] = child
    _set_nested(child, tail, value)


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    updated = dict(data)
    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_OVERRIDE_PREFIX):
            continue
        suffix = key[len(ENV_OVERRIDE_PREFIX) :]
        path = [segment for segment in suffix.split("__") if segment]
        if not path:
            continue
        _set_nested(updated, path, _coerce_env_value(raw_value))
    return updated


def load_pipeline_config(
    *,
    base_path: str | os.PathLike[str] | None = None,
    environment: str | None = None,
    extra_paths: Sequence[str | os.PathLike[str]] | None = None,
) -> PipelineConfig:
    """Load layered configuration for the pipeline.

    The loader merges ``config/pipeline.yaml`` with optional environment-specific
    overrides (``config/pipeline.<env>.yaml``), additional override files, and
    environment variable overrides that use ``ESBEV_PIPELINE__`` prefixes.  An
    explicit ``base_path`` must exist; when none is given and the default file
    is absent the built-in defaults are used.
    """

    config_path = Path(base_path or DEFAULT_CONFIG_PATH)
    if base_path is None and not config_path.exists():
        data: Dict[str, Any] = {}
    else:
        data = _load_yaml(config_path)

    env_name = environment or os.getenv(ENVIRONMENT_VARIABLE) or data.get("environment")
    if isinstance(env_name, str):
        env_path = config_path.with_name(f"{config_path.stem}.{env_name}{config_path.suffix}")
        if env_path.exists():
            data = _merge_layers(data, _load_yaml(env_path))
        data["environment"] = env_name

    merged = dict(data)
    override_sources: list[Path] = []
    if extra_paths:
        override_sources.extend(Path(path) for path in extra_paths)
    env_overrides = os.getenv(EXTRA_CONFIG_VARIABLE)
    if env_overrides:
        override_sources.extend(Path(token) for token in env_overrides.split(os.pathsep) if token)

    for override in override_sources:
        if override.exists():
            merged = _merge_layers(merged, _load_yaml(override))

    merged = _apply_env_overrides(merged)
    merged = _resolve_env_tokens(merged)

    return PipelineConfig.model_validate(merged)


def validate_pipeline_config(config: PipelineConfig) -> list[str]:
    """Validate a :class:`PipelineConfig` instance.

    Args:
        config: Parsed configuration object to validate.

    Returns:
        A list of warning messages. The function raises
        :class:`ConfigurationError` if any fatal issues are detected.
    """

    errors: list[str] = []
    warnings: list[str] = []

    stats = config.stats
    if not stats.window_sizes:
        errors.append("stats.window_sizes must declare at least one window")
    for size in stats.window_sizes:
        if size <= 0:
            errors.append(f"stats.window_sizes entry {size} must be greater than zero")
    declared = {window_name(size) for size in stats.window_sizes}

    if not stats.formulas:
        errors.append("at least one weighting formula must be defined")
    for name, weights in stats.formulas.items():
        if not weights:
            errors.append(f"formula '{name}' declares no windows")
            continue
        if len(weights) < 2:
            warnings.append(f"formula '{name}' blends a single window")
        for window, weight in weights.items():
            if window not in declared:
                errors.append(f"formula '{name}' references undeclared window '{window}'")
            if weight < 0:
                errors.append(f"formula '{name}' weight for '{window}' must be non-negative")
        total = sum(weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            errors.append(f"formula '{name}' weights sum to {total:.6f}, expected 1")

    markets = config.markets
    if not [label for label in markets.criteria if label.strip()]:
        errors.append("markets.criteria must name at least one recognised market")
    if not [label for label in markets.offer_types if label.strip()]:
        errors.append("markets.offer_types must name at least one offer type")

    ev = config.ev
    if ev.upcoming_window_minutes <= 0:
        errors.append("ev.upcoming_window_minutes must be greater than zero")
    if stats.formulas and ev.notify_formula not in stats.formulas:
        errors.append(f"ev.notify_formula '{ev.notify_formula}' is not a defined formula")

    settlement = config.settlement
    if settlement.tolerance_minutes < 0:
        errors.append("settlement.tolerance_minutes must be non-negative")
    if settlement.max_events is not None and settlement.max_events <= 0:
        errors.append("settlement.max_events must be greater than zero")
    if settlement.accept_out_of_tolerance:
        warnings.append(
            "settlement accepts out-of-tolerance matches; flagged settlements are still recorded"
        )

    alerts = config.alerts
    for scope in alerts.scope_whitelist:
        if scope not in SCOPES:
            errors.append(f"alerts.scope_whitelist entry '{scope}' is not a known scope")
    if alerts.max_lines <= 0:
        errors.append("alerts.max_lines must be greater than zero")
    if alerts.max_plays <= 0:
        errors.append("alerts.max_plays must be greater than zero")
    for index, rule in enumerate(alerts.unit_rules):
        if rule.unit <= 0:
            errors.append(f"alerts.unit_rules #{index + 1} unit must be greater than zero")
    if alerts.enabled and not alerts.unit_rules:
        warnings.append("alerts are enabled but no unit rules are defined; no plays will be sent")

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{bullet_list}")

    return warnings


def create_formula_registry(config: PipelineConfig) -> FormulaRegistry:
    """Build the :class:`FormulaRegistry` declared in configuration."""

    return FormulaRegistry(
        WeightedFormula(name, dict(weights)) for name, weights in config.stats.formulas.items()
    )


__all__ = [
    "AlertsConfig",
    "ConfigurationError",
    "EvConfig",
    "MarketsConfig",
    "PipelineConfig",
    "SettlementConfig",
    "StatsConfig",
    "UnitRuleConfig",
    "create_formula_registry",
    "load_pipeline_config",
    "validate_pipeline_config",
]

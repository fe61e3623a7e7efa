from __future__ import annotations

from pathlib import Path

import pytest

from esbev.configuration import (
    ConfigurationError,
    PipelineConfig,
    create_formula_registry,
    load_pipeline_config,
    validate_pipeline_config,
)

ROOT = Path(__file__).resolve().parents[1]


def test_default_configuration_loads() -> None:
    config = load_pipeline_config(base_path=ROOT / "config" / "pipeline.yaml")
    assert isinstance(config, PipelineConfig)
    assert config.stats.window_sizes == [8, 20, 50, 100]
    assert config.alerts.unit_rules, "expected the shipped unit rules"
    warnings = validate_pipeline_config(config)
    assert any("out-of-tolerance" in warning for warning in warnings)
    registry = create_formula_registry(config)
    assert registry.names() == ["raz_optimal", "form_agressive", "equal_weighted"]


def test_missing_default_file_falls_back_to_builtin_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ESBEV_ENV", raising=False)
    monkeypatch.delenv("ESBEV_PIPELINE_CONFIG", raising=False)
    config = load_pipeline_config()
    assert config == PipelineConfig()


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_pipeline_config(base_path=tmp_path / "absent.yaml")


def test_configuration_layers_and_env_overrides(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    base = tmp_path / "pipeline.yaml"
    base.write_text(
        """
settlement:
  tolerance_minutes: 90
ev:
  threshold: 0.05
  upcoming_window_minutes: 15
"""
    )
    env_override = tmp_path / "pipeline.production.yaml"
    env_override.write_text(
        """
ev:
  threshold: 0.1
"""
    )
    extra_override = tmp_path / "override.yaml"
    extra_override.write_text(
        """
ev:
  threshold: 0.2
"""
    )

    monkeypatch.setenv("ESBEV_ENV", "production")
    monkeypatch.setenv("ESBEV_PIPELINE_CONFIG", str(extra_override))
    monkeypatch.setenv("ESBEV_PIPELINE__settlement__tolerance_minutes", "45")
    monkeypatch.setenv("ESBEV_PIPELINE__ALERTS__ENABLED", "true")

    config = load_pipeline_config(base_path=base)

    assert config.environment == "production"
    assert config.ev.threshold == pytest.approx(0.2)
    assert config.ev.upcoming_window_minutes == pytest.approx(15)
    assert config.settlement.tolerance_minutes == pytest.approx(45)
    assert config.alerts.enabled is True


def test_environment_token_substitution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    base = tmp_path / "pipeline.yaml"
    base.write_text(
        """
source_tag: ${FEED_TAG}
markets:
  term_key: ${FEED_TERM}
"""
    )
    monkeypatch.delenv("ESBEV_ENV", raising=False)
    monkeypatch.delenv("ESBEV_PIPELINE_CONFIG", raising=False)
    monkeypatch.setenv("FEED_TAG", "esportsbattle-eu")
    monkeypatch.setenv("FEED_TERM", "esports_battle")
    config = load_pipeline_config(base_path=base)
    assert config.source_tag == "esportsbattle-eu"
    assert config.markets.term_key == "esports_battle"


def test_validation_collects_every_error() -> None:
    config = PipelineConfig.model_validate(
        {
            "stats": {
                "window_sizes": [0, 20],
                "formulas": {
                    "heavy": {"last20": 0.9, "last50": 0.3},
                    "ghost": {"last999": 1.0},
                },
            },
            "markets": {"criteria": [" "]},
            "ev": {"notify_formula": "missing"},
            "settlement": {"tolerance_minutes": -5},
            "alerts": {"scope_whitelist": ["corners"]},
        }
    )
    with pytest.raises(ConfigurationError) as excinfo:
        validate_pipeline_config(config)
    message = str(excinfo.value)
    assert "window_sizes entry 0" in message
    assert "'heavy' weights sum to 1.200000" in message
    assert "undeclared window 'last50'" in message
    assert "undeclared window 'last999'" in message
    assert "markets.criteria" in message
    assert "notify_formula 'missing'" in message
    assert "tolerance_minutes must be non-negative" in message
    assert "'corners' is not a known scope" in message


def test_validation_requires_a_formula() -> None:
    config = PipelineConfig.model_validate({"stats": {"formulas": {}}})
    with pytest.raises(ConfigurationError, match="at least one weighting formula"):
        validate_pipeline_config(config)


def test_validation_warnings() -> None:
    config = PipelineConfig.model_validate(
        {
            "stats": {"formulas": {"solo": {"last20": 1.0}}},
            "ev": {"notify_formula": "solo"},
            "settlement": {"accept_out_of_tolerance": False},
            "alerts": {"enabled": True},
        }
    )
    warnings = validate_pipeline_config(config)
    assert warnings == [
        "formula 'solo' blends a single window",
        "alerts are enabled but no unit rules are defined; no plays will be sent",
    ]

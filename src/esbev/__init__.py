"""
esbev: total-goals expected value modelling for esports football.

Raw match feeds are normalised into canonical matches, aggregated into
per-player recency windows, blended into weighted formulas and compared with
sportsbook over/under lines through a Poisson goal model.  Finished matches
are reconciled against stored wagers to settle them.
"""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - exercised in packaging workflows
    __version__ = version("esbev")
except PackageNotFoundError:  # pragma: no cover - local editable installs
    __version__ = "0.0.0"

_EXPORTS = {
    # Data model
    "NormalizedMatch": ".models",
    "PlayerWindowStats": ".models",
    "WeightedFormula": ".models",
    "ExpectedGoals": ".models",
    "OddsMarket": ".models",
    "EvResult": ".models",
    "Wager": ".models",
    "SettlementResult": ".models",
    "Orientation": ".models",
    # Errors
    "MissingDataError": ".errors",
    "MalformedInputError": ".errors",
    "PassReport": ".errors",
    # Pipeline stages
    "MatchNormalizer": ".normalization",
    "StatsAggregator": ".stats",
    "FormulaRegistry": ".stats",
    "EvModel": ".ev",
    "MatchResolver": ".resolver",
    "SettlementEngine": ".settlement",
    "Pipeline": ".pipeline",
    "SQLiteStore": ".storage",
    # Configuration
    "PipelineConfig": ".configuration",
    "ConfigurationError": ".configuration",
    "load_pipeline_config": ".configuration",
    "get_settings": ".config",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> object:  # pragma: no cover - thin lazy importer
    from importlib import import_module

    target_module = _EXPORTS.get(name)
    if not target_module:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(target_module, __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr

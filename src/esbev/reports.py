"""Tabular summaries of stored wagers and player statistics."""

from __future__ import annotations

import dataclasses
import datetime as dt
import math
from typing import Any, Dict, Iterable, List, Sequence

import polars as pl

from .models import METRICS, PlayerWindowStats, Wager

_WAGER_SCHEMA = {
    "formula": pl.Utf8,
    "scope": pl.Utf8,
    "selection": pl.Utf8,
    "result": pl.Utf8,
    "offered_odds": pl.Float64,
    "ev": pl.Float64,
    "actual_return": pl.Float64,
}


@dataclasses.dataclass(frozen=True)
class WagerFilter:
    """Optional constraints applied before summarising wagers."""

    formulas: Sequence[str] | None = None
    scopes: Sequence[str] | None = None
    selections: Sequence[str] | None = None
    min_ev: float | None = None
    max_ev: float | None = None
    min_odds: float | None = None
    max_odds: float | None = None
    kickoff_from: dt.datetime | None = None
    kickoff_to: dt.datetime | None = None

    def accepts(self, wager: Wager) -> bool:
        if self.formulas and wager.formula not in self.formulas:
            return False
        if self.scopes and wager.scope.lower() not in {scope.lower() for scope in self.scopes}:
            return False
        if self.selections and wager.selection not in self.selections:
            return False
        if self.min_ev is not None and wager.ev < self.min_ev:
            return False
        if self.max_ev is not None and wager.ev > self.max_ev:
            return False
        if self.min_odds is not None and wager.offered_odds < self.min_odds:
            return False
        if self.max_odds is not None and wager.offered_odds > self.max_odds:
            return False
        if self.kickoff_from is not None or self.kickoff_to is not None:
            if wager.kickoff is None:
                return False
            if self.kickoff_from is not None and wager.kickoff < self.kickoff_from:
                return False
            if self.kickoff_to is not None and wager.kickoff > self.kickoff_to:
                return False
        return True


def actual_return(wager: Wager) -> float | None:
    """Profit of a one-unit stake, or ``None`` while the result is unknown."""

    result = (wager.result or "").lower()
    if result == "win":
        return wager.offered_odds - 1.0
    if result == "loss":
        return -1.0
    if result == "push":
        return 0.0
    return None


def wagers_frame(wagers: Iterable[Wager]) -> pl.DataFrame:
    records = [
        {
            "formula": wager.formula or "unknown",
            "scope": wager.scope or "total",
            "selection": wager.selection,
            "result": wager.result,
            "offered_odds": wager.offered_odds,
            "ev": wager.ev,
            "actual_return": actual_return(wager),
        }
        for wager in wagers
    ]
    return pl.DataFrame(records, schema=_WAGER_SCHEMA)


def _outcome_columns() -> List[pl.Expr]:
    return [
        pl.len().alias("bets"),
        (pl.col("result") == "win").sum().alias("wins"),
        (pl.col("result") == "push").sum().alias("pushes"),
        ((pl.col("result") != "win") & (pl.col("result") != "push")).sum().alias("losses"),
        (pl.col("ev").sum() / pl.len()).alias("expected_per_bet"),
        (pl.col("actual_return").sum() / pl.len()).alias("actual_per_bet"),
    ]


@dataclasses.dataclass(frozen=True)
class FormulaSummary:
    by_scope: pl.DataFrame
    by_formula: pl.DataFrame

    @property
    def is_empty(self) -> bool:
        return self.by_formula.height == 0


def formula_summary(wagers: Iterable[Wager], filters: WagerFilter | None = None) -> FormulaSummary:
    """Compare expected and realised returns per formula.

    Only settled wagers count.  Without an explicit ``min_ev`` only wagers
    with non-negative EV are included.
    """

    filters = filters or WagerFilter()
    if filters.min_ev is None:
        filters = dataclasses.replace(filters, min_ev=0.0)
    selected = [wager for wager in wagers if wager.settled and filters.accepts(wager)]
    frame = wagers_frame(selected)
    by_scope = (
        frame.group_by(["formula", "scope"])
        .agg(_outcome_columns())
        .sort(["expected_per_bet", "formula", "scope"])
    )
    by_formula = frame.group_by("formula").agg(_outcome_columns()).sort("formula")
    return FormulaSummary(by_scope=by_scope, by_formula=by_formula)


def _format_bound(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def odds_ranges(start: float = 1.0, end: float = 5.0, step: float = 0.2) -> List[tuple[float, float]]:
    if step <= 0:
        raise ValueError("step must be positive")
    ranges: List[tuple[float, float]] = []
    lower = start
    while lower < end:
        upper = min(round(lower + step, 10), end)
        ranges.append((lower, upper))
        lower = upper
    ranges.append((end, math.inf))
    return ranges


def odds_range_summary(
    wagers: Iterable[Wager],
    *,
    start: float = 1.0,
    end: float = 5.0,
    step: float = 0.2,
    filters: WagerFilter | None = None,
) -> pl.DataFrame:
    """Count wagers per offered-odds bucket.

    Buckets are half-open ``[lower, upper)`` with a final open-ended bucket.
    Without an explicit ``min_ev`` only positive-EV wagers are counted.
    """

    filters = filters or WagerFilter()
    candidates = [wager for wager in wagers if filters.accepts(wager)]
    if filters.min_ev is None:
        candidates = [wager for wager in candidates if wager.ev > 0]
    records: List[Dict[str, Any]] = []
    for lower, upper in odds_ranges(start, end, step):
        count = sum(1 for wager in candidates if lower <= wager.offered_odds < upper)
        label = (
            f"{_format_bound(lower)}+"
            if math.isinf(upper)
            else f"{_format_bound(lower)}-{_format_bound(upper)}"
        )
        records.append({"range": label, "min_odds": lower, "max_odds": upper, "count": count})
    frame = pl.DataFrame(records)
    total = frame["count"].sum()
    return frame.with_columns(
        (pl.col("count") / total if total else pl.lit(0.0)).alias("share")
    )


def stats_frame(stats: Iterable[PlayerWindowStats]) -> pl.DataFrame:
    """One row per ``(player, mode)`` with window and formula metrics flattened."""

    records: List[Dict[str, Any]] = []
    for entry in stats:
        record: Dict[str, Any] = {
            "player_nick": entry.player_nick,
            "mode": entry.mode,
            "matches": entry.overall.matches,
            "avg_goals_for": entry.overall.avg_goals_for,
            "avg_goals_against": entry.overall.avg_goals_against,
            "avg_total_goals": entry.overall.avg_total_goals,
        }
        for name, summary in entry.windows.items():
            record[f"{name}_matches"] = summary.matches
            for metric in METRICS:
                record[f"{name}_{metric}"] = summary.metric(metric)
        for name, blend in entry.formulas.items():
            record[f"{name}_has_data"] = blend.has_data
            for metric in METRICS:
                record[f"{name}_{metric}"] = getattr(blend, metric)
        records.append(record)
    return pl.DataFrame(records)


__all__ = [
    "FormulaSummary",
    "WagerFilter",
    "actual_return",
    "formula_summary",
    "odds_range_summary",
    "odds_ranges",
    "stats_frame",
    "wagers_frame",
]

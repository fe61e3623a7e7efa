from __future__ import annotations

import datetime as dt

import pytest

from esbev.models import Wager
from esbev.reports import (
    WagerFilter,
    actual_return,
    formula_summary,
    odds_range_summary,
    odds_ranges,
    stats_frame,
)
from esbev.stats import StatsAggregator

from tests.conftest import build_match

KICKOFF = dt.datetime(2024, 9, 1, 10, tzinfo=dt.timezone.utc)


def _wager(
    formula: str,
    scope: str,
    result: str | None,
    *,
    odds: float = 2.0,
    ev: float = 0.1,
    selection: str = "over",
    kickoff: dt.datetime = KICKOFF,
) -> Wager:
    return Wager(
        event_id="ev",
        formula=formula,
        line=4.5,
        scope=scope,
        selection=selection,
        offered_odds=odds,
        probability=(ev + 1) / odds,
        ev=ev,
        kickoff=kickoff,
        settled=result is not None,
        result=result,
    )


def test_actual_return() -> None:
    assert actual_return(_wager("f", "total", "win", odds=2.5)) == pytest.approx(1.5)
    assert actual_return(_wager("f", "total", "loss")) == -1.0
    assert actual_return(_wager("f", "total", "push")) == 0.0
    assert actual_return(_wager("f", "total", None)) is None


def test_formula_summary_per_scope_and_formula() -> None:
    wagers = [
        _wager("raz_optimal", "total", "win", odds=2.0, ev=0.2),
        _wager("raz_optimal", "total", "loss", ev=0.1),
        _wager("raz_optimal", "home", "push", ev=0.05),
        _wager("equal_weighted", "total", "loss", ev=0.3),
        _wager("equal_weighted", "total", None, ev=0.3),
        _wager("equal_weighted", "total", "win", ev=-0.2),
    ]
    summary = formula_summary(wagers)

    by_formula = {row["formula"]: row for row in summary.by_formula.to_dicts()}
    raz = by_formula["raz_optimal"]
    assert (raz["bets"], raz["wins"], raz["pushes"], raz["losses"]) == (3, 1, 1, 1)
    assert raz["expected_per_bet"] == pytest.approx((0.2 + 0.1 + 0.05) / 3)
    assert raz["actual_per_bet"] == pytest.approx((1.0 - 1.0 + 0.0) / 3)
    equal = by_formula["equal_weighted"]
    assert equal["bets"] == 1
    assert equal["actual_per_bet"] == pytest.approx(-1.0)

    rows = summary.by_scope.to_dicts()
    assert [(row["formula"], row["scope"]) for row in rows] == [
        ("raz_optimal", "home"),
        ("raz_optimal", "total"),
        ("equal_weighted", "total"),
    ]
    assert not summary.is_empty


def test_formula_summary_filters() -> None:
    wagers = [
        _wager("raz_optimal", "total", "win", odds=1.5, ev=0.1),
        _wager("raz_optimal", "total", "loss", odds=3.0, ev=0.1, selection="under"),
        _wager("raz_optimal", "home", "win", odds=2.0, ev=0.4, kickoff=KICKOFF + dt.timedelta(days=2)),
    ]
    only_under = formula_summary(wagers, WagerFilter(selections=["under"]))
    assert only_under.by_formula["bets"].to_list() == [1]

    cheap = formula_summary(wagers, WagerFilter(max_odds=2.0, max_ev=0.2))
    assert cheap.by_formula["bets"].to_list() == [1]

    early = formula_summary(wagers, WagerFilter(kickoff_to=KICKOFF + dt.timedelta(days=1)))
    assert early.by_formula["bets"].to_list() == [2]

    empty = formula_summary(wagers, WagerFilter(formulas=["unknown"]))
    assert empty.is_empty


def test_odds_ranges_cover_the_grid() -> None:
    ranges = odds_ranges()
    assert len(ranges) == 21
    assert ranges[0] == (1.0, 1.2)
    assert ranges[-2] == (4.8, 5.0)
    assert ranges[-1][0] == 5.0
    with pytest.raises(ValueError):
        odds_ranges(step=0)


def test_odds_range_summary_counts_positive_ev() -> None:
    wagers = [
        _wager("f", "total", None, odds=1.1, ev=0.1),
        _wager("f", "total", None, odds=1.15, ev=0.2),
        _wager("f", "total", None, odds=2.0, ev=-0.1),
        _wager("f", "total", None, odds=7.5, ev=0.4),
    ]
    frame = odds_range_summary(wagers)
    counts = dict(zip(frame["range"].to_list(), frame["count"].to_list()))
    assert counts["1-1.2"] == 2
    assert counts["2-2.2"] == 0
    assert counts["5+"] == 1
    assert frame["share"].sum() == pytest.approx(1.0)

    all_ev = odds_range_summary(wagers, filters=WagerFilter(min_ev=-1.0))
    assert all_ev["count"].sum() == 4


def test_stats_frame_flattens_windows_and_formulas() -> None:
    stats = StatsAggregator().aggregate([build_match("Kodak", "Boss", 3, 1, date=KICKOFF)], now=KICKOFF)
    frame = stats_frame(stats)
    assert frame.height == 2
    kodak = next(row for row in frame.to_dicts() if row["player_nick"] == "Kodak")
    assert kodak["last8_avg_goals_for"] == 3.0
    assert kodak["raz_optimal_avg_goals_against"] == 1.0
    assert kodak["raz_optimal_has_data"] is True

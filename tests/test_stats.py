from __future__ import annotations

import datetime as dt
import logging

import pytest
from hypothesis import given, strategies as st

from esbev.errors import PassReport
from esbev.models import WeightedFormula, WindowSummary
from esbev.stats import (
    FormulaRegistry,
    StatsAggregator,
    blend_windows,
    lookup_player,
    stats_index,
    summarize,
    window_name,
)

from tests.conftest import build_match

BASE = dt.datetime(2024, 9, 1, tzinfo=dt.timezone.utc)


def _history(count: int, *, player: str = "Kodak", mode: str = "2x4") -> list:
    """``count`` matches, newest last, where ``player`` scores its index."""

    return [
        build_match(
            player,
            f"Opp{index}",
            index,
            1,
            date=BASE + dt.timedelta(minutes=15 * index),
            mode=mode,
            first_half=(0, 1) if index % 2 == 0 else None,
        )
        for index in range(count)
    ]


def test_summarize_keeps_first_half_denominator_separate() -> None:
    aggregator = StatsAggregator(window_sizes=(4,))
    rows = aggregator.group_rows(_history(4))[("Kodak", "2x4")]
    summary = summarize(rows)
    assert summary.matches == 4
    assert summary.goals_for == 0 + 1 + 2 + 3
    assert summary.avg_goals_against == pytest.approx(1.0)
    assert summary.first_half_matches == 2
    assert summary.avg_first_half_goals_against == pytest.approx(1.0)


def test_windows_take_most_recent_matches() -> None:
    stats = StatsAggregator(window_sizes=(2, 5)).aggregate(_history(5), now=BASE)
    kodak = next(entry for entry in stats if entry.player_nick == "Kodak")
    assert kodak.window("last2").goals_for == 4 + 3
    assert kodak.window("last5").goals_for == 10
    assert kodak.overall.matches == 5
    assert kodak.updated_at == BASE


def test_equal_kickoffs_keep_input_order() -> None:
    same_time = [
        build_match("Kodak", "A", 1, 0, date=BASE),
        build_match("Kodak", "B", 5, 0, date=BASE),
    ]
    rows = StatsAggregator().group_rows(same_time)[("Kodak", "2x4")]
    assert [row.goals_for for row in rows] == [1, 5]


def test_modes_are_aggregated_separately() -> None:
    matches = _history(3) + _history(2, mode="2x6 min")
    stats = StatsAggregator().aggregate(matches, now=BASE)
    index = stats_index(stats)
    assert index[("kodak", "2x4")].overall.matches == 3
    assert index[("kodak", "2x6")].overall.matches == 2
    assert lookup_player(index, "KODAK", "2x6 min").mode == "2x6"
    assert lookup_player(index, "Kodak", "volta").mode == "2x4"
    assert lookup_player(index, "nobody") is None


def test_nickname_spellings_share_one_history() -> None:
    matches = _history(29) + [build_match("kodak", "Lion", 2, 2, date=BASE + dt.timedelta(days=1))]
    stats = StatsAggregator().aggregate(matches, now=BASE)
    kodak = lookup_player(stats_index(stats), "Kodak", "2x4")
    assert kodak is not None
    assert kodak.player_nick == "Kodak"
    assert kodak.overall.matches == 30
    assert kodak.window("last8").avg_goals_for == pytest.approx((2 + 28 + 27 + 26 + 25 + 24 + 23 + 22) / 8)


def test_stats_index_keeps_the_larger_sample_on_collision(caplog: pytest.LogCaptureFixture) -> None:
    aggregator = StatsAggregator()
    large = aggregator.aggregate(_history(5), now=BASE)
    small = aggregator.aggregate([build_match("kodak", "Lion", 9, 0, date=BASE)], now=BASE)
    with caplog.at_level(logging.WARNING, logger="esbev.stats"):
        index = stats_index(large + small)
    assert index[("kodak", "2x4")].overall.matches == 5
    assert "collide" in caplog.text


def test_blend_normalises_over_present_windows() -> None:
    formula = WeightedFormula("test", {"last20": 0.3, "last50": 0.7})
    windows = {
        "last20": WindowSummary(matches=20, avg_goals_for=2.0, avg_goals_against=1.0),
        "last50": WindowSummary(),
    }
    blend = blend_windows(formula, windows)
    assert blend.avg_goals_for == pytest.approx(2.0)
    assert blend.windows_used == ("last20",)
    assert not blend.has_first_half
    assert blend.avg_first_half_goals_for == 0.0


def test_blend_without_any_data_is_flagged() -> None:
    formula = WeightedFormula("test", {"last20": 0.5, "last50": 0.5})
    blend = blend_windows(formula, {"last20": WindowSummary(), "last50": WindowSummary()})
    assert not blend.has_data
    assert blend.avg_goals_for == 0.0


def test_aggregate_reports_counts() -> None:
    report = PassReport("aggregate")
    StatsAggregator().aggregate(_history(3), report, now=BASE)
    assert report.processed == 3
    # Kodak plus three distinct opponents
    assert report.written == 4


def test_formula_registry() -> None:
    registry = FormulaRegistry.from_mapping({"a": {"last8": 1}, "b": {"last20": 0.5, "last50": 0.5}})
    assert registry.names() == ["a", "b"]
    assert "a" in registry
    assert len(registry) == 2
    assert registry.get("b").weights == {"last20": 0.5, "last50": 0.5}
    with pytest.raises(KeyError):
        registry.get("missing")
    with pytest.raises(ValueError):
        registry.register(WeightedFormula("empty", {}))


def test_default_registry_weights_sum_to_one() -> None:
    for formula in FormulaRegistry():
        assert formula.total_weight == pytest.approx(1.0)
        assert all(name.startswith("last") for name in formula.weights)
    assert window_name(20) == "last20"


_summaries = st.builds(
    WindowSummary,
    matches=st.integers(min_value=1, max_value=100),
    avg_goals_for=st.floats(min_value=0, max_value=10),
    avg_goals_against=st.floats(min_value=0, max_value=10),
    avg_total_goals=st.floats(min_value=0, max_value=20),
)


@given(
    st.dictionaries(
        st.sampled_from(["last8", "last20", "last50", "last100"]),
        st.floats(min_value=0.01, max_value=1.0),
        min_size=1,
    ),
    st.dictionaries(st.sampled_from(["last8", "last20", "last50", "last100"]), _summaries),
)
def test_blend_stays_within_window_range(weights, windows) -> None:
    blend = blend_windows(WeightedFormula("prop", weights), windows)
    present = [windows[name] for name in weights if name in windows]
    if not present:
        assert not blend.has_data
        return
    values = [summary.avg_goals_for for summary in present]
    assert min(values) - 1e-9 <= blend.avg_goals_for <= max(values) + 1e-9


@given(st.floats(min_value=0, max_value=10))
def test_blend_of_identical_windows_is_identity(value) -> None:
    summary = WindowSummary(matches=10, avg_goals_for=value)
    windows = {"last20": summary, "last50": summary}
    blend = blend_windows(WeightedFormula("prop", {"last20": 0.3, "last50": 0.7}), windows)
    assert blend.avg_goals_for == pytest.approx(value)


@given(st.dictionaries(st.sampled_from(["last8", "last20", "last50"]), _summaries, min_size=1))
def test_equal_weights_average_present_windows(windows) -> None:
    formula = WeightedFormula("equal", {"last8": 1 / 3, "last20": 1 / 3, "last50": 1 / 3})
    blend = blend_windows(formula, windows)
    expected = sum(summary.avg_goals_for for summary in windows.values()) / len(windows)
    assert blend.avg_goals_for == pytest.approx(expected)

    padded = {**{name: WindowSummary() for name in formula.weights}, **windows}
    assert blend_windows(formula, padded).avg_goals_for == pytest.approx(expected)

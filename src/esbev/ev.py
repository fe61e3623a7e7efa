"""Poisson goal model and expected value of over/under markets."""

from __future__ import annotations

import logging
import math
from typing import Iterable, List

from .errors import MissingDataError
from .models import BlendedStats, EvResult, ExpectedGoals, OddsMarket, PlayerWindowStats
from .stats import FormulaRegistry

logger = logging.getLogger(__name__)


def poisson_pmf(k: int, lam: float) -> float:
    """``P(X = k)`` for a Poisson variable with mean ``lam``."""

    if k < 0:
        raise ValueError("k must be a non-negative integer")
    if lam < 0:
        raise ValueError("lambda must be non-negative")
    if lam == 0:
        return 1.0 if k == 0 else 0.0
    return math.exp(k * math.log(lam) - lam - math.lgamma(k + 1))


def poisson_cdf(k: int, lam: float) -> float:
    """``P(X <= k)``; zero for negative ``k``."""

    if k < 0:
        return 0.0
    return min(1.0, math.fsum(poisson_pmf(i, lam) for i in range(k + 1)))


def poisson_over(threshold: float, lam: float) -> float:
    """``P(X > threshold)`` where ``threshold`` may be fractional."""

    return max(0.0, 1.0 - poisson_cdf(math.floor(threshold), lam))


def poisson_under(threshold: float, lam: float) -> float:
    """``P(X < threshold)`` where ``threshold`` may be fractional."""

    return poisson_cdf(math.ceil(threshold) - 1, lam)


def expected_goals(home: BlendedStats, away: BlendedStats) -> ExpectedGoals:
    """Combine two players' blended rates into per-match goal expectations.

    Each side's expectation is the mean of its own scoring rate and the
    opponent's conceding rate.  First-half values are only produced when both
    blends carry first-half data.
    """

    if not home.has_data:
        raise MissingDataError("player_stats", f"formula {home.formula} has no home data")
    if not away.has_data:
        raise MissingDataError("player_stats", f"formula {away.formula} has no away data")
    expected_home = (home.avg_goals_for + away.avg_goals_against) / 2
    expected_away = (away.avg_goals_for + home.avg_goals_against) / 2
    half_home = half_away = None
    if home.has_first_half and away.has_first_half:
        half_home = (home.avg_first_half_goals_for + away.avg_first_half_goals_against) / 2
        half_away = (away.avg_first_half_goals_for + home.avg_first_half_goals_against) / 2
    return ExpectedGoals(
        expected_home=expected_home,
        expected_away=expected_away,
        expected_home_first_half=half_home,
        expected_away_first_half=half_away,
    )


def lambda_for_scope(scope: str, goals: ExpectedGoals) -> float:
    if scope == "home":
        return goals.expected_home
    if scope == "away":
        return goals.expected_away
    if scope == "firstHalf":
        half = goals.total_first_half
        return half if half is not None else goals.total
    return goals.total


def compute_ev(market: OddsMarket, goals: ExpectedGoals, formula: str = "") -> EvResult:
    """Evaluate one posted line under one formula's expectations."""

    lam = lambda_for_scope(market.scope, goals)
    prob_over = poisson_over(market.line, lam)
    prob_under = poisson_under(market.line, lam)
    return EvResult(
        formula=formula,
        event_id=market.event_id,
        label=market.label,
        line=market.line,
        scope=market.scope,
        over_odds=market.over_odds,
        under_odds=market.under_odds,
        prob_over=prob_over,
        prob_under=prob_under,
        ev_over=prob_over * market.over_odds - 1,
        ev_under=prob_under * market.under_odds - 1,
        expected_goals=goals,
        lam=lam,
    )


class EvModel:
    """Run :func:`compute_ev` independently for every registered formula."""

    def __init__(self, formulas: FormulaRegistry | None = None) -> None:
        self.formulas = formulas if formulas is not None else FormulaRegistry()

    def expected_goals_for(
        self, formula: str, home: PlayerWindowStats, away: PlayerWindowStats
    ) -> ExpectedGoals:
        home_blend = home.formula(formula)
        away_blend = away.formula(formula)
        if home_blend is None or away_blend is None:
            raise MissingDataError("player_stats", f"formula {formula} not computed")
        return expected_goals(home_blend, away_blend)

    def evaluate(
        self,
        markets: Iterable[OddsMarket],
        home: PlayerWindowStats,
        away: PlayerWindowStats,
    ) -> List[EvResult]:
        """Evaluate ``markets`` under each formula.

        Formulas for which either player lacks data are skipped and logged;
        results for the remaining formulas are still returned.
        """

        market_list = list(markets)
        results: List[EvResult] = []
        for formula in self.formulas:
            try:
                goals = self.expected_goals_for(formula.name, home, away)
            except MissingDataError as err:
                logger.warning(
                    "Skipping formula %s for %s vs %s: %s",
                    formula.name,
                    home.player_nick,
                    away.player_nick,
                    err,
                )
                continue
            results.extend(compute_ev(market, goals, formula.name) for market in market_list)
        return results


__all__ = [
    "EvModel",
    "compute_ev",
    "expected_goals",
    "lambda_for_scope",
    "poisson_cdf",
    "poisson_over",
    "poisson_pmf",
    "poisson_under",
]

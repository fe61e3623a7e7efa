"""Per-player recency window statistics and weighted formula blends."""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from typing import Dict, Iterable, Iterator, List, Mapping, MutableMapping, Sequence, Tuple

from .errors import PassReport
from .models import (
    FIRST_HALF_METRICS,
    METRICS,
    BlendedStats,
    NormalizedMatch,
    PlayerWindowStats,
    WeightedFormula,
    WindowSummary,
)
from .normalization import normalize_mode
from .utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZES: Tuple[int, ...] = (8, 20, 50, 100)

DEFAULT_FORMULAS: Tuple[WeightedFormula, ...] = (
    WeightedFormula("raz_optimal", {"last20": 0.3, "last50": 0.7}),
    WeightedFormula("form_agressive", {"last8": 0.5, "last20": 0.3, "last50": 0.2}),
    WeightedFormula("equal_weighted", {"last20": 1 / 3, "last50": 1 / 3, "last100": 1 / 3}),
)

_EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)


def window_name(size: int) -> str:
    return f"last{size}"


@dataclasses.dataclass(frozen=True, slots=True)
class PlayerRow:
    """One match seen from a single player's side."""

    player_nick: str
    mode: str
    goals_for: int
    goals_against: int
    first_half_for: int | None
    first_half_against: int | None
    timestamp: dt.datetime
    match_identity: str = ""


class FormulaRegistry:
    """Ordered collection of named :class:`WeightedFormula` values."""

    def __init__(self, formulas: Iterable[WeightedFormula] = DEFAULT_FORMULAS) -> None:
        self._formulas: Dict[str, WeightedFormula] = {}
        for formula in formulas:
            self.register(formula)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Mapping[str, float]]) -> FormulaRegistry:
        return cls(
            WeightedFormula(name, {window: float(weight) for window, weight in weights.items()})
            for name, weights in mapping.items()
        )

    def register(self, formula: WeightedFormula) -> None:
        if not formula.weights:
            raise ValueError(f"Formula {formula.name!r} declares no windows")
        self._formulas[formula.name] = formula

    def get(self, name: str) -> WeightedFormula:
        try:
            return self._formulas[name]
        except KeyError as err:
            raise KeyError(f"Unknown formula {name!r}") from err

    def names(self) -> List[str]:
        return list(self._formulas)

    def __contains__(self, name: object) -> bool:
        return name in self._formulas

    def __iter__(self) -> Iterator[WeightedFormula]:
        return iter(self._formulas.values())

    def __len__(self) -> int:
        return len(self._formulas)


def _mean(total: float, count: int) -> float:
    return total / count if count else 0.0


def summarize(rows: Sequence[PlayerRow]) -> WindowSummary:
    """Counts and means for ``rows``.

    First-half means use only the rows that carry both first-half values, so
    their denominator can be smaller than ``matches``.
    """

    matches = len(rows)
    goals_for = sum(row.goals_for for row in rows)
    goals_against = sum(row.goals_against for row in rows)
    halves = [
        (row.first_half_for, row.first_half_against)
        for row in rows
        if row.first_half_for is not None and row.first_half_against is not None
    ]
    half_for = sum(item[0] for item in halves)
    half_against = sum(item[1] for item in halves)
    return WindowSummary(
        matches=matches,
        goals_for=goals_for,
        goals_against=goals_against,
        avg_goals_for=_mean(goals_for, matches),
        avg_goals_against=_mean(goals_against, matches),
        avg_total_goals=_mean(goals_for + goals_against, matches),
        first_half_matches=len(halves),
        avg_first_half_goals_for=_mean(half_for, len(halves)),
        avg_first_half_goals_against=_mean(half_against, len(halves)),
        avg_first_half_total_goals=_mean(half_for + half_against, len(halves)),
    )


def blend_windows(formula: WeightedFormula, windows: Mapping[str, WindowSummary]) -> BlendedStats:
    """Weighted mean of the six summary metrics across ``formula``'s windows.

    Windows without rows (or missing from ``windows``) drop out and the
    result is normalised by the weights of the windows that remain.
    First-half metrics apply the same rule using first-half presence.
    """

    full = [
        (name, weight)
        for name, weight in formula.weights.items()
        if weight and name in windows and windows[name].has_data
    ]
    halves = [
        (name, weight)
        for name, weight in formula.weights.items()
        if weight and name in windows and windows[name].has_first_half
    ]
    values: Dict[str, float] = {}
    for metric in METRICS:
        present = halves if metric in FIRST_HALF_METRICS else full
        total_weight = sum(weight for _, weight in present)
        if not total_weight:
            values[metric] = 0.0
            continue
        weighted = sum(weight * windows[name].metric(metric) for name, weight in present)
        values[metric] = weighted / total_weight
    return BlendedStats(
        formula=formula.name,
        windows_used=tuple(name for name, _ in full),
        first_half_windows_used=tuple(name for name, _ in halves),
        **values,
    )


def player_rows(match: NormalizedMatch) -> Tuple[PlayerRow, PlayerRow]:
    """Both player perspectives of ``match``."""

    mode = normalize_mode(match.mode)
    timestamp = match.date or _EPOCH
    home = PlayerRow(
        player_nick=match.home_nick,
        mode=mode,
        goals_for=match.goals_home,
        goals_against=match.goals_away,
        first_half_for=match.first_half_home,
        first_half_against=match.first_half_away,
        timestamp=timestamp,
        match_identity=match.match_identity,
    )
    away = PlayerRow(
        player_nick=match.away_nick,
        mode=mode,
        goals_for=match.goals_away,
        goals_against=match.goals_home,
        first_half_for=match.first_half_away,
        first_half_against=match.first_half_home,
        timestamp=timestamp,
        match_identity=match.match_identity,
    )
    return home, away


class StatsAggregator:
    """Build :class:`PlayerWindowStats` for every ``(player, mode)`` pair."""

    def __init__(
        self,
        window_sizes: Sequence[int] = DEFAULT_WINDOW_SIZES,
        formulas: FormulaRegistry | None = None,
    ) -> None:
        if any(size <= 0 for size in window_sizes):
            raise ValueError("Window sizes must be positive")
        self.window_sizes = tuple(window_sizes)
        self.formulas = formulas if formulas is not None else FormulaRegistry()

    def group_rows(self, matches: Iterable[NormalizedMatch]) -> Dict[Tuple[str, str], List[PlayerRow]]:
        """Rows per ``(player, mode)``, most recent first.

        Nicknames group case-insensitively under the first spelling seen.
        """

        grouped: MutableMapping[Tuple[str, str], List[PlayerRow]] = {}
        display: Dict[str, str] = {}
        for match in matches:
            for row in player_rows(match):
                folded = row.player_nick.lower()
                nick = display.setdefault(folded, row.player_nick)
                if nick != row.player_nick:
                    logger.debug("Grouping %r under %r", row.player_nick, nick)
                grouped.setdefault((nick, row.mode), []).append(row)
        # Python's sort is stable with reverse=True, so equal kickoffs keep input order.
        return {
            key: sorted(rows, key=lambda row: row.timestamp, reverse=True)
            for key, rows in grouped.items()
        }

    def build(
        self, player_nick: str, mode: str, rows: Sequence[PlayerRow], updated_at: dt.datetime
    ) -> PlayerWindowStats:
        windows = {window_name(size): summarize(rows[:size]) for size in self.window_sizes}
        formulas = {formula.name: blend_windows(formula, windows) for formula in self.formulas}
        return PlayerWindowStats(
            player_nick=player_nick,
            mode=mode,
            overall=summarize(rows),
            windows=windows,
            formulas=formulas,
            updated_at=updated_at,
        )

    def aggregate(
        self,
        matches: Iterable[NormalizedMatch],
        report: PassReport | None = None,
        now: dt.datetime | None = None,
    ) -> List[PlayerWindowStats]:
        report = report if report is not None else PassReport("aggregate")
        match_list = list(matches)
        report.processed += len(match_list)
        updated_at = now or utcnow()
        stats = [
            self.build(player_nick, mode, rows, updated_at)
            for (player_nick, mode), rows in self.group_rows(match_list).items()
        ]
        report.written += len(stats)
        logger.info(
            "Aggregated %d matches into %d player/mode statistics", len(match_list), len(stats)
        )
        return stats


def stats_index(stats: Iterable[PlayerWindowStats]) -> Dict[Tuple[str, str], PlayerWindowStats]:
    """Case-insensitive ``(nick, mode)`` lookup table.

    When two entries fold to the same key the one with more matches is kept.
    """

    index: Dict[Tuple[str, str], PlayerWindowStats] = {}
    for entry in stats:
        key = (entry.player_nick.lower(), entry.mode)
        existing = index.get(key)
        if existing is None:
            index[key] = entry
            continue
        kept = existing if existing.overall.matches >= entry.overall.matches else entry
        logger.warning(
            "Player stats %r and %r collide for mode %s; keeping %r (%d matches)",
            existing.player_nick,
            entry.player_nick,
            entry.mode,
            kept.player_nick,
            kept.overall.matches,
        )
        index[key] = kept
    return index


def lookup_player(
    index: Mapping[Tuple[str, str], PlayerWindowStats], player_nick: str, mode: str | None = None
) -> PlayerWindowStats | None:
    """Find a player's stats, preferring ``mode`` and falling back to the busiest mode."""

    nick = player_nick.strip().lower()
    if mode is not None:
        found = index.get((nick, normalize_mode(mode)))
        if found is not None:
            return found
    candidates = [entry for (key_nick, _), entry in index.items() if key_nick == nick]
    if not candidates:
        return None
    return max(candidates, key=lambda entry: entry.overall.matches)


__all__ = [
    "DEFAULT_FORMULAS",
    "DEFAULT_WINDOW_SIZES",
    "FormulaRegistry",
    "PlayerRow",
    "StatsAggregator",
    "blend_windows",
    "lookup_player",
    "player_rows",
    "stats_index",
    "summarize",
    "window_name",
]

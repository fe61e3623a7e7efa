"""Canonical records shared by every stage of the pipeline."""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
from typing import Any, Dict, Literal, Mapping, Tuple

ScopeLiteral = Literal["total", "home", "away", "firstHalf"]
SelectionLiteral = Literal["over", "under"]

SCOPES: Tuple[str, ...] = ("total", "home", "away", "firstHalf")
SELECTIONS: Tuple[str, ...] = ("over", "under")

METRICS: Tuple[str, ...] = (
    "avg_goals_for",
    "avg_goals_against",
    "avg_total_goals",
    "avg_first_half_goals_for",
    "avg_first_half_goals_against",
    "avg_first_half_total_goals",
)
FIRST_HALF_METRICS = frozenset(METRICS[3:])


class SettlementResult(str, enum.Enum):
    """Outcome of a single settlement attempt."""

    WIN = "win"
    LOSS = "loss"
    PUSH = "push"
    UNRESOLVED = "unresolved"


class Orientation(str, enum.Enum):
    """How a wager's participants lined up against a canonical match."""

    SAME = "same"
    SWAPPED = "swapped"


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: object) -> dt.datetime | None:
    if not value:
        return None
    return dt.datetime.fromisoformat(str(value))


@dataclasses.dataclass(frozen=True, slots=True)
class NormalizedMatch:
    """Deduplicated, fully scored match."""

    match_identity: str
    source_tag: str
    date: dt.datetime | None
    mode: str
    home_nick: str
    away_nick: str
    goals_home: int
    goals_away: int
    first_half_home: int | None = None
    first_half_away: int | None = None
    provenance_refs: Tuple[str, ...] = ()
    raw_date: str | None = None
    corrected: bool = False

    @property
    def total_goals(self) -> int:
        return self.goals_home + self.goals_away

    @property
    def first_half_total(self) -> int | None:
        if self.first_half_home is None or self.first_half_away is None:
            return None
        return self.first_half_home + self.first_half_away

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_identity": self.match_identity,
            "source_tag": self.source_tag,
            "date": _iso(self.date),
            "raw_date": self.raw_date,
            "mode": self.mode,
            "home_nick": self.home_nick,
            "away_nick": self.away_nick,
            "goals_home": self.goals_home,
            "goals_away": self.goals_away,
            "first_half_home": self.first_half_home,
            "first_half_away": self.first_half_away,
            "total_goals": self.total_goals,
            "provenance_refs": list(self.provenance_refs),
            "corrected": self.corrected,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NormalizedMatch:
        return cls(
            match_identity=str(data["match_identity"]),
            source_tag=str(data.get("source_tag", "")),
            date=_from_iso(data.get("date")),
            raw_date=data.get("raw_date"),
            mode=str(data.get("mode", "unknown")),
            home_nick=str(data["home_nick"]),
            away_nick=str(data["away_nick"]),
            goals_home=int(data["goals_home"]),
            goals_away=int(data["goals_away"]),
            first_half_home=data.get("first_half_home"),
            first_half_away=data.get("first_half_away"),
            provenance_refs=tuple(data.get("provenance_refs") or ()),
            corrected=bool(data.get("corrected", False)),
        )


@dataclasses.dataclass(frozen=True, slots=True)
class WindowSummary:
    """Aggregate counts and means for one slice of a player's history.

    ``matches`` and ``first_half_matches`` are the denominators of the
    full-match and first-half means respectively.  A mean reported as ``0.0``
    with a zero denominator means "no data", not an observed zero; use
    :attr:`has_data` and :attr:`has_first_half` to tell them apart.
    """

    matches: int = 0
    goals_for: int = 0
    goals_against: int = 0
    avg_goals_for: float = 0.0
    avg_goals_against: float = 0.0
    avg_total_goals: float = 0.0
    first_half_matches: int = 0
    avg_first_half_goals_for: float = 0.0
    avg_first_half_goals_against: float = 0.0
    avg_first_half_total_goals: float = 0.0

    @property
    def has_data(self) -> bool:
        return self.matches > 0

    @property
    def has_first_half(self) -> bool:
        return self.first_half_matches > 0

    def metric(self, name: str) -> float:
        return float(getattr(self, name))

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WindowSummary:
        fields = {field.name for field in dataclasses.fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in fields})


@dataclasses.dataclass(frozen=True, slots=True)
class BlendedStats:
    """Output of one weighting formula for one player."""

    formula: str
    avg_goals_for: float = 0.0
    avg_goals_against: float = 0.0
    avg_total_goals: float = 0.0
    avg_first_half_goals_for: float = 0.0
    avg_first_half_goals_against: float = 0.0
    avg_first_half_total_goals: float = 0.0
    windows_used: Tuple[str, ...] = ()
    first_half_windows_used: Tuple[str, ...] = ()

    @property
    def has_data(self) -> bool:
        return bool(self.windows_used)

    @property
    def has_first_half(self) -> bool:
        return bool(self.first_half_windows_used)

    def to_dict(self) -> Dict[str, Any]:
        payload = dataclasses.asdict(self)
        payload["windows_used"] = list(self.windows_used)
        payload["first_half_windows_used"] = list(self.first_half_windows_used)
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BlendedStats:
        values = dict(data)
        values["windows_used"] = tuple(values.get("windows_used") or ())
        values["first_half_windows_used"] = tuple(values.get("first_half_windows_used") or ())
        return cls(**values)


@dataclasses.dataclass(frozen=True, slots=True)
class PlayerWindowStats:
    """Full-history and recency-window statistics for ``(player_nick, mode)``."""

    player_nick: str
    mode: str
    overall: WindowSummary
    windows: Mapping[str, WindowSummary]
    formulas: Mapping[str, BlendedStats]
    updated_at: dt.datetime | None = None

    def window(self, name: str) -> WindowSummary:
        return self.windows.get(name, WindowSummary())

    def formula(self, name: str) -> BlendedStats | None:
        return self.formulas.get(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_nick": self.player_nick,
            "mode": self.mode,
            "overall": self.overall.to_dict(),
            "windows": {name: summary.to_dict() for name, summary in self.windows.items()},
            "formulas": {name: blend.to_dict() for name, blend in self.formulas.items()},
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlayerWindowStats:
        return cls(
            player_nick=str(data["player_nick"]),
            mode=str(data["mode"]),
            overall=WindowSummary.from_dict(data.get("overall") or {}),
            windows={
                name: WindowSummary.from_dict(summary)
                for name, summary in (data.get("windows") or {}).items()
            },
            formulas={
                name: BlendedStats.from_dict(blend)
                for name, blend in (data.get("formulas") or {}).items()
            },
            updated_at=_from_iso(data.get("updated_at")),
        )


@dataclasses.dataclass(frozen=True, slots=True)
class WeightedFormula:
    """Named linear blend of recency windows."""

    name: str
    weights: Mapping[str, float]

    @property
    def total_weight(self) -> float:
        return float(sum(self.weights.values()))


@dataclasses.dataclass(frozen=True, slots=True)
class ExpectedGoals:
    """Per-match goal expectations derived from one formula."""

    expected_home: float
    expected_away: float
    expected_home_first_half: float | None = None
    expected_away_first_half: float | None = None

    @property
    def total(self) -> float:
        return self.expected_home + self.expected_away

    @property
    def total_first_half(self) -> float | None:
        if self.expected_home_first_half is None or self.expected_away_first_half is None:
            return None
        return self.expected_home_first_half + self.expected_away_first_half

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expected_home": self.expected_home,
            "expected_away": self.expected_away,
            "total": self.total,
            "expected_home_first_half": self.expected_home_first_half,
            "expected_away_first_half": self.expected_away_first_half,
            "total_first_half": self.total_first_half,
        }


@dataclasses.dataclass(frozen=True, slots=True)
class OddsMarket:
    """Posted over/under line for one event."""

    event_id: str
    label: str
    line: float
    over_odds: float
    under_odds: float
    scope: str = "total"


@dataclasses.dataclass(frozen=True, slots=True)
class EvResult:
    """Evaluation of one ``(formula, line, scope)`` triple."""

    formula: str
    event_id: str
    label: str
    line: float
    scope: str
    over_odds: float
    under_odds: float
    prob_over: float
    prob_under: float
    ev_over: float
    ev_under: float
    expected_goals: ExpectedGoals
    lam: float

    @property
    def key(self) -> Tuple[str, float, str]:
        return (self.formula, self.line, self.scope)

    @property
    def best_ev(self) -> float:
        return max(self.ev_over, self.ev_under)


@dataclasses.dataclass(slots=True)
class Wager:
    """Persisted bet snapshot produced by the EV pass.

    Rows are created unsettled and later transition exactly once to
    ``settled=True`` with a terminal ``result``.
    """

    event_id: str
    formula: str
    line: float
    scope: str
    selection: str
    offered_odds: float
    probability: float
    ev: float
    home_name: str = ""
    away_name: str = ""
    event_name: str = ""
    kickoff: dt.datetime | None = None
    criterion_label: str = ""
    fair_odds: float | None = None
    expected_goals: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    snapshot_time: dt.datetime | None = None
    created_at: dt.datetime | None = None
    settled: bool = False
    result: str | None = None
    settled_at: dt.datetime | None = None
    settlement: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    wager_id: int | None = None

    @property
    def key(self) -> Tuple[str, str, str, str, str]:
        return (self.event_id, self.formula, self.selection, f"{self.line:.4f}", self.scope)


@dataclasses.dataclass(frozen=True, slots=True)
class FixtureSnapshot:
    """Most recent listing of upcoming sportsbook events."""

    snapshot_id: str
    created_at: dt.datetime
    payload: Mapping[str, Any]


__all__ = [
    "BlendedStats",
    "EvResult",
    "ExpectedGoals",
    "FixtureSnapshot",
    "METRICS",
    "NormalizedMatch",
    "OddsMarket",
    "Orientation",
    "PlayerWindowStats",
    "SCOPES",
    "SELECTIONS",
    "SettlementResult",
    "WeightedFormula",
    "Wager",
    "WindowSummary",
]

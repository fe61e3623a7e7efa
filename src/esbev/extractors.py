"""Declarative field extraction for schema-variable raw match payloads.

Feeds disagree on where they put participants, scores, kickoff times and game
modes.  Each concern is described as an ordered tuple of named
:class:`Extractor` objects; every extractor is a pure function from a payload
mapping to an optional value and the first non-``None`` result wins.  Keeping
the alias tables as data makes each rule individually testable and lets new
feed shapes be supported by appending an extractor instead of editing control
flow.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Any, Callable, Generic, List, Mapping, Sequence, Tuple, TypeVar

from .utils import coerce_int

T = TypeVar("T")
ScorePair = Tuple[int, int]

_SCORE_SPLIT = re.compile(r"\s*[:\-]\s*")


@dataclasses.dataclass(frozen=True)
class Extractor(Generic[T]):
    """Named rule pulling one optional value out of a payload."""

    name: str
    func: Callable[[Mapping[str, Any]], T | None]

    def __call__(self, payload: Mapping[str, Any]) -> T | None:
        return self.func(payload)


def first_value(
    extractors: Sequence[Extractor[T]], payload: Mapping[str, Any]
) -> tuple[str, T] | None:
    """Return ``(extractor name, value)`` for the first extractor that matches."""

    for extractor in extractors:
        value = extractor(payload)
        if value is not None:
            return extractor.name, value
    return None


def value_from_candidates(payload: Any, keys: Sequence[str]) -> Any:
    if not isinstance(payload, Mapping):
        return None
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def parse_score_string(value: Any) -> ScorePair | None:
    """Parse ``"3:1"`` or ``"3 - 1"`` into a score pair."""

    if not isinstance(value, str):
        return None
    parts = _SCORE_SPLIT.split(value.strip())
    if len(parts) != 2:
        return None
    home, away = (coerce_int(part) for part in parts)
    if home is None or away is None:
        return None
    return home, away


def _side_numbers(
    home_keys: Sequence[str], away_keys: Sequence[str]
) -> Callable[[Mapping[str, Any]], ScorePair | None]:
    def extract(payload: Mapping[str, Any]) -> ScorePair | None:
        home = _first_int(payload, home_keys)
        away = _first_int(payload, away_keys)
        if home is None or away is None:
            return None
        return home, away

    return extract


def _first_int(payload: Any, keys: Sequence[str]) -> int | None:
    if not isinstance(payload, Mapping):
        return None
    for key in keys:
        number = coerce_int(payload.get(key))
        if number is not None:
            return number
    return None


def _participant_scores(
    home_keys: Sequence[str], away_keys: Sequence[str]
) -> Callable[[Mapping[str, Any]], ScorePair | None]:
    def extract(payload: Mapping[str, Any]) -> ScorePair | None:
        home = _first_int(value_from_candidates(payload, home_keys), ("score", "goals"))
        away = _first_int(value_from_candidates(payload, away_keys), ("score", "goals"))
        if home is None or away is None:
            return None
        return home, away

    return extract


def _side_keyed(side: str) -> Tuple[str, ...]:
    return (side, f"{side}Score", f"{side}_score", f"{side}Goals", f"{side}_goals")


def _nested_containers(
    containers: Sequence[str],
) -> Callable[[Mapping[str, Any]], ScorePair | None]:
    def extract(payload: Mapping[str, Any]) -> ScorePair | None:
        for name in containers:
            container = payload.get(name)
            if isinstance(container, Mapping):
                home = _first_int(container, _side_keyed("home"))
                away = _first_int(container, _side_keyed("away"))
                if home is not None and away is not None:
                    return home, away
            elif isinstance(container, str):
                parsed = parse_score_string(container)
                if parsed is not None:
                    return parsed
        return None

    return extract


def _score_strings(keys: Sequence[str]) -> Callable[[Mapping[str, Any]], ScorePair | None]:
    def extract(payload: Mapping[str, Any]) -> ScorePair | None:
        for key in keys:
            parsed = parse_score_string(payload.get(key))
            if parsed is not None:
                return parsed
        return None

    return extract


HOME_SCORE_FIELDS = ("goalsHome", "homeGoals", "homeScore", "home_score", "scoreHome", "home", "score1")
AWAY_SCORE_FIELDS = ("goalsAway", "awayGoals", "awayScore", "away_score", "scoreAway", "away", "score2")
HOME_PARTICIPANT_FIELDS = ("participant1", "p1", "homeParticipant", "homePlayer")
AWAY_PARTICIPANT_FIELDS = ("participant2", "p2", "awayParticipant", "awayPlayer")

SCORE_EXTRACTORS: Tuple[Extractor[ScorePair], ...] = (
    Extractor("direct_fields", _side_numbers(HOME_SCORE_FIELDS, AWAY_SCORE_FIELDS)),
    Extractor(
        "participant_scores",
        _participant_scores(HOME_PARTICIPANT_FIELDS, AWAY_PARTICIPANT_FIELDS),
    ),
    Extractor(
        "result_containers",
        _nested_containers(("score", "result", "finalScore", "finalResult", "fulltime", "ft")),
    ),
    Extractor(
        "score_strings",
        _score_strings(("resultString", "scoreString", "score_line", "result", "score")),
    ),
)

FIRST_HALF_EXTRACTORS: Tuple[Extractor[ScorePair], ...] = (
    Extractor(
        "first_half_fields",
        _side_numbers(
            ("prevPeriodsScoresHome", "firstHalfHome", "halfTimeHome", "htHome", "home_ht"),
            ("prevPeriodsScoresAway", "firstHalfAway", "halfTimeAway", "htAway", "away_ht"),
        ),
    ),
    Extractor(
        "first_half_containers",
        _nested_containers(("halftime", "halfTime", "firstHalf", "ht", "prevPeriodsScores")),
    ),
)


def resolve_nickname(candidate: Any) -> str | None:
    """Turn a string or participant object into a nickname."""

    if isinstance(candidate, str):
        stripped = candidate.strip()
        return stripped or None
    if isinstance(candidate, Mapping):
        return resolve_nickname(
            value_from_candidates(
                candidate, ("nickname", "nickName", "name", "title", "player", "slug")
            )
        )
    return None


HOME_NICK_FIELDS = (
    "homePlayer", "home", "homeParticipant", "player1", "firstPlayer", "teamHome", "participant1", "p1",
)
AWAY_NICK_FIELDS = (
    "awayPlayer", "away", "awayParticipant", "player2", "secondPlayer", "teamAway", "participant2", "p2",
)


def _nick_fields(keys: Sequence[str]) -> Callable[[Mapping[str, Any]], str | None]:
    def extract(payload: Mapping[str, Any]) -> str | None:
        for key in keys:
            nick = resolve_nickname(payload.get(key))
            if nick:
                return nick
        return None

    return extract


def _participant_list(index: int) -> Callable[[Mapping[str, Any]], str | None]:
    def extract(payload: Mapping[str, Any]) -> str | None:
        for key in ("participants", "players", "teams"):
            entries = payload.get(key)
            if isinstance(entries, Sequence) and not isinstance(entries, (str, bytes)):
                if len(entries) >= 2:
                    return resolve_nickname(entries[index])
        return None

    return extract


NICKNAME_EXTRACTORS: Mapping[str, Tuple[Extractor[str], ...]] = {
    "home": (
        Extractor("home_fields", _nick_fields(HOME_NICK_FIELDS)),
        Extractor("participants_first", _participant_list(0)),
    ),
    "away": (
        Extractor("away_fields", _nick_fields(AWAY_NICK_FIELDS)),
        Extractor("participants_second", _participant_list(1)),
    ),
}

KICKOFF_FIELDS = (
    "kickoff", "kickoffTime", "start", "startAt", "start_at", "startDate", "startTime",
    "time", "date", "matchDate", "begin_at",
)
MODE_FIELDS = ("mode", "modeName", "matchType", "type", "format", "gameMode")


def extract_score_pair(payload: Mapping[str, Any]) -> ScorePair | None:
    found = first_value(SCORE_EXTRACTORS, payload)
    return found[1] if found else None


def extract_first_half_pair(payload: Mapping[str, Any]) -> ScorePair | None:
    found = first_value(FIRST_HALF_EXTRACTORS, payload)
    return found[1] if found else None


def extract_nickname(payload: Mapping[str, Any], side: str) -> str | None:
    found = first_value(NICKNAME_EXTRACTORS[side], payload)
    return found[1] if found else None


def extract_kickoff(payload: Mapping[str, Any]) -> Any:
    return value_from_candidates(payload, KICKOFF_FIELDS)


def extract_mode(payload: Mapping[str, Any]) -> str:
    mode = value_from_candidates(payload, MODE_FIELDS)
    if mode is None or (isinstance(mode, str) and not mode.strip()):
        return "unknown"
    return str(mode).strip()


_MATCH_CONTAINERS: Tuple[Tuple[str, ...], ...] = (
    ("matches",),
    ("data", "matches"),
    ("data",),
    ("rawResponse", "data"),
    ("rawResponse", "matches"),
)


def extract_matches(raw: Any) -> List[Mapping[str, Any]] | None:
    """Locate the list of match records inside one raw feed document.

    Returns ``None`` when the document carries no matches array at all.
    """

    if isinstance(raw, list):
        return [item for item in raw if isinstance(item, Mapping)]
    if not isinstance(raw, Mapping):
        return None
    for path in _MATCH_CONTAINERS:
        node: Any = raw
        for key in path:
            node = node.get(key) if isinstance(node, Mapping) else None
        if isinstance(node, list):
            return [item for item in node if isinstance(item, Mapping)]
    return None


__all__ = [
    "Extractor",
    "FIRST_HALF_EXTRACTORS",
    "NICKNAME_EXTRACTORS",
    "SCORE_EXTRACTORS",
    "extract_first_half_pair",
    "extract_kickoff",
    "extract_matches",
    "extract_mode",
    "extract_nickname",
    "extract_score_pair",
    "first_value",
    "parse_score_string",
    "resolve_nickname",
    "value_from_candidates",
]

"""Resolve a wager's participants and kickoff onto a canonical match."""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from typing import Iterable, List, Optional, Tuple

from .models import NormalizedMatch, Orientation, Wager
from .normalization import nickname_from_display_name
from .utils import minutes_between, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_MINUTES = 120.0


@dataclasses.dataclass(frozen=True, slots=True)
class MatchQuery:
    """Participants and kickoff to look up."""

    home_nick: str
    away_nick: str
    kickoff: dt.datetime | None

    @classmethod
    def from_wager(cls, wager: Wager) -> MatchQuery:
        return cls(
            home_nick=nickname_from_display_name(wager.home_name),
            away_nick=nickname_from_display_name(wager.away_name),
            kickoff=parse_timestamp(wager.kickoff),
        )


@dataclasses.dataclass(frozen=True, slots=True)
class Resolution:
    """Chosen candidate together with how trustworthy the choice is."""

    match: NormalizedMatch
    orientation: Orientation
    distance_minutes: float
    within_tolerance: bool
    ambiguous: bool = False

    @property
    def out_of_tolerance(self) -> bool:
        return not self.within_tolerance

    @property
    def flagged(self) -> bool:
        return self.ambiguous or not self.within_tolerance


def orientation_for(query: MatchQuery, match: NormalizedMatch) -> Optional[Orientation]:
    home = query.home_nick.strip().lower()
    away = query.away_nick.strip().lower()
    match_home = match.home_nick.strip().lower()
    match_away = match.away_nick.strip().lower()
    if home == match_home and away == match_away:
        return Orientation.SAME
    if home == match_away and away == match_home:
        return Orientation.SWAPPED
    return None


class MatchResolver:
    """Pick the canonical match closest in time to a wager.

    Candidates must share both nicknames (case-insensitive, either side
    order) and carry a kickoff.  The closest candidate within the tolerance
    wins; otherwise the closest overall is returned with
    ``within_tolerance=False``.  Equal distances keep input order.
    """

    def __init__(self, tolerance_minutes: float = DEFAULT_TOLERANCE_MINUTES) -> None:
        if tolerance_minutes < 0:
            raise ValueError("tolerance_minutes must be non-negative")
        self.tolerance_minutes = tolerance_minutes

    def candidates(
        self, query: MatchQuery, matches: Iterable[NormalizedMatch]
    ) -> List[Tuple[NormalizedMatch, Orientation, float]]:
        if query.kickoff is None:
            return []
        found: List[Tuple[NormalizedMatch, Orientation, float]] = []
        for match in matches:
            if match.date is None:
                continue
            orientation = orientation_for(query, match)
            if orientation is None:
                continue
            found.append((match, orientation, minutes_between(match.date, query.kickoff)))
        return found

    def resolve(
        self,
        query: MatchQuery,
        matches: Iterable[NormalizedMatch],
        tolerance_minutes: float | None = None,
    ) -> Resolution | None:
        tolerance = self.tolerance_minutes if tolerance_minutes is None else tolerance_minutes
        if not query.home_nick or not query.away_nick or query.kickoff is None:
            logger.warning(
                "Cannot resolve %s vs %s without nicknames and kickoff",
                query.home_nick,
                query.away_nick,
            )
            return None
        pool = self.candidates(query, matches)
        if not pool:
            return None
        within = [entry for entry in pool if entry[2] <= tolerance]
        chosen_pool = within or pool
        best = chosen_pool[0]
        for entry in chosen_pool[1:]:
            if entry[2] < best[2]:
                best = entry
        ties = sum(1 for entry in chosen_pool if entry[2] == best[2])
        match, orientation, distance = best
        if not within:
            logger.warning(
                "No match for %s vs %s within %.0f minutes; using closest candidate %s (%.1f min)",
                query.home_nick,
                query.away_nick,
                tolerance,
                match.match_identity,
                distance,
            )
        if ties > 1:
            logger.info(
                "%d candidates tie at %.1f minutes for %s vs %s; keeping the first",
                ties,
                distance,
                query.home_nick,
                query.away_nick,
            )
        return Resolution(
            match=match,
            orientation=orientation,
            distance_minutes=distance,
            within_tolerance=bool(within),
            ambiguous=ties > 1,
        )


__all__ = [
    "DEFAULT_TOLERANCE_MINUTES",
    "MatchQuery",
    "MatchResolver",
    "Orientation",
    "Resolution",
    "orientation_for",
]

"""Settle stored wagers against finished canonical matches."""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
import math
from typing import Any, Dict, List, Optional

from .errors import PassReport
from .models import NormalizedMatch, Orientation, SettlementResult, Wager
from .resolver import MatchQuery, MatchResolver, Resolution
from .storage import PipelineStore
from .utils import utcnow

logger = logging.getLogger(__name__)

PUSH_EPSILON = 1e-9


@dataclasses.dataclass(frozen=True, slots=True)
class SettlementOutcome:
    result: SettlementResult
    score: float | None
    note: str = ""


def scope_score(
    match: NormalizedMatch, scope: str, orientation: Orientation = Orientation.SAME
) -> Optional[int]:
    """Score compared against a wager's line.

    ``home`` and ``away`` refer to the wager's sides, so a swapped
    orientation reads the opposite side of the canonical match.
    """

    home, away = match.goals_home, match.goals_away
    if orientation is Orientation.SWAPPED:
        home, away = away, home
    lowered = (scope or "total").lower()
    if lowered == "home":
        return home
    if lowered == "away":
        return away
    if lowered == "firsthalf":
        return match.first_half_total
    return match.total_goals


def settle(score: float | None, line: float | None, selection: str | None) -> SettlementOutcome:
    """Grade a single over/under selection."""

    if score is None or not math.isfinite(score):
        return SettlementOutcome(SettlementResult.UNRESOLVED, None, "score missing")
    if line is None or not math.isfinite(line):
        return SettlementOutcome(SettlementResult.UNRESOLVED, score, "line missing")
    pick = (selection or "").lower()
    if pick not in ("over", "under"):
        return SettlementOutcome(SettlementResult.UNRESOLVED, score, "selection unknown")
    if abs(score - line) < PUSH_EPSILON:
        return SettlementOutcome(SettlementResult.PUSH, score)
    won = score > line if pick == "over" else score < line
    return SettlementOutcome(SettlementResult.WIN if won else SettlementResult.LOSS, score)


def settlement_metadata(
    resolution: Resolution, outcome: SettlementOutcome
) -> Dict[str, Any]:
    match = resolution.match
    return {
        "match_identity": match.match_identity,
        "match_kickoff": match.date.isoformat() if match.date else match.raw_date,
        "goals_home": match.goals_home,
        "goals_away": match.goals_away,
        "first_half_home": match.first_half_home,
        "first_half_away": match.first_half_away,
        "scope_score": outcome.score,
        "orientation": resolution.orientation.value,
        "distance_minutes": resolution.distance_minutes,
        "out_of_tolerance": resolution.out_of_tolerance,
        "ambiguous": resolution.ambiguous,
    }


class SettlementEngine:
    """Resolve and grade unsettled wagers one event at a time."""

    def __init__(
        self,
        store: PipelineStore,
        resolver: MatchResolver | None = None,
        *,
        accept_out_of_tolerance: bool = True,
    ) -> None:
        self.store = store
        self.resolver = resolver or MatchResolver()
        self.accept_out_of_tolerance = accept_out_of_tolerance

    def settle_event(
        self,
        event_id: str,
        report: PassReport | None = None,
        *,
        tolerance_minutes: float | None = None,
        now: dt.datetime | None = None,
    ) -> int:
        """Settle every pending wager of ``event_id``; return how many settled."""

        report = report if report is not None else PassReport("settle")
        pending = self.store.load_wagers(settled=False, event_id=event_id)
        if not pending:
            return 0
        report.processed += len(pending)
        query = MatchQuery.from_wager(pending[0])
        candidates = self.store.find_matches_for_players(query.home_nick, query.away_nick)
        resolution = self.resolver.resolve(query, candidates, tolerance_minutes)
        if resolution is None:
            logger.warning(
                "No canonical match for event %s (%s vs %s)",
                event_id,
                pending[0].home_name,
                pending[0].away_name,
            )
            report.skip("no_match", len(pending))
            return 0
        if resolution.flagged:
            report.ambiguous += 1
        if resolution.out_of_tolerance and not self.accept_out_of_tolerance:
            logger.warning(
                "Event %s resolved outside tolerance (%.1f min); leaving %d wagers pending",
                event_id,
                resolution.distance_minutes,
                len(pending),
            )
            report.skip("out_of_tolerance", len(pending))
            return 0

        settled_at = now or utcnow()
        updated = 0
        for wager in pending:
            updated += self._settle_wager(wager, resolution, settled_at, report)
        report.written += updated
        if updated == len(pending):
            self.store.mark_match_corrected(resolution.match.match_identity, settled_at)
            logger.info("Marked match %s as corrected", resolution.match.match_identity)
        return updated

    def _settle_wager(
        self, wager: Wager, resolution: Resolution, settled_at: dt.datetime, report: PassReport
    ) -> int:
        score = scope_score(resolution.match, wager.scope, resolution.orientation)
        outcome = settle(score, wager.line, wager.selection)
        if outcome.result is SettlementResult.UNRESOLVED:
            logger.warning(
                "Leaving wager %s unresolved: %s (scope=%s, line=%s)",
                wager.key,
                outcome.note,
                wager.scope,
                wager.line,
            )
            report.skip("unresolved")
            return 0
        if wager.wager_id is None:
            report.skip("unsaved_wager")
            return 0
        written = self.store.settle_wager(
            wager.wager_id,
            outcome.result.value,
            settled_at,
            settlement_metadata(resolution, outcome),
        )
        if not written:
            logger.info("Wager %s was settled concurrently; skipping", wager.key)
            report.skip("already_settled")
            return 0
        logger.debug("Settled wager %s => %s (score %s)", wager.key, outcome.result.value, outcome.score)
        return 1

    def run(
        self,
        event_id: str | None = None,
        *,
        tolerance_minutes: float | None = None,
        max_events: int | None = None,
        now: dt.datetime | None = None,
    ) -> PassReport:
        report = PassReport("settle")
        event_ids: List[str] = [event_id] if event_id is not None else self.store.unsettled_event_ids()
        if max_events is not None:
            event_ids = event_ids[: max(1, max_events)]
        for current in event_ids:
            self.settle_event(current, report, tolerance_minutes=tolerance_minutes, now=now)
        logger.info(
            "Settlement pass: %d wagers considered, %d settled, %d flagged, %d skipped",
            report.processed,
            report.written,
            report.ambiguous,
            report.skipped_total,
        )
        return report


__all__ = [
    "PUSH_EPSILON",
    "SettlementEngine",
    "SettlementOutcome",
    "scope_score",
    "settle",
    "settlement_metadata",
]

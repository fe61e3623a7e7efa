"""Raw match normalisation and content-addressed deduplication.

Every scored match found in the raw feed documents becomes one
:class:`~esbev.models.NormalizedMatch`.  Records are keyed by the tuple
``(date, mode, home nick, away nick, goals home, goals away)`` and the same
tuple seen in several raw documents collapses into one record whose
``provenance_refs`` lists every contributing document.  Running the
normaliser twice over the same or overlapping input therefore yields the same
canonical set.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping

from .errors import MissingDataError, PassReport
from .extractors import (
    extract_first_half_pair,
    extract_kickoff,
    extract_matches,
    extract_mode,
    extract_nickname,
    extract_score_pair,
)
from .feeds import RawBatch
from .models import NormalizedMatch
from .utils import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TAG = "esportsbattle"

_PARENTHESISED = re.compile(r"\(([^)]+)\)")


def nickname_from_display_name(name: str | None) -> str:
    """Return the player nickname embedded in a sportsbook display name.

    ``"Czechia (Kodak)"`` becomes ``"Kodak"``; names without parentheses are
    returned trimmed.
    """

    if not name:
        return ""
    found = _PARENTHESISED.search(name)
    if found and found.group(1).strip():
        return found.group(1).strip()
    return name.strip()


def normalize_mode(mode: str | None) -> str:
    if not mode:
        return "unknown"
    lowered = str(mode).strip().lower()
    if "2x4" in lowered:
        return "2x4"
    if "2x6" in lowered:
        return "2x6"
    return lowered or "unknown"


def _date_component(kickoff: Any) -> tuple[Any, str]:
    parsed = parse_timestamp(kickoff)
    if parsed is not None:
        return parsed, parsed.isoformat()
    if kickoff is None:
        return None, "n/a"
    return None, str(kickoff)


def match_identity(
    date_key: str,
    mode: str,
    home_nick: str,
    away_nick: str,
    goals_home: int,
    goals_away: int,
) -> str:
    """Deterministic SHA-1 of the deduplication tuple."""

    key = f"{date_key}|{mode}|{home_nick}|{away_nick}|{goals_home}|{goals_away}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


class MatchNormalizer:
    """Turn raw feed documents into deduplicated canonical matches."""

    def __init__(self, source_tag: str = DEFAULT_SOURCE_TAG) -> None:
        self.source_tag = source_tag

    def normalize_record(self, record: Mapping[str, Any], ref: str) -> NormalizedMatch:
        """Normalise one raw match record.

        Raises :class:`MissingDataError` when a nickname or the final score
        cannot be extracted.  An unparsable kickoff is not an error; the match
        is emitted with ``date=None``.
        """

        home_nick = extract_nickname(record, "home")
        if home_nick is None:
            raise MissingDataError("home_nick", ref)
        away_nick = extract_nickname(record, "away")
        if away_nick is None:
            raise MissingDataError("away_nick", ref)
        score = extract_score_pair(record)
        if score is None:
            raise MissingDataError("score", ref)

        raw_kickoff = extract_kickoff(record)
        date, date_key = _date_component(raw_kickoff)
        if date is None and raw_kickoff is not None:
            logger.debug(
                "Unparsable kickoff %r for %s vs %s in %s", raw_kickoff, home_nick, away_nick, ref
            )
        mode = extract_mode(record)
        first_half = extract_first_half_pair(record)

        goals_home, goals_away = score
        return NormalizedMatch(
            match_identity=match_identity(date_key, mode, home_nick, away_nick, goals_home, goals_away),
            source_tag=self.source_tag,
            date=date,
            raw_date=None if raw_kickoff is None else str(raw_kickoff),
            mode=mode,
            home_nick=home_nick,
            away_nick=away_nick,
            goals_home=goals_home,
            goals_away=goals_away,
            first_half_home=first_half[0] if first_half else None,
            first_half_away=first_half[1] if first_half else None,
            provenance_refs=(ref,),
        )

    def normalize(
        self, batches: Iterable[RawBatch], report: PassReport | None = None
    ) -> List[NormalizedMatch]:
        """Normalise and deduplicate every match in ``batches``.

        Output order is the order in which each identity was first seen.
        """

        report = report if report is not None else PassReport("normalize")
        merged: Dict[str, NormalizedMatch] = {}
        for batch in batches:
            records = extract_matches(batch.payload)
            if records is None:
                logger.warning("Raw document %s has no matches array; skipping", batch.ref)
                report.skip("no_matches_array")
                continue
            for index, record in enumerate(records):
                report.processed += 1
                try:
                    match = self.normalize_record(record, batch.ref)
                except MissingDataError as err:
                    level = logging.DEBUG if err.field == "score" else logging.WARNING
                    logger.log(level, "Skipping record %s#%d: %s", batch.ref, index, err)
                    report.skip(f"missing_{err.field}")
                    continue
                existing = merged.get(match.match_identity)
                merged[match.match_identity] = (
                    match if existing is None else _merge(existing, match)
                )
        report.written = len(merged)
        logger.info(
            "Normalised %d records into %d matches (%d skipped)",
            report.processed,
            report.written,
            report.skipped_total,
        )
        return list(merged.values())


def _merge(existing: NormalizedMatch, duplicate: NormalizedMatch) -> NormalizedMatch:
    refs = list(existing.provenance_refs)
    refs.extend(ref for ref in duplicate.provenance_refs if ref not in refs)
    first_half_home = existing.first_half_home
    first_half_away = existing.first_half_away
    if first_half_home is None or first_half_away is None:
        first_half_home = duplicate.first_half_home
        first_half_away = duplicate.first_half_away
    return NormalizedMatch(
        match_identity=existing.match_identity,
        source_tag=existing.source_tag,
        date=existing.date,
        raw_date=existing.raw_date,
        mode=existing.mode,
        home_nick=existing.home_nick,
        away_nick=existing.away_nick,
        goals_home=existing.goals_home,
        goals_away=existing.goals_away,
        first_half_home=first_half_home,
        first_half_away=first_half_away,
        provenance_refs=tuple(refs),
        corrected=existing.corrected,
    )


__all__ = [
    "DEFAULT_SOURCE_TAG",
    "MatchNormalizer",
    "match_identity",
    "nickname_from_display_name",
    "normalize_mode",
]

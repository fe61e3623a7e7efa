"""Sportsbook fixture listings and total-goals bet offers."""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
import re
from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from .errors import MalformedInputError, PassReport
from .models import OddsMarket
from .normalization import nickname_from_display_name
from .utils import coerce_float, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_CRITERIA: Tuple[str, ...] = ("Total Goals", "Totala mål")
DEFAULT_OFFER_TYPES: Tuple[str, ...] = ("Over/Under", "Över/Under")

_FIRST_HALF_MARKERS = ("1st half", "first half", "halvlek")
_HOME_MARKERS = ("home", "hemmalag")
_AWAY_MARKERS = ("away", "bortalag")


@dataclasses.dataclass(frozen=True, slots=True)
class Fixture:
    """Upcoming sportsbook event."""

    event_id: str
    name: str
    home_name: str
    away_name: str
    start: dt.datetime | None
    group: str = ""
    term_keys: Tuple[str, ...] = ()

    @property
    def home_nick(self) -> str:
        return nickname_from_display_name(self.home_name)

    @property
    def away_nick(self) -> str:
        return nickname_from_display_name(self.away_name)

    @property
    def event_name(self) -> str:
        return self.name or f"{self.home_name} - {self.away_name}"


def _fixture_from_event(event: Mapping[str, Any]) -> Fixture | None:
    event_id = event.get("id")
    home = event.get("homeName")
    away = event.get("awayName")
    if event_id is None or not home or not away:
        return None
    path = event.get("path") or []
    term_keys = tuple(
        str(entry.get("termKey"))
        for entry in path
        if isinstance(entry, Mapping) and entry.get("termKey")
    )
    return Fixture(
        event_id=str(event_id),
        name=str(event.get("name") or event.get("englishName") or ""),
        home_name=str(home),
        away_name=str(away),
        start=parse_timestamp(event.get("start")),
        group=str(event.get("group") or event.get("groupName") or ""),
        term_keys=term_keys,
    )


def parse_fixtures(payload: Any) -> List[Fixture]:
    """Parse ``{"events": [{"event": {...}}, ...]}`` or a bare list of entries."""

    if isinstance(payload, Mapping):
        entries = payload.get("events") or payload.get("matches") or []
    elif isinstance(payload, list):
        entries = payload
    else:
        return []
    fixtures: List[Fixture] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        event = entry.get("event", entry)
        if not isinstance(event, Mapping):
            continue
        fixture = _fixture_from_event(event)
        if fixture is None:
            logger.debug("Skipping fixture without id or participants: %s", event.get("id"))
            continue
        fixtures.append(fixture)
    return fixtures


def filter_fixtures(
    fixtures: Iterable[Fixture],
    term_key: str | None = None,
    allowed_groups: Sequence[str] | None = None,
) -> List[Fixture]:
    """Keep fixtures under ``term_key`` whose group starts with an allowed prefix."""

    prefixes = [group.lower() for group in allowed_groups or ()]
    kept: List[Fixture] = []
    for fixture in fixtures:
        if term_key and term_key not in fixture.term_keys:
            continue
        if prefixes and not any(fixture.group.lower().startswith(prefix) for prefix in prefixes):
            continue
        kept.append(fixture)
    return kept


def upcoming_fixtures(
    fixtures: Iterable[Fixture], now: dt.datetime, window_minutes: float
) -> List[Fixture]:
    """Fixtures starting after ``now`` and no later than ``now + window``."""

    window_end = now + dt.timedelta(minutes=window_minutes)
    return [
        fixture
        for fixture in fixtures
        if fixture.start is not None and now < fixture.start <= window_end
    ]


def _label_matches(label: str, accepted: Sequence[str]) -> bool:
    lowered = label.strip().lower()
    for candidate in accepted:
        wanted = candidate.strip().lower()
        if lowered == wanted or lowered.startswith(wanted + " "):
            return True
    return False


def criterion_label(offer: Mapping[str, Any]) -> str:
    criterion = offer.get("criterion") or {}
    if not isinstance(criterion, Mapping):
        return ""
    return str(criterion.get("englishLabel") or criterion.get("label") or "")


def is_total_goals_market(
    offer: Mapping[str, Any],
    criteria: Sequence[str] = DEFAULT_CRITERIA,
    offer_types: Sequence[str] = DEFAULT_OFFER_TYPES,
) -> bool:
    criterion = offer.get("criterion") or {}
    offer_type = offer.get("betOfferType") or {}
    if not isinstance(criterion, Mapping) or not isinstance(offer_type, Mapping):
        return False
    labels = [str(value) for value in (criterion.get("englishLabel"), criterion.get("label")) if value]
    types = [str(value) for value in (offer_type.get("englishName"), offer_type.get("name")) if value]
    return any(_label_matches(label, criteria) for label in labels) and any(
        _label_matches(name, offer_types) for name in types
    )


def infer_scope(label: str, home_name: str = "", away_name: str = "") -> str:
    """Infer the market scope from its criterion label."""

    lowered = label.lower()
    if any(marker in lowered for marker in _FIRST_HALF_MARKERS):
        return "firstHalf"
    home_nick = nickname_from_display_name(home_name).lower()
    away_nick = nickname_from_display_name(away_name).lower()
    if home_nick and re.search(rf"\b{re.escape(home_nick)}\b", lowered):
        return "home"
    if away_nick and re.search(rf"\b{re.escape(away_nick)}\b", lowered):
        return "away"
    words = set(lowered.replace("(", " ").replace(")", " ").replace("-", " ").split())
    if words.intersection(_HOME_MARKERS):
        return "home"
    if words.intersection(_AWAY_MARKERS):
        return "away"
    return "total"


def _thousandths(outcome: Mapping[str, Any], field: str, context: str) -> float:
    value = coerce_float(outcome.get(field))
    if value is None:
        raise MalformedInputError(field, outcome.get(field), context)
    return value / 1000.0


def bet_offers(payload: Any) -> List[Mapping[str, Any]]:
    if not isinstance(payload, Mapping):
        return []
    offers = payload.get("betOffers")
    if offers is None and isinstance(payload.get("odds"), Mapping):
        offers = payload["odds"].get("betOffers")
    if not isinstance(offers, list):
        return []
    return [offer for offer in offers if isinstance(offer, Mapping)]


def parse_bet_offers(
    event_id: str,
    payload: Any,
    *,
    home_name: str = "",
    away_name: str = "",
    criteria: Sequence[str] = DEFAULT_CRITERIA,
    offer_types: Sequence[str] = DEFAULT_OFFER_TYPES,
    report: PassReport | None = None,
) -> List[OddsMarket]:
    """Extract total-goals over/under lines from an event's bet offers.

    Lines and odds are posted in thousandths.  Offers for other markets are
    ignored silently; recognised offers with missing or non-numeric values
    are skipped and counted on ``report``.
    """

    markets: List[OddsMarket] = []
    for offer in bet_offers(payload):
        if not is_total_goals_market(offer, criteria, offer_types):
            continue
        outcomes = [item for item in offer.get("outcomes") or [] if isinstance(item, Mapping)]
        over = next((item for item in outcomes if item.get("type") == "OT_OVER"), None)
        under = next((item for item in outcomes if item.get("type") == "OT_UNDER"), None)
        context = f"event {event_id} offer {offer.get('id')}"
        if over is None or under is None:
            logger.warning("Missing over or under outcome for %s", context)
            if report is not None:
                report.skip("missing_outcome")
            continue
        try:
            line = _thousandths(over, "line", context)
            over_odds = _thousandths(over, "odds", context)
            under_odds = _thousandths(under, "odds", context)
        except MalformedInputError as err:
            logger.warning("Skipping offer: %s", err)
            if report is not None:
                report.skip(f"malformed_{err.field}")
            continue
        label = criterion_label(offer)
        markets.append(
            OddsMarket(
                event_id=str(event_id),
                label=label,
                line=line,
                over_odds=over_odds,
                under_odds=under_odds,
                scope=infer_scope(label, home_name, away_name),
            )
        )
    return markets


__all__ = [
    "DEFAULT_CRITERIA",
    "DEFAULT_OFFER_TYPES",
    "Fixture",
    "bet_offers",
    "criterion_label",
    "filter_fixtures",
    "infer_scope",
    "is_total_goals_market",
    "parse_bet_offers",
    "parse_fixtures",
    "upcoming_fixtures",
]

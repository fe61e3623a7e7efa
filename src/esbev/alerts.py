"""Play selection and chat notifications for positive-EV lines."""
from __future__ import annotations

import dataclasses
import json
import logging
import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol

from .configuration import AlertsConfig, UnitRuleConfig
from .models import EvResult
from .utils import fair_decimal_odds, format_local_datetime

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
EXTRA_PLAY_MIN_ODDS = 5.0
EXTRA_PLAY_MIN_EV = 1.0


class AlertSink(Protocol):
    """Protocol describing a sink that can emit alert messages."""

    def send(self, subject: str, body: str, *, metadata: Mapping[str, Any] | None = None) -> None:
        """Send a formatted alert message."""


def _default_telegram_transport(url: str, payload: bytes) -> None:
    from urllib import request

    req = request.Request(url, data=payload, headers={"Content-Type": "application/json"})
    with request.urlopen(req, timeout=10) as response:  # pragma: no branch - tiny wrapper
        response.read()


@dataclasses.dataclass(slots=True)
class TelegramAlertSink:
    """Post alerts to a Telegram chat through the Bot API."""

    token: str
    chat_id: str
    parse_mode: str = "Markdown"
    transport: Callable[[str, bytes], None] = _default_telegram_transport

    def send(
        self, subject: str, body: str, *, metadata: Mapping[str, Any] | None = None
    ) -> None:
        text = f"{subject}\n{body}" if subject else body
        payload = {"chat_id": self.chat_id, "text": text, "parse_mode": self.parse_mode}
        try:
            self.transport(
                TELEGRAM_API_URL.format(token=self.token), json.dumps(payload).encode("utf-8")
            )
        except Exception:  # pragma: no cover - logging side effect
            logger.exception("Failed to send Telegram alert")


@dataclasses.dataclass(frozen=True, slots=True)
class UnitRule:
    """Stake size for plays whose odds and EV fall inside the bounds."""

    unit: float
    min_odds: float = -math.inf
    max_odds: float = math.inf
    min_ev: float = 0.0
    max_ev: float = math.inf

    @classmethod
    def from_config(cls, config: UnitRuleConfig) -> UnitRule:
        return cls(
            unit=config.unit,
            min_odds=-math.inf if config.min_odds is None else config.min_odds,
            max_odds=math.inf if config.max_odds is None else config.max_odds,
            min_ev=0.0 if config.min_ev is None else config.min_ev,
            max_ev=math.inf if config.max_ev is None else config.max_ev,
        )

    def matches(self, odds: float, ev: float) -> bool:
        return self.min_odds <= odds <= self.max_odds and self.min_ev <= ev <= self.max_ev


def pick_unit(odds: float, ev: float, rules: Sequence[UnitRule]) -> float | None:
    """Unit of the first matching rule, or ``None``."""

    if not (math.isfinite(odds) and math.isfinite(ev)):
        return None
    for rule in rules:
        if rule.matches(odds, ev):
            return rule.unit
    return None


def format_unit(unit: float | None) -> str:
    if unit is None or not math.isfinite(unit):
        return ""
    if float(unit).is_integer():
        return f"{int(unit)}u"
    return f"{unit:.2f}".rstrip("0").rstrip(".") + "u"


@dataclasses.dataclass(frozen=True, slots=True)
class Play:
    """One selection chosen for notification."""

    selection: str
    line: float
    scope: str
    scope_label: str
    odds: float
    probability: float
    ev: float
    unit: float

    @property
    def label(self) -> str:
        arrow = "⬆️" if self.selection == "over" else "⬇️"
        return f"{arrow} {self.selection.capitalize()} {self.line:g}"

    @property
    def fair_odds(self) -> float | None:
        return fair_decimal_odds(self.probability)


def _plays_for(result: EvResult, rules: Sequence[UnitRule], threshold: float) -> list[Play]:
    plays: list[Play] = []
    sides = (
        ("over", result.over_odds, result.prob_over, result.ev_over),
        ("under", result.under_odds, result.prob_under, result.ev_under),
    )
    for selection, odds, probability, ev in sides:
        if ev <= threshold:
            continue
        unit = pick_unit(odds, ev, rules)
        if unit is None:
            continue
        plays.append(
            Play(
                selection=selection,
                line=result.line,
                scope=result.scope or "total",
                scope_label=result.label,
                odds=odds,
                probability=probability,
                ev=ev,
                unit=unit,
            )
        )
    return plays


def select_plays(
    results: Iterable[EvResult],
    *,
    scope_whitelist: Iterable[str] = ("total",),
    max_lines: int = 5,
    max_plays: int = 3,
    unit_rules: Sequence[UnitRule] = (),
    threshold: float = 0.0,
) -> list[Play]:
    """Choose which plays of one event to announce.

    Results are filtered by scope, ranked by their better side's EV (ties by
    lower line) and cut to ``max_lines``.  Each side needs a matching unit
    rule.  Plays are deduplicated per selection, scope and line keeping the
    best EV; the top ``max_plays`` are kept along with any long-shot plays
    above both the extra odds and EV bars.
    """

    allowed = {scope.lower() for scope in scope_whitelist}
    ranked = sorted(
        (result for result in results if (result.scope or "total").lower() in allowed),
        key=lambda result: (-result.best_ev, result.line),
    )[:max_lines]

    best: dict[tuple[str, str, float], Play] = {}
    for result in ranked:
        for play in _plays_for(result, unit_rules, threshold):
            key = (play.selection, play.scope, play.line)
            existing = best.get(key)
            if existing is None or play.ev > existing.ev:
                best[key] = play
    prioritized = sorted(best.values(), key=lambda play: -play.ev)
    extras = [
        play
        for play in prioritized[max_plays:]
        if play.odds > EXTRA_PLAY_MIN_ODDS and play.ev > EXTRA_PLAY_MIN_EV
    ]
    return prioritized[:max_plays] + extras


def format_match_message(plays: Sequence[Play], home_name: str, away_name: str, kickoff: Any) -> str:
    """Chat message listing ``plays`` for one fixture."""

    when = format_local_datetime(kickoff) if kickoff is not None else "TBD"
    header = f"⏰  {when}\n\n⚽️  {home_name} vs {away_name}\n\n"
    sections = []
    for play in plays:
        lines = [play.label, f"🏷️  {play.scope_label}", f"🎲  Odds: {play.odds:g}"]
        unit = format_unit(play.unit)
        if unit:
            lines.append(f"💰  Unit: {unit}")
        sections.append("\n".join(lines))
    return header + "\n\n".join(sections)


@dataclasses.dataclass(slots=True)
class AlertManager:
    """Dispatch alert notifications to configured sinks."""

    sinks: Sequence[AlertSink]

    def send(
        self, subject: str, body: str, *, metadata: Mapping[str, Any] | None = None
    ) -> None:
        for sink in self.sinks:
            try:
                sink.send(subject, body, metadata=metadata)
            except Exception:  # pragma: no cover - sink specific
                logger.exception("Alert sink %s raised", sink)

    def notify_plays(
        self,
        plays: Sequence[Play],
        *,
        event_id: str,
        home_name: str,
        away_name: str,
        kickoff: Any,
    ) -> bool:
        if not plays or not self.sinks:
            return False
        body = format_match_message(plays, home_name, away_name, kickoff)
        metadata = {"event_id": event_id, "count": len(plays)}
        self.send("", body, metadata=metadata)
        return True


def build_alert_manager(
    config: AlertsConfig,
    *,
    telegram_token: str | None = None,
    telegram_chat_id: str | None = None,
) -> AlertManager | None:
    """Return an alert manager for the configured chat, or ``None`` when disabled."""

    if not config.enabled:
        return None
    sinks: list[AlertSink] = []
    if telegram_token and telegram_chat_id:
        sinks.append(TelegramAlertSink(telegram_token, telegram_chat_id))
    else:
        logger.warning("Alerts enabled but Telegram token or chat id is missing")
    return AlertManager(sinks=sinks)


__all__ = [
    "AlertManager",
    "AlertSink",
    "Play",
    "TelegramAlertSink",
    "UnitRule",
    "build_alert_manager",
    "format_match_message",
    "format_unit",
    "pick_unit",
    "select_plays",
]

"""Batch passes wiring the pipeline stages to a store."""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any, Iterable, List, Mapping, Sequence

from .alerts import AlertManager, UnitRule, select_plays
from .configuration import (
    PipelineConfig,
    create_formula_registry,
    validate_pipeline_config,
)
from .errors import PassReport
from .ev import EvModel
from .feeds import RawBatch
from .markets import Fixture, filter_fixtures, parse_bet_offers, parse_fixtures, upcoming_fixtures
from .models import EvResult, FixtureSnapshot, Wager
from .normalization import MatchNormalizer, normalize_mode
from .resolver import MatchResolver
from .settlement import SettlementEngine
from .stats import StatsAggregator, lookup_player, stats_index
from .storage import PipelineStore
from .utils import fair_decimal_odds, utcnow

logger = logging.getLogger(__name__)


def wagers_for_result(
    result: EvResult,
    fixture: Fixture,
    *,
    snapshot_time: dt.datetime | None = None,
    created_at: dt.datetime | None = None,
) -> List[Wager]:
    """The over and under wager rows for one evaluated line."""

    common: dict[str, Any] = dict(
        event_id=result.event_id,
        formula=result.formula,
        line=result.line,
        scope=result.scope,
        home_name=fixture.home_name,
        away_name=fixture.away_name,
        event_name=fixture.event_name,
        kickoff=fixture.start,
        criterion_label=result.label,
        expected_goals=result.expected_goals.to_dict(),
        snapshot_time=snapshot_time,
        created_at=created_at,
    )
    return [
        Wager(
            selection="over",
            offered_odds=result.over_odds,
            probability=result.prob_over,
            ev=result.ev_over,
            fair_odds=fair_decimal_odds(result.prob_over),
            **common,
        ),
        Wager(
            selection="under",
            offered_odds=result.under_odds,
            probability=result.prob_under,
            ev=result.ev_under,
            fair_odds=fair_decimal_odds(result.prob_under),
            **common,
        ),
    ]


def _fixture_mode(fixture: Fixture) -> str | None:
    mode = normalize_mode(fixture.group)
    return mode if mode in ("2x4", "2x6") else None


class Pipeline:
    """Run the normalise, aggregate, EV and settle passes against one store.

    The configuration is validated on construction so a broken setup fails
    before any pass touches data.
    """

    def __init__(
        self,
        store: PipelineStore,
        config: PipelineConfig | None = None,
        *,
        alert_manager: AlertManager | None = None,
    ) -> None:
        self.store = store
        self.config = config or PipelineConfig()
        for warning in validate_pipeline_config(self.config):
            logger.warning("Configuration warning: %s", warning)
        self.formulas = create_formula_registry(self.config)
        self.normalizer = MatchNormalizer(self.config.source_tag)
        self.aggregator = StatsAggregator(self.config.stats.window_sizes, self.formulas)
        self.ev_model = EvModel(self.formulas)
        self.resolver = MatchResolver(self.config.settlement.tolerance_minutes)
        self.settlement = SettlementEngine(
            store,
            self.resolver,
            accept_out_of_tolerance=self.config.settlement.accept_out_of_tolerance,
        )
        self.alert_manager = alert_manager
        self.unit_rules = [UnitRule.from_config(rule) for rule in self.config.alerts.unit_rules]

    # Normalise / aggregate ----------------------------------------------

    def normalize_pass(self, batches: Iterable[RawBatch]) -> PassReport:
        report = PassReport("normalize")
        matches = self.normalizer.normalize(batches, report)
        self.store.upsert_matches(matches)
        return report

    def aggregate_pass(self, now: dt.datetime | None = None) -> PassReport:
        report = PassReport("aggregate")
        matches = self.store.load_matches()
        if not matches:
            logger.warning("No canonical matches stored; run the normalise pass first")
            report.skip("no_matches")
        stats = self.aggregator.aggregate(matches, report, now=now)
        self.store.replace_player_stats(stats)
        return report

    # Snapshots -----------------------------------------------------------

    def record_fixtures(
        self, payload: Mapping[str, Any], created_at: dt.datetime | None = None
    ) -> FixtureSnapshot:
        snapshot = FixtureSnapshot(
            snapshot_id=uuid.uuid4().hex,
            created_at=created_at or utcnow(),
            payload=payload,
        )
        self.store.save_fixture_snapshot(snapshot)
        return snapshot

    def record_odds(
        self, event_id: str, payload: Mapping[str, Any], observed_at: dt.datetime | None = None
    ) -> None:
        self.store.save_odds_snapshot(event_id, payload, observed_at or utcnow())

    # EV ------------------------------------------------------------------

    def ev_pass(self, now: dt.datetime | None = None) -> PassReport:
        """Evaluate every fixture of the latest snapshot starting soon."""

        report = PassReport("ev")
        now = now or utcnow()
        snapshot = self.store.latest_fixture_snapshot()
        if snapshot is None:
            logger.info("No fixture snapshot stored")
            report.skip("no_snapshot")
            return report
        markets_cfg = self.config.markets
        fixtures = filter_fixtures(
            parse_fixtures(snapshot.payload), markets_cfg.term_key, markets_cfg.allowed_groups
        )
        upcoming = upcoming_fixtures(fixtures, now, self.config.ev.upcoming_window_minutes)
        logger.info(
            "%d of %d fixtures start within %.0f minutes",
            len(upcoming),
            len(fixtures),
            self.config.ev.upcoming_window_minutes,
        )
        index = stats_index(self.store.load_player_stats())
        for fixture in upcoming:
            report.processed += 1
            self._evaluate_fixture(fixture, index, snapshot, now, report)
        logger.info(
            "EV pass: %d fixtures, %d wagers written, %d skipped",
            report.processed,
            report.written,
            report.skipped_total,
        )
        return report

    def _evaluate_fixture(
        self,
        fixture: Fixture,
        index: Mapping[Any, Any],
        snapshot: FixtureSnapshot,
        now: dt.datetime,
        report: PassReport,
    ) -> None:
        odds = self.store.latest_odds_snapshot(fixture.event_id)
        if odds is None:
            logger.warning("No odds for event %s (%s)", fixture.event_id, fixture.event_name)
            report.skip("missing_odds")
            return
        markets = parse_bet_offers(
            fixture.event_id,
            odds,
            home_name=fixture.home_name,
            away_name=fixture.away_name,
            criteria=self.config.markets.criteria,
            offer_types=self.config.markets.offer_types,
            report=report,
        )
        if not markets:
            logger.info("No total-goals markets for event %s", fixture.event_id)
            report.skip("no_markets")
            return
        mode = _fixture_mode(fixture)
        home = lookup_player(index, fixture.home_nick, mode)
        away = lookup_player(index, fixture.away_nick, mode)
        if home is None or away is None:
            logger.warning(
                "Player statistics missing for event %s (%s vs %s)",
                fixture.event_id,
                fixture.home_nick,
                fixture.away_nick,
            )
            report.skip("missing_player_stats")
            return
        results = self.ev_model.evaluate(markets, home, away)
        if not results:
            report.skip("no_formula_results")
            return
        wagers: List[Wager] = []
        for result in results:
            wagers.extend(
                wagers_for_result(result, fixture, snapshot_time=snapshot.created_at, created_at=now)
            )
        report.written += self.store.upsert_wagers(wagers)
        notify_formula = self.config.ev.notify_formula
        self._notify(fixture, [result for result in results if result.formula == notify_formula])

    def _notify(self, fixture: Fixture, results: Sequence[EvResult]) -> None:
        if self.alert_manager is None or not results:
            return
        alerts = self.config.alerts
        plays = select_plays(
            results,
            scope_whitelist=alerts.scope_whitelist,
            max_lines=alerts.max_lines,
            max_plays=alerts.max_plays,
            unit_rules=self.unit_rules,
            threshold=self.config.ev.threshold,
        )
        if not plays:
            logger.info("No plays to announce for %s", fixture.event_name)
            return
        self.alert_manager.notify_plays(
            plays,
            event_id=fixture.event_id,
            home_name=fixture.home_name,
            away_name=fixture.away_name,
            kickoff=fixture.start,
        )

    # Settlement ----------------------------------------------------------

    def settle_pass(
        self,
        event_id: str | None = None,
        *,
        tolerance_minutes: float | None = None,
        now: dt.datetime | None = None,
    ) -> PassReport:
        return self.settlement.run(
            event_id,
            tolerance_minutes=tolerance_minutes,
            max_events=self.config.settlement.max_events,
            now=now,
        )


__all__ = ["Pipeline", "wagers_for_result"]

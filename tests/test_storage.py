from __future__ import annotations

import dataclasses
import datetime as dt

from esbev.models import FixtureSnapshot, Wager
from esbev.stats import StatsAggregator
from esbev.storage import SQLiteStore

from tests.conftest import build_match

KICKOFF = dt.datetime(2024, 9, 1, 10, tzinfo=dt.timezone.utc)


def _wager(**overrides) -> Wager:
    values = dict(
        event_id="ev1",
        formula="raz_optimal",
        line=4.5,
        scope="total",
        selection="over",
        offered_odds=1.9,
        probability=0.6,
        ev=0.14,
        home_name="A (Kodak)",
        away_name="B (Boss)",
        kickoff=KICKOFF,
        fair_odds=1 / 0.6,
        expected_goals={"total": 5.1},
    )
    values.update(overrides)
    return Wager(**values)


def test_match_upsert_preserves_corrected_flag(store: SQLiteStore) -> None:
    match = build_match("Kodak", "Boss", 3, 1, date=KICKOFF)
    store.upsert_matches([match])
    assert store.mark_match_corrected(match.match_identity, KICKOFF)

    store.upsert_matches([dataclasses.replace(match, provenance_refs=("a.json", "b.json"))])
    stored = store.load_matches()
    assert len(stored) == 1
    assert stored[0].corrected
    assert stored[0].provenance_refs == ("fixture.json", "a.json", "b.json")
    assert store.load_matches(include_corrected=False) == []


def test_match_roundtrip_and_player_lookup(store: SQLiteStore) -> None:
    first = build_match("Kodak", "Boss", 3, 1, date=KICKOFF, first_half=(2, 0))
    second = build_match("boss", "KODAK", 0, 0, date=KICKOFF + dt.timedelta(minutes=20))
    other = build_match("Kodak", "Lion", 1, 1, date=KICKOFF)
    store.upsert_matches([first, second, other])

    assert store.load_matches()[0] == first
    found = store.find_matches_for_players("KODAK", "boss")
    assert [match.match_identity for match in found] == [first.match_identity, second.match_identity]


def test_first_half_is_filled_but_never_cleared(store: SQLiteStore) -> None:
    with_half = build_match("Kodak", "Boss", 3, 1, date=KICKOFF, first_half=(2, 0))
    store.upsert_matches([with_half])
    store.upsert_matches([dataclasses.replace(with_half, first_half_home=None, first_half_away=None)])
    stored = store.load_matches()[0]
    assert (stored.first_half_home, stored.first_half_away) == (2, 0)


def test_player_stats_are_replaced(store: SQLiteStore) -> None:
    matches = [build_match("Kodak", "Boss", 3, 1, date=KICKOFF)]
    stats = StatsAggregator().aggregate(matches, now=KICKOFF)
    assert store.replace_player_stats(stats) == 2
    loaded = store.load_player_stats()
    assert [entry.player_nick for entry in loaded] == ["Boss", "Kodak"]
    kodak = loaded[1]
    assert kodak.window("last8").avg_goals_for == 3.0
    assert kodak.formula("raz_optimal").windows_used == ("last20", "last50")
    assert kodak.updated_at == KICKOFF

    store.replace_player_stats(stats[:1])
    assert len(store.load_player_stats()) == 1


def test_wager_upsert_refreshes_unsettled_rows_only(store: SQLiteStore) -> None:
    assert store.upsert_wagers([_wager(), _wager(selection="under", offered_odds=1.8)]) == 2
    assert store.upsert_wagers([_wager(offered_odds=2.0)]) == 1
    rows = store.load_wagers()
    assert len(rows) == 2
    assert rows[0].offered_odds == 2.0
    assert rows[0].expected_goals == {"total": 5.1}
    assert rows[0].kickoff == KICKOFF

    assert store.settle_wager(rows[0].wager_id, "win", KICKOFF, {"scope_score": 5})
    assert store.upsert_wagers([_wager(offered_odds=3.0)]) == 0
    settled = store.load_wagers(settled=True)
    assert [(w.offered_odds, w.result) for w in settled] == [(2.0, "win")]
    assert settled[0].settlement == {"scope_score": 5}


def test_line_key_separates_close_lines(store: SQLiteStore) -> None:
    store.upsert_wagers([_wager(line=4.5), _wager(line=4.75), _wager(line=4.5, scope="home")])
    assert len(store.load_wagers()) == 3


def test_unsettled_event_ids_in_creation_order(store: SQLiteStore) -> None:
    store.upsert_wagers([_wager(event_id="b"), _wager(event_id="a"), _wager(event_id="b", line=5.5)])
    assert store.unsettled_event_ids() == ["b", "a"]
    assert [w.event_id for w in store.load_wagers(event_id="a")] == ["a"]


def test_snapshots(store: SQLiteStore) -> None:
    assert store.latest_fixture_snapshot() is None
    older = FixtureSnapshot("s1", KICKOFF, {"events": []})
    newer = FixtureSnapshot("s2", KICKOFF + dt.timedelta(minutes=1), {"events": [{"event": {"id": 1}}]})
    store.save_fixture_snapshot(newer)
    store.save_fixture_snapshot(older)
    latest = store.latest_fixture_snapshot()
    assert latest is not None
    assert latest.snapshot_id == "s2"
    assert latest.created_at == newer.created_at

    assert store.latest_odds_snapshot("1") is None
    store.save_odds_snapshot("1", {"betOffers": []}, KICKOFF)
    store.save_odds_snapshot("1", {"betOffers": [{"id": 9}]}, KICKOFF + dt.timedelta(minutes=1))
    assert store.latest_odds_snapshot("1") == {"betOffers": [{"id": 9}]}


def test_store_reopens_after_close(tmp_path) -> None:
    path = tmp_path / "nested" / "db.sqlite3"
    store = SQLiteStore(path)
    store.upsert_matches([build_match("Kodak", "Boss", 3, 1, date=KICKOFF)])
    store.close()
    with SQLiteStore(path) as reopened:
        assert len(reopened.load_matches()) == 1

"""SQLite persistence for canonical matches, player statistics and wagers."""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Protocol, Sequence

from .models import FixtureSnapshot, NormalizedMatch, PlayerWindowStats, Wager
from .utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStore(Protocol):
    """Persistence operations the pipeline passes rely on."""

    def upsert_matches(self, matches: Iterable[NormalizedMatch]) -> int:
        ...

    def load_matches(self, include_corrected: bool = True) -> List[NormalizedMatch]:
        ...

    def find_matches_for_players(
        self, first_nick: str, second_nick: str, include_corrected: bool = False
    ) -> List[NormalizedMatch]:
        ...

    def mark_match_corrected(self, match_identity: str, corrected_at: dt.datetime | None = None) -> bool:
        ...

    def replace_player_stats(self, stats: Iterable[PlayerWindowStats]) -> int:
        ...

    def load_player_stats(self) -> List[PlayerWindowStats]:
        ...

    def upsert_wagers(self, wagers: Iterable[Wager]) -> int:
        ...

    def load_wagers(self, settled: bool | None = None, event_id: str | None = None) -> List[Wager]:
        ...

    def unsettled_event_ids(self) -> List[str]:
        ...

    def settle_wager(
        self,
        wager_id: int,
        result: str,
        settled_at: dt.datetime,
        settlement: Mapping[str, Any],
    ) -> bool:
        ...

    def save_fixture_snapshot(self, snapshot: FixtureSnapshot) -> None:
        ...

    def latest_fixture_snapshot(self) -> FixtureSnapshot | None:
        ...

    def save_odds_snapshot(self, event_id: str, payload: Mapping[str, Any], observed_at: dt.datetime) -> None:
        ...

    def latest_odds_snapshot(self, event_id: str) -> Mapping[str, Any] | None:
        ...


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> dt.datetime | None:
    return dt.datetime.fromisoformat(value) if value else None


_MATCH_COLUMNS = (
    "match_identity, source_tag, date, raw_date, mode, home_nick, away_nick, "
    "goals_home, goals_away, first_half_home, first_half_away, provenance_refs, corrected"
)

_WAGER_COLUMNS = (
    "wager_id, event_id, formula, selection, line, scope, offered_odds, probability, ev, "
    "fair_odds, home_name, away_name, event_name, kickoff, criterion_label, expected_goals, "
    "snapshot_time, created_at, settled, result, settled_at, settlement"
)


class SQLiteStore:
    """:class:`PipelineStore` backed by a single SQLite file.

    The connection is opened lazily and released with :meth:`close`; the
    store also works as a context manager.
    """

    def __init__(self, storage_path: str | os.PathLike[str] = "esbev.sqlite3") -> None:
        self.storage_path = Path(storage_path)
        if str(storage_path) != ":memory:":
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.storage_path))
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> SQLiteStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _init_db(self) -> None:
        with self.connection as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS matches (
                    match_identity TEXT PRIMARY KEY,
                    source_tag TEXT NOT NULL,
                    date TEXT,
                    raw_date TEXT,
                    mode TEXT NOT NULL,
                    home_nick TEXT NOT NULL,
                    away_nick TEXT NOT NULL,
                    goals_home INTEGER NOT NULL,
                    goals_away INTEGER NOT NULL,
                    first_half_home INTEGER,
                    first_half_away INTEGER,
                    provenance_refs TEXT NOT NULL,
                    corrected INTEGER NOT NULL DEFAULT 0,
                    corrected_at TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS player_stats (
                    player_nick TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    updated_at TEXT,
                    PRIMARY KEY (player_nick, mode)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS wagers (
                    wager_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL,
                    formula TEXT NOT NULL,
                    selection TEXT NOT NULL,
                    line REAL NOT NULL,
                    line_key TEXT NOT NULL,
                    scope TEXT NOT NULL,
                    offered_odds REAL NOT NULL,
                    probability REAL NOT NULL,
                    ev REAL NOT NULL,
                    fair_odds REAL,
                    home_name TEXT,
                    away_name TEXT,
                    event_name TEXT,
                    kickoff TEXT,
                    criterion_label TEXT,
                    expected_goals TEXT,
                    snapshot_time TEXT,
                    created_at TEXT NOT NULL,
                    settled INTEGER NOT NULL DEFAULT 0,
                    result TEXT,
                    settled_at TEXT,
                    settlement TEXT,
                    UNIQUE (event_id, formula, selection, line_key, scope)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS fixture_snapshots (
                    snapshot_id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS odds_snapshots (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL,
                    observed_at TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )

    # Matches -------------------------------------------------------------

    def upsert_matches(self, matches: Iterable[NormalizedMatch]) -> int:
        """Insert or refresh matches keyed by identity.

        The ``corrected`` flag of an existing row is preserved and provenance
        refs accumulate across passes in first-seen order.
        """

        now = utcnow().isoformat()
        count = 0
        with self.connection as conn:
            for match in matches:
                row = (
                    match.match_identity,
                    match.source_tag,
                    _iso(match.date),
                    match.raw_date,
                    match.mode,
                    match.home_nick,
                    match.away_nick,
                    match.goals_home,
                    match.goals_away,
                    match.first_half_home,
                    match.first_half_away,
                    json.dumps(self._merged_refs(conn, match)),
                    int(match.corrected),
                    now,
                )
                conn.execute(
                    """
                    INSERT INTO matches(
                        match_identity,
                        source_tag,
                        date,
                        raw_date,
                        mode,
                        home_nick,
                        away_nick,
                        goals_home,
                        goals_away,
                        first_half_home,
                        first_half_away,
                        provenance_refs,
                        corrected,
                        updated_at
                    ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(match_identity) DO UPDATE SET
                        source_tag=excluded.source_tag,
                        date=excluded.date,
                        raw_date=excluded.raw_date,
                        first_half_home=COALESCE(excluded.first_half_home, matches.first_half_home),
                        first_half_away=COALESCE(excluded.first_half_away, matches.first_half_away),
                        provenance_refs=excluded.provenance_refs,
                        updated_at=excluded.updated_at
                    """,
                    row,
                )
                count += 1
        logger.info("Upserted %d matches", count)
        return count

    @staticmethod
    def _merged_refs(conn: sqlite3.Connection, match: NormalizedMatch) -> List[str]:
        stored = conn.execute(
            "SELECT provenance_refs FROM matches WHERE match_identity = ?",
            (match.match_identity,),
        ).fetchone()
        refs: List[str] = list(json.loads(stored[0] or "[]")) if stored else []
        refs.extend(ref for ref in match.provenance_refs if ref not in refs)
        return refs

    @staticmethod
    def _match_from_row(row: Sequence[Any]) -> NormalizedMatch:
        return NormalizedMatch(
            match_identity=row[0],
            source_tag=row[1],
            date=_parse(row[2]),
            raw_date=row[3],
            mode=row[4],
            home_nick=row[5],
            away_nick=row[6],
            goals_home=int(row[7]),
            goals_away=int(row[8]),
            first_half_home=row[9],
            first_half_away=row[10],
            provenance_refs=tuple(json.loads(row[11] or "[]")),
            corrected=bool(row[12]),
        )

    def load_matches(self, include_corrected: bool = True) -> List[NormalizedMatch]:
        query = f"SELECT {_MATCH_COLUMNS} FROM matches"
        if not include_corrected:
            query += " WHERE corrected = 0"
        query += " ORDER BY rowid"
        rows = self.connection.execute(query).fetchall()
        return [self._match_from_row(row) for row in rows]

    def find_matches_for_players(
        self, first_nick: str, second_nick: str, include_corrected: bool = False
    ) -> List[NormalizedMatch]:
        """Matches between two players in either side order, in insertion order."""

        first = first_nick.strip().lower()
        second = second_nick.strip().lower()
        query = (
            f"SELECT {_MATCH_COLUMNS} FROM matches WHERE "
            "((lower(home_nick) = ? AND lower(away_nick) = ?) "
            "OR (lower(home_nick) = ? AND lower(away_nick) = ?))"
        )
        if not include_corrected:
            query += " AND corrected = 0"
        query += " ORDER BY rowid"
        rows = self.connection.execute(query, (first, second, second, first)).fetchall()
        return [self._match_from_row(row) for row in rows]

    def mark_match_corrected(self, match_identity: str, corrected_at: dt.datetime | None = None) -> bool:
        with self.connection as conn:
            cursor = conn.execute(
                "UPDATE matches SET corrected = 1, corrected_at = ? WHERE match_identity = ?",
                (_iso(corrected_at or utcnow()), match_identity),
            )
        return cursor.rowcount == 1

    # Player statistics ---------------------------------------------------

    def replace_player_stats(self, stats: Iterable[PlayerWindowStats]) -> int:
        """Replace every stored statistic with ``stats`` in one transaction."""

        payload = [
            (
                entry.player_nick,
                entry.mode,
                json.dumps(entry.to_dict(), sort_keys=True),
                _iso(entry.updated_at),
            )
            for entry in stats
        ]
        with self.connection as conn:
            conn.execute("DELETE FROM player_stats")
            conn.executemany(
                "INSERT INTO player_stats(player_nick, mode, payload, updated_at) VALUES(?, ?, ?, ?)",
                payload,
            )
        logger.info("Stored %d player statistics", len(payload))
        return len(payload)

    def load_player_stats(self) -> List[PlayerWindowStats]:
        rows = self.connection.execute(
            "SELECT payload FROM player_stats ORDER BY player_nick, mode"
        ).fetchall()
        return [PlayerWindowStats.from_dict(json.loads(row[0])) for row in rows]

    # Wagers --------------------------------------------------------------

    def upsert_wagers(self, wagers: Iterable[Wager]) -> int:
        """Insert wagers or refresh their prices while they are unsettled.

        Returns the number of rows inserted or updated; settled rows are
        never touched.
        """

        now = utcnow()
        payload = [
            (
                wager.event_id,
                wager.formula,
                wager.selection,
                wager.line,
                f"{wager.line:.4f}",
                wager.scope,
                wager.offered_odds,
                wager.probability,
                wager.ev,
                wager.fair_odds,
                wager.home_name,
                wager.away_name,
                wager.event_name,
                _iso(wager.kickoff),
                wager.criterion_label,
                json.dumps(dict(wager.expected_goals), sort_keys=True),
                _iso(wager.snapshot_time),
                _iso(wager.created_at or now),
            )
            for wager in wagers
        ]
        with self.connection as conn:
            before = conn.total_changes
            conn.executemany(
                """
                INSERT INTO wagers(
                    event_id,
                    formula,
                    selection,
                    line,
                    line_key,
                    scope,
                    offered_odds,
                    probability,
                    ev,
                    fair_odds,
                    home_name,
                    away_name,
                    event_name,
                    kickoff,
                    criterion_label,
                    expected_goals,
                    snapshot_time,
                    created_at
                ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(event_id, formula, selection, line_key, scope) DO UPDATE SET
                    offered_odds=excluded.offered_odds,
                    probability=excluded.probability,
                    ev=excluded.ev,
                    fair_odds=excluded.fair_odds,
                    expected_goals=excluded.expected_goals,
                    snapshot_time=excluded.snapshot_time
                WHERE wagers.settled = 0
                """,
                payload,
            )
            changed = conn.total_changes - before
        logger.info("Upserted %d of %d wagers", changed, len(payload))
        return changed

    @staticmethod
    def _wager_from_row(row: Sequence[Any]) -> Wager:
        return Wager(
            wager_id=int(row[0]),
            event_id=row[1],
            formula=row[2],
            selection=row[3],
            line=float(row[4]),
            scope=row[5],
            offered_odds=float(row[6]),
            probability=float(row[7]),
            ev=float(row[8]),
            fair_odds=float(row[9]) if row[9] is not None else None,
            home_name=row[10] or "",
            away_name=row[11] or "",
            event_name=row[12] or "",
            kickoff=_parse(row[13]),
            criterion_label=row[14] or "",
            expected_goals=json.loads(row[15] or "{}"),
            snapshot_time=_parse(row[16]),
            created_at=_parse(row[17]),
            settled=bool(row[18]),
            result=row[19],
            settled_at=_parse(row[20]),
            settlement=json.loads(row[21] or "{}"),
        )

    def load_wagers(self, settled: bool | None = None, event_id: str | None = None) -> List[Wager]:
        query = f"SELECT {_WAGER_COLUMNS} FROM wagers"
        clauses: List[str] = []
        params: List[object] = []
        if settled is not None:
            clauses.append("settled = ?")
            params.append(int(settled))
        if event_id is not None:
            clauses.append("event_id = ?")
            params.append(event_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY wager_id"
        rows = self.connection.execute(query, tuple(params)).fetchall()
        return [self._wager_from_row(row) for row in rows]

    def unsettled_event_ids(self) -> List[str]:
        rows = self.connection.execute(
            "SELECT event_id FROM wagers WHERE settled = 0 GROUP BY event_id ORDER BY MIN(wager_id)"
        ).fetchall()
        return [row[0] for row in rows]

    def settle_wager(
        self,
        wager_id: int,
        result: str,
        settled_at: dt.datetime,
        settlement: Mapping[str, Any],
    ) -> bool:
        """Transition one wager to settled if it is still unsettled.

        Returns ``False`` when another writer settled it first.
        """

        with self.connection as conn:
            cursor = conn.execute(
                """
                UPDATE wagers
                SET settled = 1, result = ?, settled_at = ?, settlement = ?
                WHERE wager_id = ? AND settled = 0
                """,
                (result, _iso(settled_at), json.dumps(dict(settlement), sort_keys=True), wager_id),
            )
        return cursor.rowcount == 1

    # Snapshots -----------------------------------------------------------

    def save_fixture_snapshot(self, snapshot: FixtureSnapshot) -> None:
        with self.connection as conn:
            conn.execute(
                """
                INSERT INTO fixture_snapshots(snapshot_id, created_at, payload)
                VALUES(?, ?, ?)
                ON CONFLICT(snapshot_id) DO UPDATE SET
                    created_at=excluded.created_at,
                    payload=excluded.payload
                """,
                (snapshot.snapshot_id, _iso(snapshot.created_at), json.dumps(snapshot.payload)),
            )

    def latest_fixture_snapshot(self) -> FixtureSnapshot | None:
        row = self.connection.execute(
            "SELECT snapshot_id, created_at, payload FROM fixture_snapshots "
            "ORDER BY created_at DESC, rowid DESC LIMIT 1"
        ).fetchone()
        if row is None:
            return None
        return FixtureSnapshot(
            snapshot_id=row[0], created_at=dt.datetime.fromisoformat(row[1]), payload=json.loads(row[2])
        )

    def save_odds_snapshot(self, event_id: str, payload: Mapping[str, Any], observed_at: dt.datetime) -> None:
        with self.connection as conn:
            conn.execute(
                "INSERT INTO odds_snapshots(event_id, observed_at, payload) VALUES(?, ?, ?)",
                (str(event_id), _iso(observed_at), json.dumps(payload)),
            )

    def latest_odds_snapshot(self, event_id: str) -> Mapping[str, Any] | None:
        row = self.connection.execute(
            "SELECT payload FROM odds_snapshots WHERE event_id = ? "
            "ORDER BY observed_at DESC, row_id DESC LIMIT 1",
            (str(event_id),),
        ).fetchone()
        return json.loads(row[0]) if row else None


__all__ = ["PipelineStore", "SQLiteStore"]

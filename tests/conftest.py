import datetime as dt
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

import pytest

from esbev.alerts import AlertSink
from esbev.models import NormalizedMatch
from esbev.normalization import match_identity
from esbev.storage import SQLiteStore


class RecordingAlertSink(AlertSink):
    def __init__(self) -> None:
        self.messages: List[Tuple[str, str, Mapping[str, Any] | None]] = []

    def send(
        self,
        subject: str,
        body: str,
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self.messages.append((subject, body, metadata))


def build_match(
    home: str,
    away: str,
    goals_home: int,
    goals_away: int,
    *,
    date: dt.datetime | None,
    mode: str = "2x4",
    first_half: Tuple[int, int] | None = None,
    ref: str = "fixture.json",
) -> NormalizedMatch:
    date_key = date.isoformat() if date is not None else "n/a"
    return NormalizedMatch(
        match_identity=match_identity(date_key, mode, home, away, goals_home, goals_away),
        source_tag="esportsbattle",
        date=date,
        mode=mode,
        home_nick=home,
        away_nick=away,
        goals_home=goals_home,
        goals_away=goals_away,
        first_half_home=first_half[0] if first_half else None,
        first_half_away=first_half[1] if first_half else None,
        provenance_refs=(ref,),
    )


def raw_match(
    home: str,
    away: str,
    goals_home: int | None,
    goals_away: int | None,
    date: str,
    *,
    mode: str = "2x4 min",
) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "date": date,
        "mode": mode,
        "participant1": {"nickname": home},
        "participant2": {"nickname": away},
    }
    if goals_home is not None:
        record["participant1"]["score"] = goals_home
    if goals_away is not None:
        record["participant2"]["score"] = goals_away
    return record


def unibet_event(
    event_id: str,
    home: str,
    away: str,
    start: dt.datetime,
    *,
    group: str = "Esports Battle 2x4",
) -> Dict[str, Any]:
    return {
        "event": {
            "id": event_id,
            "name": f"{home} - {away}",
            "homeName": home,
            "awayName": away,
            "start": start.isoformat(),
            "group": group,
            "path": [{"termKey": "esports_battle"}],
        }
    }


def total_goals_offer(
    offer_id: int,
    line: int,
    over: int,
    under: int,
    *,
    label: str = "Total Goals",
) -> Dict[str, Any]:
    return {
        "id": offer_id,
        "criterion": {"label": label, "englishLabel": label},
        "betOfferType": {"name": "Over/Under", "englishName": "Over/Under"},
        "outcomes": [
            {"type": "OT_OVER", "line": line, "odds": over},
            {"type": "OT_UNDER", "line": line, "odds": under},
        ],
    }


@pytest.fixture()
def now() -> dt.datetime:
    return dt.datetime(2024, 9, 1, 12, tzinfo=dt.timezone.utc)


@pytest.fixture()
def store(tmp_path: Path):
    with SQLiteStore(tmp_path / "esbev.sqlite3") as instance:
        yield instance


@pytest.fixture()
def recording_sink() -> RecordingAlertSink:
    return RecordingAlertSink()

from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

import pytest

from esbev import cli

from tests.conftest import raw_match, total_goals_offer, unibet_event

NOW = dt.datetime(2024, 9, 1, 12, tzinfo=dt.timezone.utc)

CLEAN_CONFIG = """
environment: test
settlement:
  tolerance_minutes: 60
  accept_out_of_tolerance: false
"""


@pytest.fixture()
def config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv("ESBEV_ENV", raising=False)
    monkeypatch.delenv("ESBEV_PIPELINE_CONFIG", raising=False)
    path = tmp_path / "pipeline.yaml"
    path.write_text(CLEAN_CONFIG)
    return path


def _run(capsys: pytest.CaptureFixture[str], *argv: str):
    cli.main(list(argv))
    return json.loads(capsys.readouterr().out)


def _write_json(path: Path, payload) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload))
    return path


def test_validate_config_reports_warnings(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.delenv("ESBEV_ENV", raising=False)
    path = tmp_path / "pipeline.yaml"
    path.write_text("settlement:\n  accept_out_of_tolerance: true\n")

    cli.main(["validate-config", "--config", str(path)])
    out = capsys.readouterr().out
    assert "is valid" in out
    assert "out-of-tolerance" in out

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["validate-config", "--config", str(path), "--warnings-as-errors"])
    assert excinfo.value.code == 2


def test_validate_config_rejects_bad_weights(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.delenv("ESBEV_ENV", raising=False)
    path = tmp_path / "pipeline.yaml"
    path.write_text("stats:\n  formulas:\n    bad:\n      last20: 0.5\n")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["validate-config", "--config", str(path)])
    assert excinfo.value.code == 1
    out = capsys.readouterr().out
    assert out.startswith("Configuration invalid:")
    assert "'bad' weights sum to 0.500000" in out


def test_store_commands_refuse_invalid_config(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("ESBEV_ENV", raising=False)
    path = tmp_path / "pipeline.yaml"
    path.write_text("settlement:\n  tolerance_minutes: -1\n")
    with pytest.raises(SystemExit, match="tolerance_minutes"):
        cli.main(["aggregate", "--config", str(path), "--storage", str(tmp_path / "db.sqlite3")])
    assert not (tmp_path / "db.sqlite3").exists()


def test_full_run_through_the_cli(tmp_path: Path, config_file: Path, capsys) -> None:
    storage = str(tmp_path / "data" / "esbev.sqlite3")
    common = ["--config", str(config_file), "--storage", storage]

    history = []
    for index in range(10):
        kickoff = (NOW - dt.timedelta(hours=index + 1)).isoformat()
        history.append(raw_match("Kodak", f"Opp{index}", 3, 2, kickoff))
        history.append(raw_match(f"Rival{index}", "Boss", 1, 3, kickoff))
    raw_dir = tmp_path / "raw"
    _write_json(raw_dir / "history.json", {"matches": history})
    (raw_dir / "broken.json").write_text("{not json")

    report = _run(capsys, "normalize", str(raw_dir), *common)
    assert report["pass"] == "normalize"
    assert report["written"] == 20

    report = _run(capsys, "aggregate", "--now", NOW.isoformat(), *common)
    assert report["written"] == 22

    start = NOW + dt.timedelta(minutes=5)
    fixtures = _write_json(
        tmp_path / "fixtures.json",
        {"events": [unibet_event("100", "Czechia (Kodak)", "Spain (Boss)", start)]},
    )
    odds_dir = tmp_path / "odds"
    _write_json(odds_dir / "100.json", {"betOffers": [total_goals_offer(1, 5500, 2100, 1700)]})
    (odds_dir / "999.json").write_text("")

    report = _run(
        capsys,
        "ev",
        "--fixtures",
        str(fixtures),
        "--odds",
        str(odds_dir),
        "--now",
        NOW.isoformat(),
        *common,
    )
    assert report["processed"] == 1
    assert report["written"] == 6

    finished = raw_match("Kodak", "Boss", 4, 3, (start + dt.timedelta(minutes=2)).isoformat())
    _write_json(tmp_path / "results" / "final.json", [finished])
    _run(capsys, "normalize", str(tmp_path / "results"), *common)

    report = _run(capsys, "settle", "--now", (NOW + dt.timedelta(hours=1)).isoformat(), *common)
    assert report["processed"] == 6
    assert report["written"] == 6

    summary = _run(capsys, "report", *common)
    assert {row["formula"] for row in summary["by_formula"]} == {
        "raz_optimal",
        "form_agressive",
        "equal_weighted",
    }
    # only the under side carries positive EV at 5.5 and the match ended 4-3
    assert all(row["bets"] == 1 and row["losses"] == 1 for row in summary["by_formula"])

    everything = _run(capsys, "report", "--min-ev", "-1", "--formula", "raz_optimal", *common)
    assert everything["by_formula"][0]["bets"] == 2

    ranges = _run(capsys, "report", "--kind", "odds-ranges", *common)
    counts = {row["range"]: row["count"] for row in ranges}
    assert counts["1.6-1.8"] == 3

    stats = _run(capsys, "report", "--kind", "stats", *common)
    assert {row["player_nick"] for row in stats} >= {"Kodak", "Boss"}

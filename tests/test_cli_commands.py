"""CLI tests for configuration, matching and analytics commands."""

import json

from typer.testing import CliRunner

from campusmatch.cli.app import app


def _item(runner, *args):
    res = runner.invoke(app, ["add-item", *args])
    assert res.exit_code == 0, res.output
    return res.stdout.strip().splitlines()[-1]


def test_cli_match_flow(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"duckdb:///{tmp_path / 'cli.duckdb'}")
    runner = CliRunner()

    assert runner.invoke(app, ["init-db"]).exit_code == 0
    res = runner.invoke(
        app,
        ["set-config", "--auto-approve", "85", "--partial-match", "50", "--image", "0", "--actor", "admin-1"],
    )
    assert res.exit_code == 0
    assert "version 1" in res.stdout

    where = ["--category", "bag", "--lat", "40.0", "--lon", "-75.0", "--when", "2026-03-02T10:00:00"]
    lost = _item(runner, "lost", "Red canvas backpack with laptop sleeve", *where)
    _item(runner, "found", "Red canvas backpack with laptop sleeve", *where)

    res = runner.invoke(app, ["match-item", lost])
    assert res.exit_code == 0, res.output
    assert "created=1" in res.stdout

    out = tmp_path / "report.json"
    res = runner.invoke(app, ["analytics", "--start", "2000-01-01T00:00:00", "--out", str(out)])
    assert res.exit_code == 0, res.output
    report = json.loads(out.read_text())
    assert report["matching"]["total_matches"] == 1
    assert report["matching"]["status_counts"]["accepted"] == 1


def test_cli_reports_validation_errors(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"duckdb:///{tmp_path / 'cli.duckdb'}")
    runner = CliRunner()

    res = runner.invoke(app, ["set-config", "--auto-approve", "40", "--partial-match", "60", "--actor", "admin-1"])
    assert res.exit_code == 1
    assert "error" in res.stdout

    res = runner.invoke(app, ["match-item", "no-such-item"])
    assert res.exit_code == 1

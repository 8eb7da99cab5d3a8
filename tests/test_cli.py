"""Tests for the command line interface."""

import json

from conftest import FIXTURE_PATH
from typer.testing import CliRunner

from activity_timeline.cli.main import app

runner = CliRunner()


def _json(output: str):
    start = min(index for index in (output.find("{"), output.find("[")) if index >= 0)
    return json.loads(output[start:])


def test_timeline_json():
    """Test the timeline of the sample fixture as JSON."""
    result = runner.invoke(app, ["timeline", str(FIXTURE_PATH), "--format", "json", "--timeout", "10"])

    assert result.exit_code == 0, result.output
    rows = _json(result.stdout)["rows"]
    assert [row["kind"] for row in rows] == [
        "standalone_transaction",
        "standalone_transaction",
        "standalone_activity",
    ]
    assert [row["transaction"]["block_number"] if row["transaction"] else row["activity"]["block_number"] for row in rows] == [
        130,
        120,
        100,
    ]
    received = rows[2]["activity"]
    assert received["values"]["card"]["amount"]["value"] == 2500000
    assert received["values"]["token"]["label"]["value"] == "Savings"


def test_timeline_table():
    """Test the timeline of the sample fixture as a table."""
    result = runner.invoke(app, ["timeline", str(FIXTURE_PATH)])

    assert result.exit_code == 0, result.output
    assert "Timeline for" in result.stdout
    assert "2024-03-03" in result.stdout
    assert "Total Rows: 3" in result.stdout


def test_activities_json():
    """Test the built activities of the sample fixture as JSON."""
    result = runner.invoke(app, ["activities", str(FIXTURE_PATH), "--format", "json"])

    assert result.exit_code == 0, result.output
    activities = _json(result.stdout)
    assert [activity["block_number"] for activity in activities] == [120, 100]
    assert [activity["name"] for activity in activities] == ["sent", "received"]


def test_activities_table():
    """Test the built activities as a table."""
    result = runner.invoke(app, ["activities", str(FIXTURE_PATH)])

    assert result.exit_code == 0, result.output
    assert "USDC" in result.stdout
    assert "2500000" in result.stdout


def test_list_servers():
    """Test listing the configured servers."""
    result = runner.invoke(app, ["list-servers"])

    assert result.exit_code == 0, result.output
    assert "ethereum" in result.stdout
    assert "polygon" in result.stdout


def test_missing_fixture(tmp_path):
    """Test a missing fixture file exits with an error."""
    result = runner.invoke(app, ["timeline", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1

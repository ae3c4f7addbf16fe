"""
Tests for the Typer CLI against the in-memory backend.
"""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from gardenslots import __version__
from gardenslots.cli.app import app

runner = CliRunner()

FIXTURE = {
    "gardeners": [
        {"user_id": "g1", "address": "Near", "services": ["lawn"]},
        {"user_id": "g2", "address": "Far", "services": ["lawn"]},
    ],
    "availability": [
        {"gardener_id": "g1", "date": "2030-06-10", "hours": ["09:00", "12:00", "13:00", "14:00"]},
        {"gardener_id": "g2", "date": "2030-06-10", "hours": ["09:00", "10:00"]},
        {"gardener_id": "g1", "date": "2030-06-12", "hours": ["16:00"]},
    ],
    "bookings": [
        {
            "id": "b-conf", "client_id": "A", "gardener_id": "g1", "service_id": "lawn",
            "date": "2030-06-10", "start_time": "10:00:00", "duration_hours": 2, "status": "confirmed",
        },
        {
            "id": "b-pend", "client_id": "B", "gardener_id": "g1", "service_id": "lawn",
            "date": "2030-06-12", "start_time": "16:00:00", "duration_hours": 1, "status": "pending",
            "total_price": 40, "expires_at": "2030-06-11T16:00:00+02:00",
        },
    ],
    "recurring_schedules": [
        {"gardener_id": "g1", "day_of_week": 1, "start_time": "09:00", "end_time": "17:00"},
    ],
}


@pytest.fixture
def config_path(tmp_path) -> Path:
    (tmp_path / "data.json").write_text(json.dumps(FIXTURE), encoding="utf-8")
    path = tmp_path / "config.yaml"
    path.write_text(
        "storage:\n"
        "  backend: memory\n"
        "  data_file: data.json\n"
        "geocoding:\n"
        "  provider: static\n"
        "  static_locations:\n"
        "    Client: [40.4168, -3.7038]\n"
        "    Near: [40.4381, -3.6762]\n"
        "    Far: [39.8581, -4.0226]\n",
        encoding="utf-8",
    )
    return path


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_slots(config_path):
    """Client B sees 09:00 from both gardeners and no 12:00 buffer hour."""
    result = runner.invoke(app, [
        "slots", "2030-06-10", "-g", "g1", "-g", "g2", "--client", "B", "-c", str(config_path),
    ])

    assert result.exit_code == 0, result.output
    assert "09:00 – 10:00 (2 jardineros)" in result.output
    assert "12:00 – 13:00" not in result.output
    assert "13:00 – 14:00" in result.output


def test_slots_none_available(config_path):
    result = runner.invoke(app, [
        "slots", "2030-06-11", "-g", "g1", "--client", "B", "-c", str(config_path),
    ])

    assert result.exit_code == 0
    assert "No hay franjas libres" in result.output


def test_slots_invalid_date(config_path):
    result = runner.invoke(app, [
        "slots", "10.06.2030", "-g", "g1", "--client", "B", "-c", str(config_path),
    ])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_missing_config(tmp_path):
    result = runner.invoke(app, [
        "slots", "2030-06-10", "-g", "g1", "--client", "B", "-c", str(tmp_path / "missing.yaml"),
    ])

    assert result.exit_code == 1
    assert "Config file not found" in result.output


def test_next_days(config_path):
    result = runner.invoke(app, [
        "next-days", "2030-06-10", "-g", "g1", "--client", "B",
        "--max-days", "5", "-c", str(config_path),
    ])

    assert result.exit_code == 0, result.output
    assert "2030-06-10" in result.output
    assert "2030-06-12" in result.output
    assert "2030-06-11" not in result.output


def test_eligible(config_path):
    result = runner.invoke(app, [
        "eligible", "--service", "lawn", "--address", "Client", "-c", str(config_path),
    ])

    assert result.exit_code == 0, result.output
    assert "g1" in result.output
    assert "g2" not in result.output


def test_suggest(config_path):
    result = runner.invoke(app, [
        "suggest", "2030-06-10", "-g", "g1", "--client", "B", "--start", "12",
        "-c", str(config_path),
    ])

    assert result.exit_code == 0, result.output
    assert "Se requiere un intervalo entre clientes diferentes" in result.output
    assert "13:00" in result.output


def test_generate(config_path):
    result = runner.invoke(app, ["generate", "g1", "--force", "-c", str(config_path)])

    assert result.exit_code == 0, result.output
    assert "Generado hasta" in result.output


def test_pending(config_path):
    result = runner.invoke(app, ["pending", "g1", "-c", str(config_path)])

    assert result.exit_code == 0, result.output
    assert "b-pend" in result.output

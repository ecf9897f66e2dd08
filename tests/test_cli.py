import json
import os
import pytest
import signal
import sys
import threading

from induction_engine.cli import EXIT_CANCELLED, EXIT_DATA_UNAVAILABLE, EXIT_INVALID_WEIGHTS, main
from induction_engine.exceptions import OptimizationCancelled
from induction_engine.pipeline import InductionScheduler

from conftest import PLANNING_DATE, make_train, make_trips


@pytest.fixture
def data_dir(tmp_path, sample_fleet, sample_trips):
    payload = {
        "fleet_details": [t.model_dump(mode="json") for t in sample_fleet],
        "trip_details": [t.model_dump(mode="json") for t in sample_trips],
    }
    (tmp_path / f"{PLANNING_DATE.isoformat()}_input_data.json").write_text(json.dumps(payload))
    return tmp_path


def test_cli_prints_schedule_json(data_dir, capsys):
    exit_code = main(["2025-01-15", "--data-dir", str(data_dir), "--time-limit", "10"])

    assert exit_code == 0
    result = json.loads(capsys.readouterr().out)
    assert result["planning_date"] == "2025-01-15"
    assert result["solution"]["solver_status"] == "OPTIMAL"
    assert len(result["solution"]["induction_ranking"]) == 5
    assert result["solution"]["induction_ranking"][-1]["Train ID"] == "KM-005"


def test_cli_weight_overrides(data_dir, capsys):
    exit_code = main(["2025-01-15", "--data-dir", str(data_dir), "--time-limit", "10",
                      "--weights", '{"predictiveHealth": 8000}'])

    assert exit_code == 0
    result = json.loads(capsys.readouterr().out)
    assert result["solution"]["constraint_weights"]["predictive_health"] == 8000


def test_cli_invalid_weights(data_dir, capsys):
    exit_code = main(["2025-01-15", "--data-dir", str(data_dir), "--weights", '{"branding": 1000}'])

    assert exit_code == EXIT_INVALID_WEIGHTS
    assert capsys.readouterr().out == ""


def test_cli_missing_snapshot(tmp_path, capsys):
    exit_code = main(["2025-01-15", "--data-dir", str(tmp_path)])

    assert exit_code == EXIT_DATA_UNAVAILABLE
    assert capsys.readouterr().out == ""


def test_cli_fallback_days(data_dir, capsys):
    exit_code = main(["2025-01-16", "--data-dir", str(data_dir), "--fallback-days", "1", "--time-limit", "10"])

    assert exit_code == 0
    result = json.loads(capsys.readouterr().out)
    assert result["planning_date"] == "2025-01-16"
    assert result["snapshot_date"] == "2025-01-15"


def test_cli_rejects_bad_date():
    with pytest.raises(SystemExit):
        main(["15/01/2025"])


def test_cli_zero_time_limit(tmp_path, capsys):
    payload = {
        "fleet_details": [make_train(f"KM-{i:03d}").model_dump(mode="json") for i in range(1, 11)],
        "trip_details": [t.model_dump(mode="json") for t in make_trips(20, spacing_minutes=15)],
    }
    (tmp_path / "2025-01-15_input_data.json").write_text(json.dumps(payload))

    exit_code = main(["2025-01-15", "--data-dir", str(tmp_path), "--time-limit", "0"])

    assert exit_code == 0
    solution = json.loads(capsys.readouterr().out)["solution"]
    assert solution["solver_status"] == "FEASIBLE"
    assert solution["timed_out"] is True


def write_large_snapshot(data_dir, num_trains=80, num_trips=400):
    fleet = [make_train(f"KM-{i:03d}", predicted_health_score=(i % 10) / 12,
                        mileage_km=700 + (i * 37) % 500).model_dump(mode="json")
             for i in range(1, num_trains + 1)]
    trips = [t.model_dump(mode="json") for t in make_trips(num_trips, start_hour=5, spacing_minutes=4)]
    (data_dir / "2025-01-15_input_data.json").write_text(json.dumps({"fleet_details": fleet, "trip_details": trips}))


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX SIGINT delivery")
def test_cli_interrupt_during_search_exits_cancelled(tmp_path, capsys):
    write_large_snapshot(tmp_path)
    timer = threading.Timer(0.5, os.kill, args=(os.getpid(), signal.SIGINT))

    timer.start()
    try:
        exit_code = main(["2025-01-15", "--data-dir", str(tmp_path), "--time-limit", "120"])
    finally:
        timer.cancel()

    assert exit_code == EXIT_CANCELLED
    assert capsys.readouterr().out == ""


def test_cli_interrupt_handler_sets_cancel_event(data_dir, monkeypatch, capsys):
    seen = {}

    def interrupted_generate(self, **kwargs):
        # Deliver Ctrl-C the way the OS would, through the installed handler
        signal.getsignal(signal.SIGINT)(signal.SIGINT, None)
        seen["cancelled"] = kwargs["cancel_event"].is_set()
        raise OptimizationCancelled("Optimization cancelled by caller")

    monkeypatch.setattr(InductionScheduler, "generate", interrupted_generate)
    handler_before = signal.getsignal(signal.SIGINT)

    exit_code = main(["2025-01-15", "--data-dir", str(data_dir)])

    assert exit_code == EXIT_CANCELLED
    assert seen["cancelled"] is True
    assert capsys.readouterr().out == ""
    assert signal.getsignal(signal.SIGINT) is handler_before

import json

import pandas as pd
import pytest

from analyze_badge_events import (
    check_rates,
    detect_cloned_badges,
    detect_curious_users,
    detect_night_shift_users,
    generate_report,
    main,
    simulate_s3_upload,
    summarize_events,
)
from simulation_config import SimulationConfig


def profile(user_id, curious=False, cloned=False, night_building=None) -> dict:
    return {
        "user_id": user_id,
        "primary_location": "LOC_a",
        "primary_building": night_building or "BLD_a",
        "primary_workspace": "ROOM_a",
        "authorized_rooms": ["ROOM_a"],
        "authorized_buildings": [night_building] if night_building else [],
        "authorized_locations": [],
        "is_curious": curious,
        "has_cloned_badge": cloned,
        "is_night_shift": night_building is not None,
        "assigned_night_building": night_building,
        "behavior_profile": {"travel_frequency": 0.1, "curiosity_level": 0.1,
                             "schedule_adherence": 0.8, "social_level": 0.5},
    }


@pytest.fixture
def profiles_path(tmp_path):
    records = [profile(f"USER_{i}") for i in range(96)]
    records += [profile("USER_c1", curious=True), profile("USER_c2", curious=True),
                profile("USER_x1", cloned=True), profile("USER_n1", night_building="BLD_n")]
    path = tmp_path / "profiles.jsonl"
    pd.DataFrame(records).to_json(path, orient="records", lines=True)
    return path


@pytest.fixture
def events_path(tmp_path):
    events = [
        {"timestamp": "2024-03-04T09:00:00.000000Z", "user_id": "USER_1", "room_id": "ROOM_a",
         "building_id": "BLD_a", "location_id": "LOC_a", "success": True, "event_type": "Success"},
        {"timestamp": "2024-03-04T09:05:00.000000Z", "user_id": "USER_c1", "room_id": "ROOM_s",
         "building_id": "BLD_a", "location_id": "LOC_a", "success": False, "event_type": "Failure",
         "failure_reason": "CuriousUser", "metadata": {"is_curious_attempt": True}},
        {"timestamp": "2024-03-04T02:00:00.000000Z", "user_id": "USER_n1", "room_id": "ROOM_n",
         "building_id": "BLD_n", "location_id": "LOC_a", "success": True, "event_type": "Success",
         "metadata": {"is_night_shift_event": True}},
    ]
    path = tmp_path / "events.jsonl"
    path.write_text("\n".join(json.dumps(e) for e in events) + "\n")
    return path


def test_detects_planted_anomalies(profiles_path) -> None:
    profiles = pd.read_json(profiles_path, lines=True, dtype=False)
    assert detect_cloned_badges(profiles) == ["USER_x1"]
    assert detect_curious_users(profiles) == ["USER_c1", "USER_c2"]
    assert detect_night_shift_users(profiles) == [
        {"user_id": "USER_n1", "assigned_night_building": "BLD_n"}]


def test_detect_on_empty_profiles() -> None:
    empty = pd.DataFrame()
    assert detect_cloned_badges(empty) == []
    assert detect_curious_users(empty) == []
    assert detect_night_shift_users(empty) == []


def test_summarize_events(events_path) -> None:
    events = pd.read_json(events_path, lines=True, dtype=False, convert_dates=False)
    summary = summarize_events(events)
    assert summary["total_events"] == 3
    assert summary["successful_events"] == 2
    assert summary["by_event_type"] == {"Success": 2, "Failure": 1}
    assert summary["by_failure_reason"] == {"CuriousUser": 1}
    assert summary["night_shift_events"] == 1
    assert summary["distinct_users"] == 3


def test_rate_checks(profiles_path) -> None:
    profiles = pd.read_json(profiles_path, lines=True, dtype=False)

    matching = check_rates(profiles, SimulationConfig(curious_user_percentage=0.02,
                                                      cloned_badge_percentage=0.01))
    assert matching["is_curious"]["observed"] == 2
    assert matching["is_curious"]["population"] == 100
    assert matching["is_curious"]["observed_rate"] == pytest.approx(0.02)
    assert matching["is_curious"]["passed"]
    assert matching["has_cloned_badge"]["passed"]

    skewed = check_rates(profiles, SimulationConfig(curious_user_percentage=0.5))
    assert not skewed["is_curious"]["passed"]
    assert skewed["is_curious"]["p_value"] < 0.01


def test_report_written(profiles_path, events_path, tmp_path) -> None:
    output = tmp_path / "reports" / "report.json"
    report = generate_report(profiles_path, events_path, SimulationConfig(), output)

    saved = json.loads(output.read_text())
    assert saved["summary"] == report["summary"] == {
        "total_users": 100, "cloned_badge_count": 1, "curious_user_count": 2, "night_shift_count": 1}
    assert saved["events"]["total_events"] == 3
    assert set(saved["rate_checks"]) == {"is_curious", "has_cloned_badge"}


def test_simulated_upload_appends_record(profiles_path, tmp_path) -> None:
    output = tmp_path / "report.json"
    generate_report(profiles_path, output_path=output)

    upload = simulate_s3_upload(output, "security-analytics")

    saved = json.loads(output.read_text())
    assert saved["upload"] == upload
    assert upload["bucket"] == "security-analytics"
    assert upload["key"] == "badge-analysis/report.json"
    assert upload["simulated"] is True
    assert len(upload["etag"]) == 32
    assert upload["size_bytes"] > 0


def test_main_exit_status(profiles_path, events_path, tmp_path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"curious_user_percentage": 0.02, "cloned_badge_percentage": 0.01}))
    output = tmp_path / "out.json"

    assert main(["--profiles", str(profiles_path), "--events", str(events_path),
                 "--config", str(config_path), "--output", str(output)]) == 0
    assert output.exists()

    config_path.write_text(json.dumps({"curious_user_percentage": 0.5}))
    assert main(["--profiles", str(profiles_path), "--config", str(config_path),
                 "--output", str(output), "--upload-bucket", "b"]) == 1
    assert json.loads(output.read_text())["upload"]["bucket"] == "b"

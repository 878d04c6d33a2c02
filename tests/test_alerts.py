from __future__ import annotations

from noisemonitor.alerts import AlertEngine
from noisemonitor.registry import DeviceRegistry

from conftest import FakeClock, Recorder


def test_noise_at_threshold_fires_exactly_once(alerts: AlertEngine, registry: DeviceRegistry, recorder: Recorder) -> None:
    state = registry.upsert("d1", table_id="T1", last_noise_level=65.0, last_sound_type="speech")

    alerts.evaluate(state, timestamp=123.0)

    fired = recorder.alerts("noise_exceed")
    assert fired == [
        {
            "type": "noise_exceed",
            "deviceId": "d1",
            "tableId": "T1",
            "noiseLevel": 65.0,
            "soundType": "speech",
            "timestamp": 123.0,
        }
    ]


def test_noise_below_threshold_is_quiet(alerts: AlertEngine, registry: DeviceRegistry, recorder: Recorder) -> None:
    state = registry.upsert("d1", table_id="T1", last_noise_level=64.9)

    assert alerts.evaluate(state, timestamp=1.0) == []
    assert recorder.of_kind("alert") == []


def test_every_qualifying_reading_refires(alerts: AlertEngine, registry: DeviceRegistry, recorder: Recorder) -> None:
    state = registry.upsert("d1", last_noise_level=90.0)
    for _ in range(3):
        alerts.evaluate(state, timestamp=1.0)

    assert len(recorder.alerts("noise_exceed")) == 3


def test_sensor_issue_when_all_peers_quiet(alerts: AlertEngine, registry: DeviceRegistry, recorder: Recorder) -> None:
    registry.upsert("d2", table_id="T1", last_noise_level=30.0)
    registry.upsert("d3", table_id="T1", last_noise_level=54.9)
    registry.upsert("d9", table_id="T9", last_noise_level=90.0)
    state = registry.upsert("d1", table_id="T1", last_noise_level=70.0)

    alerts.evaluate(state, timestamp=1.0)

    (issue,) = recorder.alerts("possible_sensor_issue")
    assert issue["deviceId"] == "d1"
    assert issue["tableId"] == "T1"
    assert issue["noiseLevel"] == 70.0
    assert sorted(issue["peers"], key=lambda p: p["deviceId"]) == [
        {"deviceId": "d2", "noise": 30.0},
        {"deviceId": "d3", "noise": 54.9},
    ]


def test_no_sensor_issue_when_a_peer_is_loud_enough(
    alerts: AlertEngine, registry: DeviceRegistry, recorder: Recorder
) -> None:
    registry.upsert("d2", table_id="T1", last_noise_level=30.0)
    registry.upsert("d3", table_id="T1", last_noise_level=55.0)
    state = registry.upsert("d1", table_id="T1", last_noise_level=70.0)

    alerts.evaluate(state, timestamp=1.0)

    assert recorder.alerts("possible_sensor_issue") == []
    assert len(recorder.alerts("noise_exceed")) == 1


def test_no_sensor_issue_without_peers(alerts: AlertEngine, registry: DeviceRegistry, recorder: Recorder) -> None:
    registry.upsert("elsewhere", table_id="T2", last_noise_level=10.0)
    state = registry.upsert("d1", table_id="T1", last_noise_level=110.0)

    alerts.evaluate(state, timestamp=1.0)

    assert recorder.alerts("possible_sensor_issue") == []


def test_no_sensor_issue_for_quiet_device(alerts: AlertEngine, registry: DeviceRegistry) -> None:
    registry.upsert("d2", table_id="T1", last_noise_level=20.0)
    state = registry.upsert("d1", table_id="T1", last_noise_level=60.0)

    assert alerts.check_peers(state) is None


def test_peer_without_reading_counts_as_silent(alerts: AlertEngine, registry: DeviceRegistry) -> None:
    registry.upsert("d2", table_id="T1")
    state = registry.upsert("d1", table_id="T1", last_noise_level=80.0)

    issue = alerts.check_peers(state)

    assert issue is not None
    assert issue["peers"] == [{"deviceId": "d2", "noise": 0.0}]


def test_inactive_device_reported_on_every_sweep(
    alerts: AlertEngine, registry: DeviceRegistry, recorder: Recorder, clock: FakeClock
) -> None:
    registry.upsert("d1", table_id="T1", last_seen=clock())
    registry.upsert("never-seen")

    clock.advance(15_000)
    assert alerts.sweep_inactive() == []

    clock.advance(1)
    assert alerts.sweep_inactive() == [{"deviceId": "d1", "tableId": "T1"}]
    alerts.sweep_inactive()

    assert recorder.of_kind("device-offline") == [{"deviceId": "d1", "tableId": "T1"}] * 2


def test_new_message_resets_offline_eligibility(
    alerts: AlertEngine, registry: DeviceRegistry, clock: FakeClock
) -> None:
    registry.upsert("d1", last_seen=clock())
    clock.advance(20_000)
    assert len(alerts.sweep_inactive()) == 1

    registry.upsert("d1", last_seen=clock())
    assert alerts.sweep_inactive() == []


def test_nan_level_never_counts_as_exceeding(alerts: AlertEngine, registry: DeviceRegistry) -> None:
    registry.upsert("q", table_id="T1", last_noise_level=10.0)
    state = registry.upsert("d1", table_id="T1", last_noise_level=float("nan"))

    assert alerts.check_threshold(state, timestamp=1.0) is None
    assert alerts.check_peers(state) is None

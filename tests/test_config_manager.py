import yaml

from wrist_gps_telemetry.config_manager import ConfigManager, SessionConfig
from wrist_gps_telemetry.models import StartPolicy


def test_missing_file_is_created_with_defaults(tmp_path):
    path = tmp_path / "cfg" / "config.yaml"
    cm = ConfigManager(str(path))
    assert path.exists()
    on_disk = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert on_disk["calibration"]["min_good_samples"] == 10
    assert cm.get_live_config()["min_send_interval_s"] == 0.2


def test_partial_file_is_merged_with_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("calibration:\n  max_accuracy_m: 2.5\n", encoding="utf-8")
    cm = ConfigManager(str(path))
    cal = cm.get_calibration_config()
    assert cal["max_accuracy_m"] == 2.5
    assert cal["duration_s"] == 120.0
    assert cm.get_mqtt_config()["port"] == 1883


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("calibration: [unclosed\n", encoding="utf-8")
    cm = ConfigManager(str(path))
    assert cm.get_calibration_config()["min_good_samples"] == 10


def test_env_overrides_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("WGT_CAL_MIN_SAMPLES", "25")
    monkeypatch.setenv("WGT_CAL_START_POLICY", "restart")
    monkeypatch.setenv("WGT_SENSOR_ENABLED", "no")
    cm = ConfigManager(str(tmp_path / "config.yaml"))
    assert cm.get_calibration_config()["min_good_samples"] == 25
    assert cm.get_sensor_config()["enabled"] is False
    assert SessionConfig.from_config_manager(cm).start_policy is StartPolicy.RESTART


def test_setters_persist(tmp_path):
    path = tmp_path / "config.yaml"
    cm = ConfigManager(str(path))
    cm.set_live_config(min_send_interval_s=0.5)
    cm.set_mqtt_config("broker", 8883, uplink_topic="/x")
    reloaded = ConfigManager(str(path))
    assert reloaded.get_live_config()["min_send_interval_s"] == 0.5
    assert reloaded.get_mqtt_config()["ip"] == "broker"
    assert reloaded.get_mqtt_config()["uplink_topic"] == "/x"


def test_session_config_from_manager(tmp_path):
    cm = ConfigManager(str(tmp_path / "config.yaml"))
    cm.set_calibration_config(max_accuracy_m=2.0, duration_s=60)
    cm.set_live_config(max_accuracy_m=8.0)
    sc = SessionConfig.from_config_manager(cm)
    assert sc.calibration_thresholds.max_accuracy_m == 2.0
    assert sc.live_thresholds.max_accuracy_m == 8.0
    assert sc.calibration_duration_s == 60.0
    assert sc.min_good_samples == 10
    assert sc.start_policy is StartPolicy.REJECT

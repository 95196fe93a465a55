import pandas as pd
import pytest

from conftest import NOW
from wrist_gps_telemetry.config_manager import SessionConfig
from wrist_gps_telemetry.events import Channel
from wrist_gps_telemetry.models import AuthorizationStatus, CalibrationKind
from wrist_gps_telemetry.replay import ReplayRunner
from wrist_gps_telemetry.session import TelemetrySession
from wrist_gps_telemetry.sources import CsvReplaySource


def _write_track(path, n=30, hz=10.0, acc=2.0):
    rows = [
        {"lat": 46.0 + i * 1e-6, "lon": 7.0, "acc": acc, "ts": NOW + i / hz} for i in range(n)
    ]
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


def test_csv_source_loads_and_sorts(tmp_path):
    path = tmp_path / "track.csv"
    path.write_text("lat,lon,acc,ts\n1,2,3,20\n4,5,,10\nx,6,3,30\n", encoding="utf-8")
    source = CsvReplaySource(str(path))
    samples = source.samples()
    assert [s.timestamp for s in samples] == [10.0, 20.0]
    assert samples[0].horizontal_accuracy_m == -1.0
    assert source.authorization_status() is AuthorizationStatus.AUTHORIZED


def test_csv_source_without_timestamps_uses_index(tmp_path):
    path = tmp_path / "track.csv"
    path.write_text("lat,lon,acc\n1,2,3\n1,2,3\n", encoding="utf-8")
    assert [s.timestamp for s in CsvReplaySource(str(path)).samples()] == [0.0, 1.0]


def test_csv_source_missing_columns(tmp_path):
    path = tmp_path / "track.csv"
    path.write_text("lat,lon\n1,2\n", encoding="utf-8")
    with pytest.raises(KeyError):
        CsvReplaySource(str(path)).load()


def test_missing_file_is_not_authorized(tmp_path):
    source = CsvReplaySource(str(tmp_path / "nope.csv"))
    assert source.authorization_status() is AuthorizationStatus.DENIED


def test_replay_rate_limits_live_stream(tmp_path):
    path = _write_track(tmp_path / "track.csv", n=30, hz=10.0)
    session = TelemetrySession(SessionConfig(), authorization=AuthorizationStatus.AUTHORIZED)
    sent = ReplayRunner(session).run(CsvReplaySource(str(path)).samples())
    live = [s for s in sent if s.channel is Channel.LIVE]
    # 10 Hz input over ~3 s, 0.2 s minimum interval
    assert 10 <= len(live) <= 15
    ts = [s.payload["locations"][0]["ts"] for s in live]
    assert all(b - a >= 0.2 for a, b in zip(ts, ts[1:]))


def test_replay_with_calibration(tmp_path):
    path = _write_track(tmp_path / "track.csv", n=30)
    session = TelemetrySession(SessionConfig(), authorization=AuthorizationStatus.AUTHORIZED)
    sent = ReplayRunner(session).run(
        CsvReplaySource(str(path)).samples(), calibrate=CalibrationKind.RIG
    )
    rig = [s for s in sent if s.channel is Channel.RIG]
    assert len(rig) == 1
    assert rig[0].payload["rigCalibration"]["samples"] == 10


def test_replay_deadline_fires_in_simulated_time(tmp_path):
    # poor fixes never qualify for calibration
    path = _write_track(tmp_path / "track.csv", n=5, acc=8.0)
    session = TelemetrySession(SessionConfig(), authorization=AuthorizationStatus.AUTHORIZED)
    ReplayRunner(session).run(CsvReplaySource(str(path)).samples(), calibrate=CalibrationKind.CENTER)
    assert session.snapshot().last_calibration_result == "Failed (too few samples)"

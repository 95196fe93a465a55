from __future__ import annotations

import pytest
from hypothesis import strategies as st

from wrist_gps_telemetry.config_manager import SessionConfig
from wrist_gps_telemetry.models import PositionSample, StartPolicy, Thresholds

NOW = 1_700_000_000.0

# ---------- Shared fixtures ----------


@pytest.fixture
def now() -> float:
    """Fixed wall-clock instant used as 'now' throughout the tests."""
    return NOW


@pytest.fixture
def make_sample():
    """Build a PositionSample, fresh at NOW unless told otherwise."""

    def _make(lat=46.0, lon=7.0, acc=2.0, ts=NOW) -> PositionSample:
        return PositionSample(latitude=lat, longitude=lon, horizontal_accuracy_m=acc, timestamp=ts)

    return _make


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(
        calibration_thresholds=Thresholds(max_accuracy_m=3.0, max_age_s=2.0),
        live_thresholds=Thresholds(max_accuracy_m=5.0, max_age_s=2.0),
        calibration_duration_s=120.0,
        min_good_samples=10,
        accuracy_floor_m=0.5,
        start_policy=StartPolicy.REJECT,
        min_center_distance_from_rig_m=15.0,
        min_send_interval_s=0.2,
    )


class FakeTransport:
    def __init__(self, reachable=True, error=None):
        self.reachable = reachable
        self.error = error
        self.sent = []

    @property
    def is_reachable(self):
        return self.reachable

    def send(self, payload):
        from wrist_gps_telemetry.errors import TransportUnreachable

        if not self.reachable:
            raise TransportUnreachable("peer offline")
        if self.error is not None:
            raise self.error
        self.sent.append(payload)


class FakeKeepAlive:
    def __init__(self):
        self.calls = []

    def start(self):
        self.calls.append("start")

    def stop(self):
        self.calls.append("stop")


class FakeSource:
    def __init__(self, status, granted=None):
        from wrist_gps_telemetry.models import AuthorizationStatus

        self.status = status
        self.granted = granted or AuthorizationStatus.AUTHORIZED
        self.requests = 0
        self.updating = False

    def authorization_status(self):
        return self.status

    def request_authorization(self):
        self.requests += 1
        self.status = self.granted
        return self.status

    def start_updates(self):
        self.updating = True

    def stop_updates(self):
        self.updating = False


class FakeTimer:
    """Stands in for threading.Timer; fire() runs the callback synchronously."""

    created = []

    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args)


@pytest.fixture
def fake_timer():
    FakeTimer.created = []
    return FakeTimer


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fake_keepalive():
    return FakeKeepAlive()


# ---------- Hypothesis strategies ----------


def latitude():
    return st.floats(min_value=-89.0, max_value=89.0, allow_nan=False, allow_infinity=False)


def longitude():
    return st.floats(min_value=-179.0, max_value=179.0, allow_nan=False, allow_infinity=False)


def good_accuracy():
    return st.floats(min_value=0.1, max_value=50.0, allow_nan=False, allow_infinity=False)


def samples_strategy(min_size=1, max_size=20):
    return st.lists(
        st.builds(
            PositionSample,
            latitude=latitude(),
            longitude=longitude(),
            horizontal_accuracy_m=good_accuracy(),
            timestamp=st.just(NOW),
        ),
        min_size=min_size,
        max_size=max_size,
    )

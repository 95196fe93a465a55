import math

import pytest
from hypothesis import given, strategies as st

from conftest import NOW
from wrist_gps_telemetry import validator
from wrist_gps_telemetry.models import PositionSample, RejectReason, Thresholds

CAL = Thresholds(max_accuracy_m=3.0, max_age_s=2.0)


def _sample(acc=2.0, ts=NOW):
    return PositionSample(latitude=1.0, longitude=2.0, horizontal_accuracy_m=acc, timestamp=ts)


def test_accepts_fresh_accurate_sample():
    assert validator.accept(_sample(), NOW, CAL)
    assert validator.check(_sample(), NOW, CAL) is None


def test_boundaries_are_inclusive():
    assert validator.accept(_sample(acc=3.0), NOW, CAL)
    assert validator.accept(_sample(ts=NOW - 2.0), NOW, CAL)
    assert validator.accept(_sample(ts=NOW + 2.0), NOW, CAL)


@given(
    acc=st.floats(max_value=0.0, allow_nan=False, allow_infinity=False),
    age=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False),
)
def test_non_positive_accuracy_rejected_regardless_of_age(acc, age):
    assert validator.check(_sample(acc=acc, ts=NOW - age), NOW, CAL) is RejectReason.INVALID_ACCURACY


def test_nan_accuracy_is_invalid():
    assert validator.check(_sample(acc=math.nan), NOW, CAL) is RejectReason.INVALID_ACCURACY


@given(acc=st.floats(min_value=3.0, max_value=1e6, exclude_min=True, allow_nan=False))
def test_poor_accuracy_rejected(acc):
    assert validator.check(_sample(acc=acc), NOW, CAL) is RejectReason.POOR_ACCURACY


@given(skew=st.floats(min_value=2.001, max_value=1e5, allow_nan=False))
def test_staleness_is_symmetric(skew):
    behind = validator.check(_sample(ts=NOW - skew), NOW, CAL)
    ahead = validator.check(_sample(ts=NOW + skew), NOW, CAL)
    assert behind is ahead is RejectReason.STALE


def test_contexts_use_their_own_thresholds():
    live = Thresholds(max_accuracy_m=10.0, max_age_s=1.0)
    s = _sample(acc=5.0, ts=NOW - 1.5)
    assert validator.check(s, NOW, CAL) is RejectReason.POOR_ACCURACY
    assert validator.check(s, NOW, live) is RejectReason.STALE
    assert validator.accept(_sample(acc=5.0), NOW, live)


@pytest.mark.parametrize(
    "lat, lon, ts",
    [(math.nan, 2.0, NOW), (1.0, math.nan, NOW), (1.0, 2.0, math.nan), (math.inf, 2.0, NOW),
     (1.0, 2.0, -math.inf)],
)
def test_non_finite_fix_is_invalid(lat, lon, ts):
    s = PositionSample(latitude=lat, longitude=lon, horizontal_accuracy_m=2.0, timestamp=ts)
    assert validator.check(s, NOW, CAL) is RejectReason.INVALID_FIX
    assert not validator.accept(s, NOW, CAL)

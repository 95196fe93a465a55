import pytest
from hypothesis import given, strategies as st

from conftest import NOW, samples_strategy
from wrist_gps_telemetry.calculator import (
    bearing,
    haversine_distance,
    mean_accuracy,
    spread,
    weighted_average,
)
from wrist_gps_telemetry.models import Position, PositionSample


def _s(lat, lon, acc):
    return PositionSample(latitude=lat, longitude=lon, horizontal_accuracy_m=acc, timestamp=NOW)


def test_equal_weights_give_midpoint():
    avg = weighted_average([_s(1, 1, 1), _s(3, 3, 1)])
    assert avg == Position(latitude=pytest.approx(2.0), longitude=pytest.approx(2.0))


def test_inverse_variance_weighting():
    # weights 1 and 1/9
    avg = weighted_average([_s(1, 1, 1), _s(3, 3, 3)], floor_m=0.5)
    assert avg.latitude == pytest.approx(1.2)
    assert avg.longitude == pytest.approx(1.2)


def test_floor_caps_weight_of_implausibly_precise_fix():
    # 0.01m is treated as 0.5m -> weight 4 against weight 1
    avg = weighted_average([_s(0, 0, 0.01), _s(5, 5, 1.0)], floor_m=0.5)
    assert avg.latitude == pytest.approx(1.0)


def test_empty_set_has_no_average():
    assert weighted_average([]) is None


def test_degenerate_weight_sum_has_no_average():
    assert weighted_average([_s(1, 1, float("inf"))]) is None


@given(samples=samples_strategy(min_size=1, max_size=12), data=st.data())
def test_average_is_order_invariant(samples, data):
    shuffled = data.draw(st.permutations(samples))
    a = weighted_average(samples)
    b = weighted_average(shuffled)
    assert a.latitude == pytest.approx(b.latitude, abs=1e-9)
    assert a.longitude == pytest.approx(b.longitude, abs=1e-9)


def test_mean_accuracy():
    assert mean_accuracy([_s(0, 0, 1.0), _s(0, 0, 3.0)]) == pytest.approx(2.0)
    assert mean_accuracy([]) == 0.0


def test_haversine_one_degree_latitude():
    d = haversine_distance(Position(0.0, 0.0), Position(1.0, 0.0))
    assert d == pytest.approx(111_195, rel=1e-3)


@pytest.mark.parametrize(
    "target, expected",
    [
        (Position(1.0, 0.0), 0.0),
        (Position(0.0, 1.0), 90.0),
        (Position(-1.0, 0.0), 180.0),
        (Position(0.0, -1.0), 270.0),
    ],
)
def test_bearing_cardinal_directions(target, expected):
    assert bearing(Position(0.0, 0.0), target) == pytest.approx(expected)


def test_spread_is_max_distance_to_center():
    center = Position(0.0, 0.0)
    samples = [_s(0.0, 0.0, 1.0), _s(0.001, 0.0, 1.0)]
    assert spread(samples, center) == pytest.approx(111.195, rel=1e-3)

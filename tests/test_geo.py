import pytest

from evv_compliance.geo import haversine_distance, round_half_up


def test_same_point_is_zero():
    assert haversine_distance(30.2672, -97.7431, 30.2672, -97.7431) == 0


def test_distance_is_symmetric():
    forward = haversine_distance(30.2672, -97.7431, 32.7767, -96.7970)
    backward = haversine_distance(32.7767, -96.7970, 30.2672, -97.7431)
    assert forward == pytest.approx(backward)


def test_one_degree_of_latitude():
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111195, abs=1)


def test_austin_to_dallas():
    # ~293 km great-circle
    assert haversine_distance(30.2672, -97.7431, 32.7767, -96.7970) == pytest.approx(293000, rel=0.01)


def test_antipodal_points_do_not_fail():
    assert haversine_distance(0, 0, 0, 180) == pytest.approx(20015087, rel=1e-4)


@pytest.mark.parametrize("value,expected", [
    (0.5, 1),
    (1.5, 2),
    (2.5, 3),
    (2.4999, 2),
    (-2.5, -2),
    (-9.0, -9),
    (149.9999999, 150),
])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected

import math

import pytest

from finditfast.core.geo import distance_km, format_distance
from finditfast.domain.models import Location

NYC = Location(latitude=40.7128, longitude=-74.0060)
LA = Location(latitude=34.0522, longitude=-118.2437)


def test_distance_to_self_is_zero():
    assert distance_km(NYC, NYC) == 0


def test_distance_is_symmetric():
    assert distance_km(NYC, LA) == distance_km(LA, NYC)


def test_nyc_to_la_is_about_3936_km():
    assert distance_km(NYC, LA) == pytest.approx(3936, rel=0.01)


def test_antipodal_points_do_not_overflow():
    a = Location(latitude=0, longitude=0)
    b = Location(latitude=0, longitude=180)
    assert distance_km(a, b) == pytest.approx(math.pi * 6371, rel=1e-9)


def test_distance_rejects_non_finite_coordinates():
    bad = Location.model_construct(latitude=float("nan"), longitude=0.0)
    with pytest.raises(ValueError, match="finite"):
        distance_km(bad, NYC)


def test_location_model_rejects_nan_and_out_of_range():
    with pytest.raises(ValueError):
        Location(latitude=float("nan"), longitude=0)
    with pytest.raises(ValueError):
        Location(latitude=91, longitude=0)
    with pytest.raises(ValueError):
        Location(latitude=0, longitude=-180.5)


@pytest.mark.parametrize(
    ("km", "expected"),
    [
        (0.5, "500m away"),
        (0.0, "0m away"),
        (0.0005, "1m away"),
        (2.345, "2.3km away"),
        (1.0, "1.0km away"),
        (9.94, "9.9km away"),
        (42, "42km away"),
        (10.5, "11km away"),
    ],
)
def test_format_distance(km, expected):
    assert format_distance(km) == expected


def test_format_distance_rejects_negative():
    with pytest.raises(ValueError):
        format_distance(-1)

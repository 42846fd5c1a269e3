"""Unit tests for great-circle distance, centroid and bounding box."""

import pytest

from src.domain.geometry import BoundingBox, Location, bounding_box, centroid, haversine_km


class TestHaversine:
    def test_same_point_is_zero(self):
        p = Location(28.55, 77.10)
        assert haversine_km(p, p) == 0.0

    def test_known_distance(self):
        # One degree of latitude is ~111.2 km on a 6371 km sphere
        d = haversine_km(Location(28.0, 77.0), Location(29.0, 77.0))
        assert d == pytest.approx(111.19, abs=0.05)

    def test_short_hop_near_airport(self):
        # [77.10, 28.55] -> [77.1005, 28.5505] is roughly 70 m
        d = haversine_km(Location(28.55, 77.10), Location(28.5505, 77.1005))
        assert 0.06 < d < 0.08

    def test_symmetric(self):
        a, b = Location(19.0, 72.0), Location(20.0, 73.0)
        assert haversine_km(a, b) == pytest.approx(haversine_km(b, a))

    def test_address_does_not_affect_equality(self):
        assert Location(1.0, 2.0, "T3 arrivals") == Location(1.0, 2.0)


class TestCentroid:
    def test_single_point(self):
        assert centroid([Location(28.55, 77.10)]) == Location(28.55, 77.10)

    def test_mean_of_axes(self):
        c = centroid([Location(0.0, 0.0), Location(2.0, 4.0)])
        assert c.latitude == pytest.approx(1.0)
        assert c.longitude == pytest.approx(2.0)

    def test_empty_input_rejected(self):
        with pytest.raises(ValueError):
            centroid([])


class TestBoundingBox:
    def test_spans_all_points(self):
        box = bounding_box(
            [Location(28.55, 77.10), Location(28.63, 77.18), Location(28.60, 77.05)]
        )
        assert box == BoundingBox(min_lat=28.55, max_lat=28.63, min_lng=77.05, max_lng=77.18)

    def test_single_point_is_degenerate(self):
        box = bounding_box([Location(1.0, 2.0)])
        assert box.min_lat == box.max_lat == 1.0
        assert box.min_lng == box.max_lng == 2.0

    def test_empty_input_rejected(self):
        with pytest.raises(ValueError):
            bounding_box([])

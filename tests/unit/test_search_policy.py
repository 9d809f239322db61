"""
Unit tests for the search escalation policy and distance helper.
"""
import pytest

from ridematch.services.candidates import SearchPolicy, SearchTier, _clamp, haversine_km


class TestSearchTier:
    def test_bounds_are_centered_on_pickup(self):
        bounds = SearchTier(0.2, 0.1).bounds(32.08, 34.78)
        assert bounds["min_lat"] == pytest.approx(31.98)
        assert bounds["max_lat"] == pytest.approx(32.18)
        assert bounds["min_lng"] == pytest.approx(34.58)
        assert bounds["max_lng"] == pytest.approx(34.98)


class TestSearchPolicy:
    def test_default_policy_has_two_widening_tiers(self):
        policy = SearchPolicy.from_settings()
        assert [t.half_width_deg for t in policy.tiers] == [0.2, 1.0]
        assert policy.tiers[0].half_height_deg < policy.tiers[1].half_height_deg


class TestClamp:
    def test_none_uses_default(self):
        assert _clamp(None, 0.2) == 0.2

    def test_values_are_clamped(self):
        assert _clamp(0.0001, 0.2) == 0.01
        assert _clamp(5, 0.2) == 1.0
        assert _clamp(0.5, 0.2) == 0.5


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(32.08, 34.78, 32.08, 34.78) == 0

    def test_tel_aviv_to_jerusalem(self):
        # ~54 km straight line
        assert haversine_km(32.0853, 34.7818, 31.7683, 35.2137) == pytest.approx(54, abs=2)

    def test_one_degree_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.2, abs=0.2)

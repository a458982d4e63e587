"""
Tests for auto-priority scoring.

score = nearby unresolved reports x category severity weight
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from civicpulse.database import PriorityTier, Report, transaction
from civicpulse.scoring import (
    PriorityScorer,
    bounding_box,
    haversine_meters,
    severity_weight,
    tier_for_score,
    validate_coordinates,
)

from conftest import add_report

LAT, LNG = 12.9716, 77.5946


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

class TestTierBoundaries:

    @pytest.mark.parametrize("score,tier", [
        (0, PriorityTier.LOW),
        (2, PriorityTier.LOW),
        (3, PriorityTier.MEDIUM),
        (7, PriorityTier.MEDIUM),
        (8, PriorityTier.HIGH),
        (14, PriorityTier.HIGH),
        (15, PriorityTier.CRITICAL),
        (60, PriorityTier.CRITICAL),
    ])
    def test_thresholds(self, score, tier):
        assert tier_for_score(score) == tier

    def test_tiers_are_ordered(self):
        assert PriorityTier.LOW < PriorityTier.MEDIUM < PriorityTier.HIGH < PriorityTier.CRITICAL


class TestSeverity:

    def test_weights(self):
        assert severity_weight("Public Safety & Emergency") == 3
        assert severity_weight("Roads & Infrastructure") == 2
        assert severity_weight("Parks") == 1
        assert severity_weight(None) == 1

    def test_surrounding_whitespace_ignored(self):
        assert severity_weight("  Traffic & Transport ") == 3


class TestGeometry:

    def test_one_degree_of_latitude(self):
        assert haversine_meters(0, 0, 1, 0) == pytest.approx(111_195, abs=1)

    def test_zero_distance(self):
        assert haversine_meters(LAT, LNG, LAT, LNG) == 0

    def test_bounding_box_contains_radius(self):
        min_lat, max_lat, min_lng, max_lng = bounding_box(LAT, LNG, 500)
        assert min_lat < LAT < max_lat
        assert min_lng < LNG < max_lng
        assert haversine_meters(LAT, LNG, max_lat, LNG) == pytest.approx(500, rel=1e-6)

    def test_bounding_box_drops_longitude_across_antimeridian(self):
        _, _, min_lng, max_lng = bounding_box(0.0, 179.999, 1000)
        assert min_lng is None and max_lng is None

    @pytest.mark.parametrize("lat,lng", [
        (None, 1.0),
        (91.0, 0.0),
        (0.0, -180.5),
        ("abc", 0.0),
        (float("nan"), 0.0),
    ])
    def test_invalid_coordinates(self, lat, lng):
        with pytest.raises(ValueError):
            validate_coordinates(lat, lng)


# =============================================================================
# SCORER
# =============================================================================

class TestPriorityScorer:

    @pytest.fixture
    def scorer(self):
        return PriorityScorer(window_days=30, radius_meters=500)

    def test_no_neighbours_is_low(self, db, user, scorer):
        assert scorer.compute(db, LAT, LNG, "Public Safety & Emergency") == PriorityTier.LOW

    def test_five_high_severity_neighbours_is_critical(self, db, user, scorer):
        for i in range(5):
            add_report(db, user, title=f"Leak {i}", latitude=LAT, longitude=LNG)

        result = scorer.score(db, LAT, LNG, "Water Supply & Sewerage")

        assert result.nearby_count == 5
        assert result.score == 15
        assert result.tier == PriorityTier.CRITICAL

    def test_four_medium_severity_neighbours_is_high(self, db, user, scorer):
        for i in range(4):
            add_report(db, user, title=f"Pothole {i}", latitude=LAT + 0.001, longitude=LNG)

        assert scorer.compute(db, LAT, LNG, "Roads & Infrastructure") == PriorityTier.HIGH

    def test_excluded_reports_do_not_count(self, db, user, scorer):
        add_report(db, user, title="Resolved", is_resolved=True)
        add_report(db, user, title="Old", age=timedelta(days=31))
        add_report(db, user, title="Far", latitude=LAT + 0.01)
        add_report(db, user, title="No location", latitude=None, longitude=None)
        add_report(db, user, title="Counted")

        assert scorer.score(db, LAT, LNG, "Parks").nearby_count == 1

    def test_per_call_overrides(self, db, user, scorer):
        add_report(db, user, title="Far", latitude=LAT + 0.01)
        assert scorer.score(db, LAT, LNG, None, radius_meters=2000).nearby_count == 1

    def test_counts_uncommitted_rows_in_same_transaction(self, db, user, scorer):
        with transaction(db):
            for i in range(3):
                db.add(Report(user_id=user.id, title=f"Pending {i}", latitude=LAT, longitude=LNG))
            db.flush()
            assert scorer.score(db, LAT, LNG, None).nearby_count == 3

    def test_missing_coordinates_fall_back_to_medium(self, db, scorer):
        result = scorer.score(db, None, None, "Public Safety & Emergency")
        assert result.tier == PriorityTier.MEDIUM
        assert result.fallback is True

    def test_store_error_falls_back_to_medium(self, scorer):
        broken = MagicMock()
        broken.begin_nested.side_effect = RuntimeError("connection reset")

        result = scorer.score(broken, LAT, LNG, "Public Safety & Emergency")

        assert result.tier == PriorityTier.MEDIUM
        assert "connection reset" in result.error

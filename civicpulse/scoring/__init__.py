"""
Scoring Module for CivicPulse

Auto-priority for new reports:

    score = nearby unresolved reports (30 days, 500 m) x category severity weight

Example Usage:
    from civicpulse.scoring import PriorityScorer

    scorer = PriorityScorer()
    tier = scorer.compute(db, 12.9716, 77.5946, "Water Supply & Sewerage")
"""

from .priority import (
    EARTH_RADIUS_METERS,
    DEFAULT_WINDOW_DAYS,
    DEFAULT_RADIUS_METERS,
    FALLBACK_TIER,
    HIGH_SEVERITY_CATEGORIES,
    MEDIUM_SEVERITY_CATEGORIES,
    TIER_THRESHOLDS,
    PriorityResult,
    PriorityScorer,
    bounding_box,
    haversine_meters,
    severity_weight,
    tier_for_score,
    validate_coordinates,
)

__all__ = [
    "EARTH_RADIUS_METERS",
    "DEFAULT_WINDOW_DAYS",
    "DEFAULT_RADIUS_METERS",
    "FALLBACK_TIER",
    "HIGH_SEVERITY_CATEGORIES",
    "MEDIUM_SEVERITY_CATEGORIES",
    "TIER_THRESHOLDS",
    "PriorityResult",
    "PriorityScorer",
    "bounding_box",
    "haversine_meters",
    "severity_weight",
    "tier_for_score",
    "validate_coordinates",
]

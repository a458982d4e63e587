"""
Auto-Priority Scoring

Assigns an urgency tier to a new report from how many unresolved reports
already sit nearby and how severe its category is:

    score = nearby_count * severity_weight

    score >= 15 -> critical
    score >= 8  -> high
    score >= 3  -> medium
    otherwise   -> low

"Nearby" means created within the lookback window (default 30 days) and
within the radius (default 500 m) by great-circle distance on a sphere of
radius 6,371,000 m.

The count runs on the caller's session, inside a SAVEPOINT, so it sees the
same transaction as the insert that follows. Any failure degrades to
MEDIUM; scoring never blocks report creation.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from civicpulse.database.models import PriorityTier, Report
from civicpulse.utils.clock import utcnow


logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

EARTH_RADIUS_METERS = 6_371_000.0

DEFAULT_WINDOW_DAYS = 30
DEFAULT_RADIUS_METERS = 500.0

FALLBACK_TIER = PriorityTier.MEDIUM

HIGH_SEVERITY_CATEGORIES = frozenset([
    "Public Safety & Emergency",
    "Water Supply & Sewerage",
    "Traffic & Transport",
    "Municipal Urban Planning & Encroachment Removal",
])

MEDIUM_SEVERITY_CATEGORIES = frozenset([
    "Street Lighting & Electrical",
    "Roads & Infrastructure",
    "Public Health & Hygiene",
])

SEVERITY_WEIGHTS: Dict[str, int] = {
    **{category: 3 for category in HIGH_SEVERITY_CATEGORIES},
    **{category: 2 for category in MEDIUM_SEVERITY_CATEGORIES},
}

DEFAULT_SEVERITY_WEIGHT = 1

# Checked highest first
TIER_THRESHOLDS: List[Tuple[int, PriorityTier]] = [
    (15, PriorityTier.CRITICAL),
    (8, PriorityTier.HIGH),
    (3, PriorityTier.MEDIUM),
]


# ============================================================================
# PURE HELPERS
# ============================================================================

def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


def severity_weight(category: Optional[str]) -> int:
    """Fixed per-category multiplier (3 high, 2 medium, 1 otherwise)."""
    if not category:
        return DEFAULT_SEVERITY_WEIGHT
    return SEVERITY_WEIGHTS.get(category.strip(), DEFAULT_SEVERITY_WEIGHT)


def tier_for_score(score: int) -> PriorityTier:
    for threshold, tier in TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return PriorityTier.LOW


def validate_coordinates(latitude, longitude) -> Tuple[float, float]:
    """Raise ValueError for missing, non-numeric or out-of-range coordinates."""
    if latitude is None or longitude is None:
        raise ValueError("Coordinates are required for auto-priority")
    lat = float(latitude)
    lng = float(longitude)
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise ValueError(f"Non-finite coordinates: {latitude}, {longitude}")
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
        raise ValueError(f"Coordinates out of range: {lat}, {lng}")
    return lat, lng


def bounding_box(
    latitude: float,
    longitude: float,
    radius_meters: float,
) -> Tuple[float, float, Optional[float], Optional[float]]:
    """
    Degree box enclosing the search circle, used as an index-friendly prefilter.

    Longitude bounds are None when the box would wrap the antimeridian or a pole.
    """
    lat_delta = math.degrees(radius_meters / EARTH_RADIUS_METERS)
    min_lat = max(-90.0, latitude - lat_delta)
    max_lat = min(90.0, latitude + lat_delta)

    cos_lat = math.cos(math.radians(latitude))
    if cos_lat < 1e-6 or max_lat >= 90.0 or min_lat <= -90.0:
        return min_lat, max_lat, None, None

    lng_delta = lat_delta / cos_lat
    min_lng = longitude - lng_delta
    max_lng = longitude + lng_delta
    if min_lng < -180.0 or max_lng > 180.0:
        return min_lat, max_lat, None, None
    return min_lat, max_lat, min_lng, max_lng


# ============================================================================
# SCORER
# ============================================================================

@dataclass
class PriorityResult:
    """Full breakdown of one scoring run."""
    tier: PriorityTier
    nearby_count: int = 0
    weight: int = DEFAULT_SEVERITY_WEIGHT
    score: int = 0
    fallback: bool = False
    error: Optional[str] = None


class PriorityScorer:
    """
    Severity-weighted nearby-density scorer.

    Window and radius are deployment policy; pass them per call or set
    defaults at construction.
    """

    def __init__(
        self,
        window_days: int = DEFAULT_WINDOW_DAYS,
        radius_meters: float = DEFAULT_RADIUS_METERS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.window_days = window_days
        self.radius_meters = radius_meters
        self._clock = clock

    def count_nearby(
        self,
        db: Session,
        latitude: float,
        longitude: float,
        window_days: int,
        radius_meters: float,
    ) -> int:
        """Unresolved reports created within the window and radius."""
        cutoff = self._clock() - timedelta(days=window_days)
        min_lat, max_lat, min_lng, max_lng = bounding_box(latitude, longitude, radius_meters)

        stmt = (
            select(Report.latitude, Report.longitude)
            .where(Report.is_resolved.is_(False))
            .where(Report.created_at >= cutoff)
            .where(Report.latitude.is_not(None), Report.longitude.is_not(None))
            .where(Report.latitude.between(min_lat, max_lat))
        )
        if min_lng is not None:
            stmt = stmt.where(Report.longitude.between(min_lng, max_lng))

        # Savepoint keeps a failed count from poisoning the caller's transaction
        with db.begin_nested():
            rows = db.execute(stmt).all()

        return sum(
            1 for lat, lng in rows
            if haversine_meters(latitude, longitude, lat, lng) <= radius_meters
        )

    def score(
        self,
        db: Session,
        latitude,
        longitude,
        category: Optional[str],
        window_days: Optional[int] = None,
        radius_meters: Optional[float] = None,
    ) -> PriorityResult:
        """Score a prospective report. Never raises."""
        window_days = self.window_days if window_days is None else window_days
        radius_meters = self.radius_meters if radius_meters is None else radius_meters
        weight = severity_weight(category)

        try:
            lat, lng = validate_coordinates(latitude, longitude)
            nearby = self.count_nearby(db, lat, lng, window_days, radius_meters)
        except Exception as e:
            logger.warning(
                f"Priority auto-compute failed, falling back to {FALLBACK_TIER.value}: {e}"
            )
            return PriorityResult(
                tier=FALLBACK_TIER,
                weight=weight,
                fallback=True,
                error=str(e),
            )

        score = nearby * weight
        tier = tier_for_score(score)
        logger.info(
            f"Auto-priority: {nearby} nearby x weight {weight} = {score} -> {tier.value}"
        )
        return PriorityResult(tier=tier, nearby_count=nearby, weight=weight, score=score)

    def compute(
        self,
        db: Session,
        latitude,
        longitude,
        category: Optional[str],
        window_days: Optional[int] = None,
        radius_meters: Optional[float] = None,
    ) -> PriorityTier:
        return self.score(db, latitude, longitude, category, window_days, radius_meters).tier

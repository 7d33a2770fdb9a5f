"""
Per-user trip detection thresholds with process-wide defaults.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config
from .models import Profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TripConfig:
    movement_threshold_m: float = config.TRIP_DEFAULT_MOVEMENT_THRESHOLD_M
    stationary_timeout_min: float = config.TRIP_DEFAULT_STATIONARY_TIMEOUT_MIN
    minimum_distance_m: float = config.TRIP_DEFAULT_MINIMUM_DISTANCE_M
    max_duration_hours: float = config.TRIP_DEFAULT_MAX_DURATION_HOURS
    sensitivity: str = "normal"


def _positive_or(value, default):
    # unset, null and non-positive overrides all mean "use the default"
    if value is None or value <= 0:
        return default
    return float(value)


def resolve_config(db: Session, user_id: str) -> TripConfig:
    """Load the user's trip thresholds; a missing profile yields all defaults."""
    try:
        p = db.query(Profile).filter(Profile.id == user_id).first()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Could not read trip settings for user {user_id}, using defaults: {e}")
        return TripConfig()
    if not p:
        return TripConfig()

    defaults = TripConfig()
    return TripConfig(
        movement_threshold_m=_positive_or(p.trip_movement_threshold_meters, defaults.movement_threshold_m),
        stationary_timeout_min=_positive_or(p.trip_stationary_timeout_minutes, defaults.stationary_timeout_min),
        minimum_distance_m=_positive_or(p.trip_minimum_distance_meters, defaults.minimum_distance_m),
        max_duration_hours=_positive_or(p.trip_max_duration_hours, defaults.max_duration_hours),
        sensitivity=p.trip_sensitivity_level or defaults.sensitivity,
    )

"""
Trip lifecycle engine.

Per vehicle connection a trip is either absent (idle) or active. Each poll
compares the current odometer with the movement baseline stored on the vehicle
state and decides whether to start, extend, end or discard the trip.

Movement is odometer-based: odometer deltas are monotonic and do not drift the
way GPS fixes do, so location only shapes the route and never starts a trip on
its own.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from .models import Trip, VehicleConnection, VehicleState, TRIP_ACTIVE, TRIP_COMPLETED, utcnow
from .schemas import GeoPoint, ORIGIN
from .stores import HistoryLog, TripStore, VehicleStateStore
from .telematics import Readings
from .trip_config import TripConfig

logger = logging.getLogger(__name__)

# Polling interval (seconds) per vehicle situation
FREQ_MOVING = 30
FREQ_STATIONARY = 60
FREQ_IDLE = 120

# A stationary trip is only closed once it is this long or this old.
# Keeps short stops (traffic lights, queues) from splitting a trip in two.
STATIONARY_CLOSE_MIN_DISTANCE_KM = 1.0
STATIONARY_CLOSE_MIN_DURATION_MIN = 60


class TripAction(str, Enum):
    NONE = "none"
    SKIPPED = "skipped"
    STARTED = "started"
    UPDATED = "updated"
    ENDED = "ended"
    DISCARDED = "discarded"
    FORCE_ENDED = "force_ended"


ENDING_ACTIONS = (TripAction.ENDED, TripAction.DISCARDED, TripAction.FORCE_ENDED)


@dataclass
class PollOutcome:
    action: TripAction
    trip_id: Optional[str] = None
    movement_meters: float = 0.0
    polling_frequency: Optional[int] = None


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60


def odometer_distance(start_odo: Optional[float], end_odo: Optional[float]) -> Optional[float]:
    """Distance in km between two odometer readings, never negative."""
    if start_odo is None or end_odo is None:
        return None
    return max(0.0, round(end_odo - start_odo, 2))


class TripLifecycleEngine:
    def __init__(
        self,
        trips: TripStore,
        states: VehicleStateStore,
        history: Optional[HistoryLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.trips = trips
        self.states = states
        self.history = history
        self.clock = clock

    def process(self, connection: VehicleConnection, readings: Readings, cfg: TripConfig) -> PollOutcome:
        """Run one poll's worth of trip decisions for a connection."""
        now = self.clock()
        state = self.states.get_state(connection.id)

        if readings.odometer_km is None:
            logger.info(f"No odometer data for {connection.vehicle_id}, checking for stale trips only")
            ended = self.end_stale_trips(connection, cfg, state, now)
            return PollOutcome(TripAction.FORCE_ENDED if ended else TripAction.SKIPPED)

        current = readings.odometer_km
        location = readings.location

        reference = None
        if state is not None:
            reference = state.anchor_odometer if state.anchor_odometer is not None else state.last_odometer
        movement_m = abs(current - reference) * 1000 if reference is not None else 0.0
        # a first-ever reading counts as movement so detection can bootstrap
        has_moved = reference is None or movement_m >= cfg.movement_threshold_m

        active_trips = self.trips.get_active_trips(connection.id)
        if len(active_trips) > 1:
            logger.warning(
                f"{len(active_trips)} active trips for connection {connection.id}, continuing the newest"
            )
        active = active_trips[0] if active_trips else None

        logger.info(
            f"Movement analysis for {connection.vehicle_id}: {movement_m:.0f}m "
            f"(threshold {cfg.movement_threshold_m:.0f}m, sensitivity {cfg.sensitivity}), "
            f"moved={has_moved}, active_trip={active.id if active else None}"
        )

        if active is not None:
            action = self._advance(active, current, location, has_moved, cfg, now)
            if action in ENDING_ACTIONS:
                trip_id, freq = None, FREQ_IDLE
            else:
                trip_id = active.id
                freq = FREQ_MOVING if has_moved else FREQ_STATIONARY
        elif has_moved and movement_m > 0:
            trip = self.start_trip(connection, location, current, now)
            action, trip_id, freq = TripAction.STARTED, trip.id, FREQ_MOVING
        else:
            logger.info(f"No trip action for {connection.vehicle_id}")
            action, trip_id = TripAction.NONE, None
            freq = FREQ_STATIONARY if has_moved else FREQ_IDLE

        patch = dict(
            last_odometer=current,
            last_poll_time=now,
            current_trip_id=trip_id,
            polling_frequency=freq,
        )
        if location is not None:
            patch["last_location"] = location.to_json()
        if has_moved:
            patch["anchor_odometer"] = current
        self.states.upsert_state(connection.id, **patch)

        if self.history is not None:
            self.history.append(connection.id, current, location, now)

        return PollOutcome(action, trip_id, movement_m, freq)

    def _advance(self, trip: Trip, odometer: float, location: Optional[GeoPoint],
                 has_moved: bool, cfg: TripConfig, now: datetime) -> TripAction:
        trip_minutes = _minutes(now - trip.start_time)

        if trip_minutes >= cfg.max_duration_hours * 60:
            logger.info(f"Force-ending trip {trip.id} due to max duration ({trip_minutes / 60:.1f}h)")
            self.end_trip(trip, location, odometer, cfg, now, forced=True)
            return TripAction.FORCE_ENDED

        if not has_moved:
            stationary_min = _minutes(now - (trip.last_movement_at or trip.start_time))
            distance = trip.distance_km or 0.0
            long_enough = (
                distance >= STATIONARY_CLOSE_MIN_DISTANCE_KM
                or trip_minutes >= STATIONARY_CLOSE_MIN_DURATION_MIN
            )
            if stationary_min >= cfg.stationary_timeout_min and long_enough:
                logger.info(
                    f"Ending trip {trip.id} after {stationary_min:.1f}min stationary (distance {distance}km)"
                )
                kept = self.end_trip(trip, location, odometer, cfg, now)
                return TripAction.ENDED if kept else TripAction.DISCARDED
            logger.info(
                f"Trip {trip.id} continuing, stationary for {stationary_min:.1f}min "
                f"(timeout {cfg.stationary_timeout_min}min, distance {distance}km)"
            )

        self.update_trip(trip, location, odometer, now, moved=has_moved)
        return TripAction.UPDATED

    def start_trip(self, connection: VehicleConnection, location: Optional[GeoPoint],
                   odometer: float, now: datetime) -> Trip:
        start = location or ORIGIN
        trip = self.trips.create(
            user_id=connection.user_id,
            vehicle_connection_id=connection.id,
            start_time=now,
            start_location=start.to_json(),
            route_data=[location.to_route_point()] if location else [],
            trip_status=TRIP_ACTIVE,
            trip_type="unknown",
            odometer_km=odometer,
            is_automatic=True,
            distance_km=0.0,
            duration_minutes=0,
            last_movement_at=now,
            updated_at=now,
        )
        logger.info(f"Trip started: ID={trip.id}, Vehicle={connection.vehicle_id}, Odometer={odometer}km")
        return trip

    def update_trip(self, trip: Trip, location: Optional[GeoPoint], odometer: Optional[float],
                    now: datetime, moved: bool = False) -> Trip:
        km = odometer_distance(trip.odometer_km, odometer)
        if km is not None:
            trip.distance_km = km
        trip.duration_minutes = max(0, int(_minutes(now - trip.start_time)))
        if location is not None:
            # reassign so the JSON column registers the change
            trip.route_data = list(trip.route_data or []) + [location.to_route_point()]
        if moved:
            trip.last_movement_at = now
        trip.updated_at = now
        return self.trips.save(trip)

    def end_trip(self, trip: Trip, location: Optional[GeoPoint], odometer: Optional[float],
                 cfg: TripConfig, now: datetime, forced: bool = False) -> bool:
        """Complete the trip, or delete it when it is too short to keep.

        Returns False when the trip was discarded. Forced ends (safety cap)
        always keep the trip.
        """
        km = odometer_distance(trip.odometer_km, odometer)
        if km is None:
            km = trip.distance_km or 0.0
        duration = max(0, int(_minutes(now - trip.start_time)))

        if not forced and km * 1000 < cfg.minimum_distance_m:
            logger.info(
                f"Discarding trip {trip.id}: {km}km is below minimum {cfg.minimum_distance_m:.0f}m"
            )
            self.trips.delete(trip)
            return False

        trip.trip_status = TRIP_COMPLETED
        trip.end_time = now
        trip.end_location = location.to_json() if location else trip.start_location
        trip.distance_km = km
        trip.duration_minutes = duration
        trip.updated_at = now
        self.trips.save(trip)
        logger.info(f"Trip {trip.id} ended (forced: {forced}) - Distance: {km}km, Duration: {duration}min")
        return True

    def end_stale_trips(self, connection: VehicleConnection, cfg: TripConfig,
                        state: Optional[VehicleState], now: datetime) -> int:
        """Force-end active trips past the max duration. Returns how many ended."""
        cutoff = now - timedelta(hours=cfg.max_duration_hours)
        stale = self.trips.get_stale_trips(connection.id, cutoff)
        if not stale:
            return 0

        last_odometer = state.last_odometer if state else None
        last_location = GeoPoint.from_stored(state.last_location) if state else None
        stale_ids = set()
        for trip in stale:
            stale_ids.add(trip.id)
            odometer = last_odometer
            if odometer is not None and trip.odometer_km is not None and odometer < trip.odometer_km:
                odometer = None
            logger.info(f"Force-ending stale trip {trip.id}")
            self.end_trip(trip, last_location, odometer, cfg, now, forced=True)

        if state is not None and state.current_trip_id in stale_ids:
            self.states.upsert_state(connection.id, current_trip_id=None, polling_frequency=FREQ_IDLE)
        return len(stale)

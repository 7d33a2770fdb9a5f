"""
Repositories over the relational store.

Every write commits immediately so a connection's poll never holds an open
write transaction across a network await.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .models import (
    Trip, VehicleConnection, VehicleState, VehicleDataHistory,
    TRIP_ACTIVE, utcnow
)
from .schemas import GeoPoint

logger = logging.getLogger(__name__)


class ConnectionStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, user_id: str, vehicle_id: str, access_token: str, refresh_token: str, **info) -> VehicleConnection:
        c = VehicleConnection(
            user_id=user_id,
            vehicle_id=vehicle_id,
            access_token=access_token,
            refresh_token=refresh_token,
            is_active=True,
            **info,
        )
        self.db.add(c)
        self.db.commit()
        self.db.refresh(c)
        logger.info(f"Vehicle connection created: ID={c.id}, User={user_id}, Vehicle={vehicle_id}")
        return c

    def get(self, connection_id: str) -> Optional[VehicleConnection]:
        return self.db.query(VehicleConnection).filter(VehicleConnection.id == connection_id).first()

    def list_active(self) -> List[VehicleConnection]:
        return (
            self.db.query(VehicleConnection)
            .filter(VehicleConnection.is_active.is_(True))
            .order_by(VehicleConnection.connected_at.asc())
            .all()
        )

    def update_tokens(self, connection_id: str, access_token: str, refresh_token: str) -> bool:
        c = self.get(connection_id)
        if not c:
            return False
        c.access_token = access_token
        c.refresh_token = refresh_token
        c.updated_at = utcnow()
        self.db.commit()
        return True

    def mark_synced(self, connection_id: str, at: datetime) -> None:
        c = self.get(connection_id)
        if c:
            c.last_sync_at = at
            self.db.commit()

    def deactivate(self, connection_id: str) -> bool:
        c = self.get(connection_id)
        if not c:
            return False
        c.is_active = False
        c.updated_at = utcnow()
        self.db.commit()
        logger.info(f"Vehicle connection deactivated: ID={connection_id}")
        return True


class VehicleStateStore:
    def __init__(self, db: Session):
        self.db = db

    def get_state(self, connection_id: str) -> Optional[VehicleState]:
        return self.db.query(VehicleState).filter(VehicleState.connection_id == connection_id).first()

    def upsert_state(self, connection_id: str, **patch) -> VehicleState:
        """Update the connection's state row, inserting it on first use."""
        s = self.get_state(connection_id)
        if s is None:
            s = VehicleState(connection_id=connection_id, **patch)
            self.db.add(s)
            try:
                self.db.commit()
                return s
            except IntegrityError:
                # lost an insert race; the row exists now
                self.db.rollback()
                s = self.get_state(connection_id)
                if s is None:
                    raise
        for key, value in patch.items():
            setattr(s, key, value)
        s.updated_at = utcnow()
        self.db.commit()
        return s


class TripStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, trip_id: str) -> Optional[Trip]:
        return self.db.query(Trip).filter(Trip.id == trip_id).first()

    def get_active_trips(self, connection_id: str) -> List[Trip]:
        return (
            self.db.query(Trip)
            .filter(Trip.vehicle_connection_id == connection_id, Trip.trip_status == TRIP_ACTIVE)
            .order_by(Trip.start_time.desc())
            .all()
        )

    def get_stale_trips(self, connection_id: str, cutoff: datetime) -> List[Trip]:
        """Active trips that started at or before ``cutoff``."""
        return (
            self.db.query(Trip)
            .filter(
                Trip.vehicle_connection_id == connection_id,
                Trip.trip_status == TRIP_ACTIVE,
                Trip.start_time <= cutoff,
            )
            .all()
        )

    def create(self, **fields) -> Trip:
        t = Trip(**fields)
        self.db.add(t)
        self.db.commit()
        self.db.refresh(t)
        return t

    def save(self, trip: Trip) -> Trip:
        self.db.commit()
        return trip

    def delete(self, trip: Trip) -> None:
        self.db.delete(trip)
        self.db.commit()


class HistoryLog:
    """Append-only poll log; failures are logged and never abort a poll."""

    def __init__(self, db: Session):
        self.db = db

    def append(self, connection_id: str, odometer_km: float, location: Optional[GeoPoint], poll_time: datetime) -> None:
        try:
            self.db.add(VehicleDataHistory(
                connection_id=connection_id,
                odometer_km=odometer_km,
                location=location.to_json() if location else None,
                poll_time=poll_time,
            ))
            self.db.commit()
            logger.debug(f"Logged data point: {odometer_km}km at {poll_time.isoformat()}")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Failed to log vehicle data history for {connection_id}: {e}")

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Float, Boolean, JSON,
    ForeignKey, Index
)
from sqlalchemy.orm import relationship

from .db import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


# Trip status values written by detection ("paused" is only set outside it)
TRIP_ACTIVE = "active"
TRIP_COMPLETED = "completed"


class Profile(Base):
    """User profile row; only the trip detection overrides are read here."""
    __tablename__ = "sense_profiles"
    id = Column(String(36), primary_key=True, default=new_id)

    trip_movement_threshold_meters = Column(Float, nullable=True)
    trip_stationary_timeout_minutes = Column(Float, nullable=True)
    trip_minimum_distance_meters = Column(Float, nullable=True)
    trip_max_duration_hours = Column(Float, nullable=True)
    trip_sensitivity_level = Column(String(32), nullable=True)

    updated_at = Column(DateTime, nullable=False, default=utcnow)


class VehicleConnection(Base):
    __tablename__ = "vehicle_connections"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)

    # provider-side vehicle id
    vehicle_id = Column(String(190), nullable=False, index=True)
    access_token = Column(Text, nullable=False)  # never returned by the API
    refresh_token = Column(Text, nullable=False)

    make = Column(String(190), nullable=True)
    model = Column(String(190), nullable=True)
    year = Column(Integer, nullable=True)
    vin = Column(String(32), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    connected_at = Column(DateTime, nullable=False, default=utcnow)
    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    state = relationship("VehicleState", back_populates="connection", uselist=False)


class VehicleState(Base):
    __tablename__ = "vehicle_states"
    id = Column(String(36), primary_key=True, default=new_id)
    connection_id = Column(
        String(36), ForeignKey("vehicle_connections.id"), nullable=False, unique=True, index=True
    )

    last_odometer = Column(Float, nullable=True)
    # odometer at the last poll that registered significant movement
    anchor_odometer = Column(Float, nullable=True)
    last_location = Column(JSON, nullable=True)  # {"lat": .., "lng": ..}
    last_poll_time = Column(DateTime, nullable=True)
    current_trip_id = Column(String(36), nullable=True)
    polling_frequency = Column(Integer, nullable=True)  # seconds

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    connection = relationship("VehicleConnection", back_populates="state")


class Trip(Base):
    __tablename__ = "sense_trips"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    vehicle_connection_id = Column(
        String(36), ForeignKey("vehicle_connections.id"), nullable=True, index=True
    )

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    start_location = Column(JSON, nullable=False)
    end_location = Column(JSON, nullable=True)

    distance_km = Column(Float, nullable=True, default=0)
    duration_minutes = Column(Integer, nullable=True, default=0)
    odometer_km = Column(Float, nullable=True)  # reading at trip start
    route_data = Column(JSON, nullable=True)  # [[lng, lat], ...]

    trip_status = Column(String(16), nullable=False, default=TRIP_ACTIVE)
    trip_type = Column(String(16), nullable=False, default="unknown")
    is_automatic = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    last_movement_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_sense_trips_connection_status", "vehicle_connection_id", "trip_status"),
    )


class VehicleDataHistory(Base):
    __tablename__ = "vehicle_data_history"
    id = Column(Integer, primary_key=True)
    connection_id = Column(String(36), ForeignKey("vehicle_connections.id"), nullable=False, index=True)
    odometer_km = Column(Float, nullable=False)
    location = Column(JSON, nullable=True)
    poll_time = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

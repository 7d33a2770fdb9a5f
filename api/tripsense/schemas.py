"""
Pydantic schemas for request/response models and typed geo values.
"""
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


# ===== Geo =====
class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90, strict=True, allow_inf_nan=False)
    lng: float = Field(..., ge=-180, le=180, strict=True, allow_inf_nan=False)

    @classmethod
    def from_provider(cls, data: Any) -> "GeoPoint":
        """Build from a provider location body ({"latitude": .., "longitude": ..})."""
        if not isinstance(data, dict):
            raise ValueError(f"location payload is not an object: {data!r}")
        return cls(lat=data.get("latitude"), lng=data.get("longitude"))

    @classmethod
    def from_stored(cls, data: Any) -> Optional["GeoPoint"]:
        """Parse a stored JSON location; unreadable values yield None."""
        if not isinstance(data, dict):
            return None
        lat = data.get("lat", data.get("latitude"))
        lng = data.get("lng", data.get("longitude"))
        try:
            return cls(lat=lat, lng=lng)
        except ValidationError:
            return None

    def to_json(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}

    def to_route_point(self) -> List[float]:
        return [self.lng, self.lat]


ORIGIN = GeoPoint(lat=0.0, lng=0.0)


# ===== Polling =====
class PollIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    connection_id: Optional[str] = Field(None, alias="connectionId")
    action: Optional[Literal["poll_single", "poll_all"]] = None

    @model_validator(mode="after")
    def _resolve_action(self):
        if self.action is None:
            self.action = "poll_single" if self.connection_id else "poll_all"
        if self.action == "poll_single" and not self.connection_id:
            raise ValueError("connectionId is required for poll_single")
        return self


class PollOut(BaseModel):
    success: bool = True
    message: str
    polled: int = 0
    skipped: int = 0
    failed: int = 0


# ===== Vehicles =====
class ConnectionOut(BaseModel):
    id: str
    user_id: str
    vehicle_id: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    vin: Optional[str] = None
    is_active: bool
    connected_at: datetime
    last_sync_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TripOut(BaseModel):
    id: str
    user_id: str
    vehicle_connection_id: Optional[str]
    start_time: datetime
    end_time: Optional[datetime]
    start_location: Optional[dict]
    end_location: Optional[dict]
    distance_km: Optional[float]
    duration_minutes: Optional[int]
    odometer_km: Optional[float]
    route_data: Optional[List[List[float]]] = None
    trip_status: str
    trip_type: str
    is_automatic: bool
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class VehicleStateOut(BaseModel):
    connection_id: str
    last_odometer: Optional[float] = None
    last_location: Optional[dict] = None
    last_poll_time: Optional[datetime] = None
    current_trip_id: Optional[str] = None
    polling_frequency: Optional[int] = None
    active_trip: Optional[TripOut] = None

"""
Vehicle connection and polling state routes.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies import require_service_key
from ..exceptions import ConnectionNotFoundError
from ..schemas import ConnectionOut, TripOut, VehicleStateOut
from ..stores import ConnectionStore, TripStore, VehicleStateStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/vehicles", tags=["vehicles"], dependencies=[Depends(require_service_key)])


@router.get("", response_model=List[ConnectionOut])
def list_connections(db: Session = Depends(get_db)):
    """List active vehicle connections."""
    return [ConnectionOut.model_validate(c) for c in ConnectionStore(db).list_active()]


@router.get("/{connection_id}/state", response_model=VehicleStateOut)
def get_vehicle_state(connection_id: str, db: Session = Depends(get_db)):
    """Last polled state of a vehicle and its active trip, if any."""
    if not ConnectionStore(db).get(connection_id):
        raise ConnectionNotFoundError(connection_id)

    s = VehicleStateStore(db).get_state(connection_id)
    active = TripStore(db).get_active_trips(connection_id)
    return VehicleStateOut(
        connection_id=connection_id,
        last_odometer=s.last_odometer if s else None,
        last_location=s.last_location if s else None,
        last_poll_time=s.last_poll_time if s else None,
        current_trip_id=s.current_trip_id if s else None,
        polling_frequency=s.polling_frequency if s else None,
        active_trip=TripOut.model_validate(active[0]) if active else None,
    )


@router.post("/{connection_id}/disconnect")
def disconnect_vehicle(connection_id: str, db: Session = Depends(get_db)):
    """Deactivate a vehicle connection; it is no longer polled."""
    if not ConnectionStore(db).deactivate(connection_id):
        raise ConnectionNotFoundError(connection_id)
    return {"status": "disconnected"}

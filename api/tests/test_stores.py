from datetime import datetime

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from tripsense.db import engine_options
from tripsense.models import Profile, TRIP_ACTIVE, TRIP_COMPLETED, VehicleDataHistory, VehicleState
from tripsense.schemas import GeoPoint, PollIn
from tripsense.stores import ConnectionStore, HistoryLog, TripStore, VehicleStateStore
from tripsense.trip_config import TripConfig, resolve_config


def test_upsert_state_inserts_then_updates(db, make_connection):
    conn = make_connection()
    states = VehicleStateStore(db)

    states.upsert_state(conn.id, last_odometer=10.0, polling_frequency=60)
    states.upsert_state(conn.id, last_odometer=12.5)

    assert db.query(VehicleState).count() == 1
    s = states.get_state(conn.id)
    assert s.last_odometer == 12.5
    assert s.polling_frequency == 60


def test_upsert_state_same_payload_twice(db, make_connection):
    conn = make_connection()
    states = VehicleStateStore(db)
    patch = dict(last_odometer=10.0, anchor_odometer=10.0, polling_frequency=60, current_trip_id=None)

    first = states.upsert_state(conn.id, **patch)
    second = states.upsert_state(conn.id, **patch)

    assert db.query(VehicleState).filter(VehicleState.connection_id == conn.id).count() == 1
    assert first.id == second.id
    assert second.last_odometer == 10.0
    assert second.polling_frequency == 60


def test_engine_options_by_driver():
    sqlite = engine_options("sqlite:///./tripsense.db")
    postgres = engine_options("postgresql+psycopg://u:p@db:5432/tripsense")

    assert sqlite["connect_args"] == {"check_same_thread": False}
    assert sqlite["poolclass"] is QueuePool
    assert "connect_args" not in postgres
    assert postgres["pool_size"] == 10
    assert postgres["pool_pre_ping"] is True


def test_get_state_missing(db):
    assert VehicleStateStore(db).get_state("missing") is None


def test_active_and_stale_trips(db, make_connection):
    conn = make_connection()
    trips = TripStore(db)
    base = dict(user_id=conn.user_id, vehicle_connection_id=conn.id, start_location={"lat": 0.0, "lng": 0.0})
    old = trips.create(start_time=datetime(2026, 3, 1, 6, 0), trip_status=TRIP_ACTIVE, **base)
    new = trips.create(start_time=datetime(2026, 3, 2, 7, 0), trip_status=TRIP_ACTIVE, **base)
    trips.create(start_time=datetime(2026, 3, 1, 5, 0), trip_status=TRIP_COMPLETED, **base)

    assert [t.id for t in trips.get_active_trips(conn.id)] == [new.id, old.id]
    assert [t.id for t in trips.get_stale_trips(conn.id, datetime(2026, 3, 1, 6, 0))] == [old.id]

    trips.delete(old)
    assert trips.get(old.id) is None


def test_connection_tokens_and_deactivate(db, make_connection):
    conn = make_connection()
    other = make_connection(vehicle_id="veh-2")
    connections = ConnectionStore(db)

    assert connections.update_tokens(conn.id, "new-access", "new-refresh")
    assert connections.get(conn.id).access_token == "new-access"
    assert not connections.update_tokens("missing", "a", "b")

    assert connections.deactivate(conn.id)
    assert not connections.deactivate("missing")
    assert [c.id for c in connections.list_active()] == [other.id]


def test_history_append_failure_does_not_raise(db, make_connection, monkeypatch):
    conn = make_connection()
    log = HistoryLog(db)
    log.append(conn.id, 100.0, GeoPoint(lat=1.0, lng=2.0), datetime(2026, 3, 2, 8, 0))

    def broken_commit():
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(db, "commit", broken_commit)
    log.append(conn.id, 101.0, None, datetime(2026, 3, 2, 8, 1))
    monkeypatch.undo()

    rows = db.query(VehicleDataHistory).all()
    assert len(rows) == 1
    assert rows[0].location == {"lat": 1.0, "lng": 2.0}


def test_resolve_config_defaults_without_profile(db):
    assert resolve_config(db, "nobody") == TripConfig(
        movement_threshold_m=200,
        stationary_timeout_min=3,
        minimum_distance_m=500,
        max_duration_hours=12,
        sensitivity="normal",
    )


def test_resolve_config_overrides(db):
    db.add(Profile(
        id="user-1",
        trip_movement_threshold_meters=50,
        trip_stationary_timeout_minutes=10,
        trip_minimum_distance_meters=0,
        trip_max_duration_hours=-1,
        trip_sensitivity_level="high",
    ))
    db.commit()

    cfg = resolve_config(db, "user-1")

    assert cfg.movement_threshold_m == 50
    assert cfg.stationary_timeout_min == 10
    assert cfg.minimum_distance_m == 500
    assert cfg.max_duration_hours == 12
    assert cfg.sensitivity == "high"


@pytest.mark.parametrize("data", [
    {"lat": 91.0, "lng": 0.0},
    {"lat": "59.3", "lng": 18.0},
    {"lat": float("nan"), "lng": 18.0},
    {"lng": 18.0},
    "59.3,18.0",
])
def test_stored_location_rejects_bad_values(data):
    assert GeoPoint.from_stored(data) is None


def test_poll_request_action():
    assert PollIn.model_validate({}).action == "poll_all"
    single = PollIn.model_validate({"connectionId": "abc"})
    assert single.action == "poll_single"
    assert single.connection_id == "abc"
    assert PollIn.model_validate({"connectionId": "abc", "action": "poll_all"}).action == "poll_all"
    with pytest.raises(ValueError):
        PollIn.model_validate({"action": "poll_single"})
    with pytest.raises(ValueError):
        PollIn.model_validate({"action": "poll_everything"})

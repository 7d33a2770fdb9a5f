import httpx
import pytest

from tripsense.exceptions import TokenRefreshError
from tripsense.stores import ConnectionStore
from tripsense.telematics import TelematicsClient, TokenRefresher

API_URL = "https://api.example.test/v2.0"
AUTH_URL = "https://auth.example.test"


def make_client(http, db):
    refresher = TokenRefresher(http, ConnectionStore(db), auth_url=AUTH_URL, client_id="cid", client_secret="secret")
    return TelematicsClient(http, refresher, api_url=API_URL)


@pytest.fixture
def vehicle(provider):
    provider.odometer["veh-1"] = 12345.6
    provider.location["veh-1"] = {"latitude": 59.3293, "longitude": 18.0686}
    return "veh-1"


@pytest.mark.asyncio
async def test_fetch_readings(provider, vehicle, db):
    async with httpx.AsyncClient(transport=provider.transport()) as http:
        readings = await make_client(http, db).fetch_readings(vehicle, "token-1")

    assert readings.errors == []
    assert readings.odometer_km == 12345.6
    assert readings.location.lat == 59.3293
    assert readings.location.lng == 18.0686
    assert provider.refresh_calls == 0


@pytest.mark.asyncio
async def test_expired_token_refreshed_once_per_field(provider, vehicle, db, make_connection):
    conn = make_connection(access_token="expired")

    async with httpx.AsyncClient(transport=provider.transport()) as http:
        readings = await make_client(http, db).fetch_readings(vehicle, "expired", connection_id=conn.id)

    assert readings.errors == []
    assert readings.odometer_km == 12345.6
    assert readings.location is not None
    assert provider.refresh_calls == 2
    assert provider.signal_requests("location")[-1] == (f"/v2.0/vehicles/{vehicle}/location", "token-2")
    assert provider.signal_requests("odometer")[-1] == (f"/v2.0/vehicles/{vehicle}/odometer", "token-3")

    db.refresh(conn)
    assert conn.access_token == "token-3"
    assert conn.refresh_token == "refresh-3"


@pytest.mark.asyncio
async def test_failed_refresh_reported_per_field(provider, vehicle, db, make_connection):
    conn = make_connection(access_token="expired")
    provider.refresh_status = 400

    async with httpx.AsyncClient(transport=provider.transport()) as http:
        readings = await make_client(http, db).fetch_readings(vehicle, "expired", connection_id=conn.id)

    assert readings.location is None
    assert readings.odometer_km is None
    assert readings.errors == [
        "Failed to refresh token for location data",
        "Failed to refresh token for odometer data",
    ]
    db.refresh(conn)
    assert conn.access_token == "expired"


@pytest.mark.asyncio
async def test_unauthorized_without_connection_is_plain_error(provider, vehicle, db):
    async with httpx.AsyncClient(transport=provider.transport()) as http:
        readings = await make_client(http, db).fetch_readings(vehicle, "expired")

    assert readings.errors == ["Location API error: 401", "Odometer API error: 401"]
    assert provider.refresh_calls == 0


@pytest.mark.asyncio
async def test_server_error_on_one_field_keeps_the_other(provider, vehicle, db):
    provider.failures[(vehicle, "location")] = 500

    async with httpx.AsyncClient(transport=provider.transport()) as http:
        readings = await make_client(http, db).fetch_readings(vehicle, "token-1")

    assert readings.location is None
    assert readings.odometer_km == 12345.6
    assert readings.errors == ["Location API error: 500"]


@pytest.mark.asyncio
async def test_network_error_collected(provider, vehicle, db):
    async def handler(request):
        if request.url.path.endswith("/odometer"):
            raise httpx.ConnectError("connection refused", request=request)
        return await provider.handler(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        readings = await make_client(http, db).fetch_readings(vehicle, "token-1")

    assert readings.location is not None
    assert readings.odometer_km is None
    assert len(readings.errors) == 1
    assert readings.errors[0].startswith("Odometer request failed")


@pytest.mark.asyncio
async def test_out_of_range_location_rejected(provider, vehicle, db):
    provider.location[vehicle] = {"latitude": 123.0, "longitude": 18.0}

    async with httpx.AsyncClient(transport=provider.transport()) as http:
        readings = await make_client(http, db).fetch_readings(vehicle, "token-1")

    assert readings.location is None
    assert readings.odometer_km == 12345.6
    assert readings.errors[0].startswith("Location payload invalid")


@pytest.mark.asyncio
async def test_refresh_unknown_connection(provider, db):
    async with httpx.AsyncClient(transport=provider.transport()) as http:
        refresher = TokenRefresher(http, ConnectionStore(db), auth_url=AUTH_URL)
        with pytest.raises(TokenRefreshError):
            await refresher.refresh("missing")

    assert provider.refresh_calls == 0

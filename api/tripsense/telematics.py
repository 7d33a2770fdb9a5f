"""
Vehicle telematics provider client.

Fetches location and odometer for a vehicle. Upstream failures never raise out
of ``fetch_readings``; they are collected as error strings on the result and the
caller works with whatever fields came back.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from pydantic import ValidationError

from . import config
from .exceptions import TokenRefreshError
from .schemas import GeoPoint
from .stores import ConnectionStore

logger = logging.getLogger(__name__)


@dataclass
class Readings:
    vehicle_id: str
    location: Optional[GeoPoint] = None
    odometer_km: Optional[float] = None
    errors: List[str] = field(default_factory=list)


class TokenRefresher:
    """Exchanges a connection's refresh token for a new token pair and stores it."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        connections: ConnectionStore,
        auth_url: str = config.SMARTCAR_AUTH_URL,
        client_id: str = config.SMARTCAR_CLIENT_ID,
        client_secret: str = config.SMARTCAR_CLIENT_SECRET,
    ):
        self.http = http
        self.connections = connections
        self.auth_url = auth_url
        self.client_id = client_id
        self.client_secret = client_secret

    async def refresh(self, connection_id: str) -> str:
        """Return the new access token; raises TokenRefreshError on any failure."""
        logger.info(f"Attempting token refresh for connection {connection_id}")
        conn = self.connections.get(connection_id)
        if not conn:
            raise TokenRefreshError(f"No connection found for token refresh: {connection_id}")

        url = f"{self.auth_url}/oauth/token"
        try:
            r = await self.http.post(
                url,
                data={"grant_type": "refresh_token", "refresh_token": conn.refresh_token},
                auth=(self.client_id, self.client_secret),
            )
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"Token refresh request failed: {e}", endpoint=url) from e

        if r.status_code != 200:
            raise TokenRefreshError(f"Token refresh failed: {r.status_code}", status_code=r.status_code, endpoint=url)
        try:
            data = r.json()
            access_token = data["access_token"]
            refresh_token = data.get("refresh_token") or conn.refresh_token
        except (ValueError, KeyError, TypeError) as e:
            raise TokenRefreshError(f"Unreadable token response: {e}", endpoint=url) from e

        self.connections.update_tokens(connection_id, access_token, refresh_token)
        logger.info(f"Token refreshed for connection {connection_id}")
        return access_token


class TelematicsClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        refresher: Optional[TokenRefresher] = None,
        api_url: str = config.SMARTCAR_API_URL,
    ):
        self.http = http
        self.refresher = refresher
        self.api_url = api_url

    async def _get(self, vehicle_id: str, signal: str, access_token: str) -> httpx.Response:
        return await self.http.get(
            f"{self.api_url}/vehicles/{vehicle_id}/{signal}",
            headers={"Authorization": f"Bearer {access_token}", "SC-Unit-System": "metric"},
        )

    async def fetch_readings(self, vehicle_id: str, access_token: str, connection_id: Optional[str] = None) -> Readings:
        logger.info(f"Fetching telematics data for vehicle {vehicle_id}")
        readings = Readings(vehicle_id=vehicle_id)

        first = await asyncio.gather(
            self._get(vehicle_id, "location", access_token),
            self._get(vehicle_id, "odometer", access_token),
            return_exceptions=True,
        )

        # 401s are resolved one field at a time so each refresh sees the latest token pair
        location_body = await self._resolve("location", first[0], vehicle_id, connection_id, readings.errors)
        odometer_body = await self._resolve("odometer", first[1], vehicle_id, connection_id, readings.errors)

        if location_body is not None:
            try:
                readings.location = GeoPoint.from_provider(location_body)
            except (ValidationError, ValueError) as e:
                readings.errors.append(f"Location payload invalid: {e}")
        if odometer_body is not None:
            try:
                readings.odometer_km = float(odometer_body["distance"])
            except (KeyError, TypeError, ValueError):
                readings.errors.append(f"Odometer payload invalid: {odometer_body!r}")

        logger.info(
            f"Parsed data for {vehicle_id}: location={readings.location is not None}, "
            f"odometer={readings.odometer_km}, errors={len(readings.errors)}"
        )
        return readings

    async def _resolve(self, signal: str, response, vehicle_id: str, connection_id: Optional[str], errors: List[str]):
        """Turn a first response (or exception) into a JSON body, refreshing once on 401."""
        label = signal.capitalize()
        if isinstance(response, httpx.HTTPError):
            logger.warning(f"{label} request failed for {vehicle_id}: {response}")
            errors.append(f"{label} request failed: {response}")
            return None
        if isinstance(response, BaseException):
            raise response

        if response.status_code == 401 and connection_id and self.refresher:
            try:
                new_token = await self.refresher.refresh(connection_id)
            except TokenRefreshError as e:
                logger.warning(f"Token refresh failed for {signal} of {vehicle_id}: {e}")
                errors.append(f"Failed to refresh token for {signal} data")
                return None
            try:
                retry = await self._get(vehicle_id, signal, new_token)
            except httpx.HTTPError as e:
                errors.append(f"{label} request failed after refresh: {e}")
                return None
            if retry.is_success:
                logger.info(f"{label} retrieved after token refresh")
                return self._json(signal, retry, errors)
            errors.append(f"{label} API error after refresh: {retry.status_code}")
            return None

        if response.is_success:
            return self._json(signal, response, errors)

        logger.warning(f"{label} API error for {vehicle_id}: {response.status_code}")
        errors.append(f"{label} API error: {response.status_code}")
        return None

    @staticmethod
    def _json(signal: str, response: httpx.Response, errors: List[str]):
        try:
            return response.json()
        except ValueError:
            errors.append(f"{signal.capitalize()} response is not JSON")
            return None

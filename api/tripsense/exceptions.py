"""Exception hierarchy for tripsense."""


class TripSenseError(Exception):
    """Base exception for all tripsense errors."""


class ConnectionNotFoundError(TripSenseError):
    """No vehicle connection with the given id."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"No vehicle connection found for ID: {connection_id}")


class TelematicsError(TripSenseError):
    """Provider call failed (network, non-2xx, unreadable body)."""

    def __init__(self, message: str, *, status_code=None, endpoint: str = ""):
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class TokenRefreshError(TelematicsError):
    """Exchanging the stored refresh token for a new access token failed."""

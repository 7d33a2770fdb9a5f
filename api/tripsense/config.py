"""
Process configuration read from the environment.
"""
import os

ENV = os.getenv("ENV", "development")

# ===== Telematics provider =====
SMARTCAR_API_URL = os.getenv("SMARTCAR_API_URL", "https://api.smartcar.com/v2.0").rstrip("/")
SMARTCAR_AUTH_URL = os.getenv("SMARTCAR_AUTH_URL", "https://auth.smartcar.com").rstrip("/")
SMARTCAR_CLIENT_ID = os.getenv("SMARTCAR_CLIENT_ID", "")
SMARTCAR_CLIENT_SECRET = os.getenv("SMARTCAR_CLIENT_SECRET", "")
TELEMATICS_TIMEOUT_SECONDS = float(os.getenv("TELEMATICS_TIMEOUT_SECONDS", "10"))

# ===== Polling =====
# 0 disables the in-process timer; polls then only happen via POST /poll
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "30"))
POLL_CONCURRENCY = int(os.getenv("POLL_CONCURRENCY", "5"))
POLL_RATE_LIMIT = os.getenv("POLL_RATE_LIMIT", "30/minute")
HISTORY_LOG_ENABLED = os.getenv("HISTORY_LOG_ENABLED", "true").lower() == "true"

# Fail if POLL_SERVICE_KEY not set in production
POLL_SERVICE_KEY = os.getenv("POLL_SERVICE_KEY")
if not POLL_SERVICE_KEY and ENV == "production":
    raise RuntimeError("POLL_SERVICE_KEY must be set in production!")

# ===== Trip detection defaults (per-user profile values take precedence) =====
TRIP_DEFAULT_MOVEMENT_THRESHOLD_M = float(os.getenv("TRIP_DEFAULT_MOVEMENT_THRESHOLD_M", "200"))
TRIP_DEFAULT_STATIONARY_TIMEOUT_MIN = float(os.getenv("TRIP_DEFAULT_STATIONARY_TIMEOUT_MIN", "3"))
TRIP_DEFAULT_MINIMUM_DISTANCE_M = float(os.getenv("TRIP_DEFAULT_MINIMUM_DISTANCE_M", "500"))
TRIP_DEFAULT_MAX_DURATION_HOURS = float(os.getenv("TRIP_DEFAULT_MAX_DURATION_HOURS", "12"))

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

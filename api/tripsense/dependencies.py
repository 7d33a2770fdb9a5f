"""
Dependencies for FastAPI dependency injection.
"""
import hmac

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from slowapi import Limiter
from slowapi.util import get_remote_address

from . import config
from .polling import PollOrchestrator

limiter = Limiter(key_func=get_remote_address)
bearer_scheme = HTTPBearer(auto_error=False)


def require_service_key(creds: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> None:
    """Check Authorization: Bearer <POLL_SERVICE_KEY>. Open when no key is configured."""
    if not config.POLL_SERVICE_KEY:
        return
    if not creds or creds.scheme.lower() != "bearer":
        raise HTTPException(401, "Not authenticated")
    if not hmac.compare_digest(creds.credentials.encode(), config.POLL_SERVICE_KEY.encode()):
        raise HTTPException(401, "Invalid service key")


def get_orchestrator(request: Request) -> PollOrchestrator:
    return request.app.state.orchestrator

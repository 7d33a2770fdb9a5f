"""
tripsense API - automatic trip detection for connected vehicles:
- Odometer-based trip start/end detection
- Adaptive per-vehicle polling on a timer, or on demand via POST /poll
- Token refresh against the telematics provider
- Rate limiting and service-key auth
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import config
from .db import Base, engine, get_db
from .dependencies import limiter
from .exceptions import ConnectionNotFoundError
from .polling import PollOrchestrator, run_scheduler
from .routes import polling, vehicles

# ===== Logging Setup =====
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ===== Startup/Shutdown =====
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, build the orchestrator and start the polling timer."""
    logger.info("Starting up tripsense API...")
    Base.metadata.create_all(bind=engine)
    app.state.orchestrator = PollOrchestrator()
    if not config.POLL_SERVICE_KEY:
        logger.warning("POLL_SERVICE_KEY not set. API routes are unauthenticated.")

    scheduler = None
    if config.POLL_INTERVAL_SECONDS > 0:
        scheduler = asyncio.create_task(run_scheduler(app.state.orchestrator, config.POLL_INTERVAL_SECONDS))
    else:
        logger.info("POLL_INTERVAL_SECONDS is 0, polling only on demand")
    logger.info("Startup complete")
    yield
    # Shutdown
    logger.info("Shutting down...")
    if scheduler is not None:
        scheduler.cancel()
        try:
            await scheduler
        except asyncio.CancelledError:
            pass


# ===== FastAPI App =====
app = FastAPI(
    title="tripsense API",
    description="Automatic trip detection for connected vehicles",
    version="1.0.0",
    lifespan=lifespan
)

# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConnectionNotFoundError)
async def connection_not_found_handler(request: Request, exc: ConnectionNotFoundError):
    return JSONResponse({"detail": "Vehicle connection not found"}, status_code=404)


@app.get("/health")
def health(db: Session = Depends(get_db)):
    """Health check endpoint."""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse({"status": "db_error", "error": str(e)}, status_code=500)


app.include_router(polling.router)
app.include_router(vehicles.router)

"""
Poll orchestration: runs the trip lifecycle engine for one or all vehicle
connections, one database session per connection.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from . import config
from .db import SessionLocal
from .detection import PollOutcome, TripLifecycleEngine
from .locks import LockRegistry
from .models import VehicleState, utcnow
from .stores import ConnectionStore, HistoryLog, TripStore, VehicleStateStore
from .telematics import TelematicsClient, TokenRefresher
from .trip_config import resolve_config

logger = logging.getLogger(__name__)

# timer ticks drift a little; treat a connection as due slightly early
DUE_SLACK_SECONDS = 5


@dataclass
class PollSummary:
    polled: int = 0
    skipped: int = 0
    failed: int = 0


def is_due(state: Optional[VehicleState], now: datetime) -> bool:
    """Whether a connection's adaptive polling interval has elapsed."""
    if state is None or state.last_poll_time is None or not state.polling_frequency:
        return True
    next_poll = state.last_poll_time + timedelta(seconds=state.polling_frequency - DUE_SLACK_SECONDS)
    return now >= next_poll


class PollOrchestrator:
    def __init__(
        self,
        session_factory=SessionLocal,
        locks: Optional[LockRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
        concurrency: int = config.POLL_CONCURRENCY,
        history_enabled: bool = config.HISTORY_LOG_ENABLED,
        timeout: float = config.TELEMATICS_TIMEOUT_SECONDS,
    ):
        self.session_factory = session_factory
        self.locks = locks or LockRegistry()
        self.transport = transport
        self.clock = clock
        self.concurrency = max(1, concurrency)
        self.history_enabled = history_enabled
        self.timeout = timeout

    @asynccontextmanager
    async def _http(self):
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            yield client

    async def poll_all(self, only_due: bool = False) -> PollSummary:
        """Poll every active connection; one connection failing never stops the others."""
        summary = PollSummary()
        now = self.clock()

        db = self.session_factory()
        try:
            connections = ConnectionStore(db).list_active()
            targets = []
            for c in connections:
                if only_due and not is_due(c.state, now):
                    summary.skipped += 1
                    continue
                targets.append(c.id)
        finally:
            db.close()
        logger.info(f"Polling {len(targets)} of {len(connections)} active vehicle connections")

        semaphore = asyncio.Semaphore(self.concurrency)

        async with self._http() as http:
            async def run(connection_id: str) -> str:
                async with semaphore:
                    try:
                        outcome = await self._poll(http, connection_id)
                    except Exception:
                        logger.exception(f"Error polling connection {connection_id}")
                        return "failed"
                    return "skipped" if outcome is None else "polled"

            results = await asyncio.gather(*(run(cid) for cid in targets))

        for result in results:
            setattr(summary, result, getattr(summary, result) + 1)
        logger.info(f"Polling completed: {summary}")
        return summary

    async def poll_one(self, connection_id: str) -> Optional[PollOutcome]:
        """Poll a single connection. Returns None when it was skipped."""
        async with self._http() as http:
            return await self._poll(http, connection_id)

    async def _poll(self, http: httpx.AsyncClient, connection_id: str) -> Optional[PollOutcome]:
        with self.locks.hold(connection_id) as acquired:
            if not acquired:
                logger.info(f"Skipping {connection_id} - already being processed")
                return None

            db = self.session_factory()
            try:
                connections = ConnectionStore(db)
                conn = connections.get(connection_id)
                if not conn:
                    logger.error(f"No connection found for ID: {connection_id}")
                    return None
                if not conn.is_active:
                    logger.info(f"Skipping {connection_id} - connection is inactive")
                    return None

                logger.info(f"Processing connection {connection_id} for vehicle {conn.vehicle_id}")
                telematics = TelematicsClient(http, TokenRefresher(http, connections))
                readings = await telematics.fetch_readings(conn.vehicle_id, conn.access_token, conn.id)
                if readings.errors:
                    logger.warning(f"Partial vehicle data for {conn.vehicle_id}: {readings.errors}")

                cfg = resolve_config(db, conn.user_id)
                engine = TripLifecycleEngine(
                    TripStore(db),
                    VehicleStateStore(db),
                    HistoryLog(db) if self.history_enabled else None,
                    clock=self.clock,
                )
                outcome = engine.process(conn, readings, cfg)
                if readings.odometer_km is not None:
                    connections.mark_synced(conn.id, self.clock())

                logger.info(
                    f"Poll done for {conn.vehicle_id}: action={outcome.action.value}, "
                    f"trip={outcome.trip_id}, next poll in {outcome.polling_frequency}s"
                )
                return outcome
            except SQLAlchemyError:
                db.rollback()
                raise
            finally:
                db.close()


async def run_scheduler(orchestrator: PollOrchestrator, interval: int) -> None:
    """Call poll_all on a fixed tick until cancelled."""
    logger.info(f"Trip polling scheduler started (tick {interval}s)")
    while True:
        try:
            await orchestrator.poll_all(only_due=True)
        except Exception:
            logger.exception("Scheduled poll failed")
        await asyncio.sleep(interval)

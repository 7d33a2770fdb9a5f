"""
Trip polling trigger.
"""
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from .. import config
from ..dependencies import get_orchestrator, limiter, require_service_key
from ..polling import PollOrchestrator, PollSummary
from ..schemas import PollIn, PollOut

logger = logging.getLogger(__name__)
router = APIRouter(tags=["polling"], dependencies=[Depends(require_service_key)])


@router.post("/poll", response_model=PollOut)
@limiter.limit(config.POLL_RATE_LIMIT)
async def poll(request: Request, orchestrator: PollOrchestrator = Depends(get_orchestrator)):
    """Poll one vehicle connection ({connectionId}) or all of them."""
    try:
        payload = PollIn.model_validate(await request.json())
    except ValueError as e:
        logger.error(f"Malformed poll request: {e}")
        return JSONResponse({"error": "Invalid request", "message": str(e)}, status_code=500)

    try:
        if payload.action == "poll_single":
            outcome = await orchestrator.poll_one(payload.connection_id)
            summary = PollSummary(polled=1) if outcome else PollSummary(skipped=1)
        else:
            summary = await orchestrator.poll_all()
    except Exception as e:
        logger.exception("Error in vehicle polling")
        return JSONResponse({"error": "Internal server error", "message": str(e)}, status_code=500)

    return PollOut(message="Polling completed", **asdict(summary))

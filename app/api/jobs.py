"""Push-daemon delivery endpoint. 200 deletes the message; anything else has it redelivered."""

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_job_processor
from app.schemas.scan import JobAckResponse
from app.services.intake import JobProcessor

router = APIRouter()


@router.post("/", response_model=JobAckResponse)
async def receive_job(
    request: Request,
    processor: JobProcessor = Depends(get_job_processor),
) -> JSONResponse:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        # Handled by intake as a malformed payload.
        payload = None

    outcome = await processor.process(payload)
    body = JobAckResponse(
        success=outcome.state == "acknowledged",
        scan_id=outcome.scan_id,
        state=outcome.state,
        error=outcome.error,
        total_issues=outcome.report.summary.total if outcome.report else None,
    )
    return JSONResponse(
        status_code=200 if outcome.acknowledge else 500,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )

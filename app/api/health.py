"""Liveness and readiness endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_scanners
from app.core.config import settings
from app.core.database import check_db_connected, get_db
from app.schemas.health import HealthResponse, ReadinessResponse
from app.services.scanners import ScannerAdapter, installed_tools

router = APIRouter()


@router.get("", response_model=HealthResponse)
def get_health() -> HealthResponse:
    """
    Liveness for the load balancer and the push daemon.
    Never touches the database or job state.
    """
    return HealthResponse(status="ok", environment=settings.APP_ENV)


@router.get("/ready", response_model=ReadinessResponse)
def get_readiness(
    db: Session = Depends(get_db),
    scanners: tuple[ScannerAdapter, ...] = Depends(get_scanners),
) -> ReadinessResponse:
    """Database connectivity and which scanning engines are installed."""
    db_status = "connected" if check_db_connected(db) else "disconnected"
    return ReadinessResponse(
        status="ok",
        environment=settings.APP_ENV,
        database=db_status,
        tools=installed_tools(list(scanners)),
    )

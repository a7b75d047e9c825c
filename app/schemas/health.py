"""Pydantic schemas for liveness and readiness responses."""

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness body. Answered without touching the database or job state."""

    status: Literal["ok"] = Field(default="ok", description="Service status")
    environment: str = Field(description="Current app environment (e.g. dev, prod)")


class ReadinessResponse(HealthResponse):
    """Readiness body with dependency checks."""

    database: Literal["connected", "disconnected"] = Field(
        description="Database connectivity status",
    )
    tools: dict[str, bool] = Field(
        default_factory=dict,
        description="Scanning engine name -> binary found on PATH",
    )

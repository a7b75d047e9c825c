"""Pydantic schemas for jobs, findings, reports and health responses."""

from app.schemas.credentials import InstallationCredential
from app.schemas.findings import (
    ALL_TOOLS,
    SEVERITY_ORDER,
    NormalizedFinding,
    SeverityLevel,
    ToolName,
)
from app.schemas.health import HealthResponse, ReadinessResponse
from app.schemas.scan import (
    JobAckResponse,
    ScanJob,
    ScanReport,
    SeveritySummary,
    ToolRun,
)

__all__ = [
    "ALL_TOOLS",
    "HealthResponse",
    "InstallationCredential",
    "JobAckResponse",
    "NormalizedFinding",
    "ReadinessResponse",
    "SEVERITY_ORDER",
    "ScanJob",
    "ScanReport",
    "SeverityLevel",
    "SeveritySummary",
    "ToolName",
    "ToolRun",
]
